import json, time, threading, os, logging
from typing import Dict, Any, Optional

from config import LOG_DIR, LOG_FILE_ENGINE, LOG_FILE_OPERATIONS, LOG_FORMAT

ROOT_LOGGER_NAME = "sheet_actions"

_LOG_LOCK = threading.Lock()
_configured = False


def _configure():
    global _configured
    with _LOG_LOCK:
        if _configured:
            return
        logger = logging.getLogger(ROOT_LOGGER_NAME)
        logger.setLevel(logging.INFO)

        handler = logging.FileHandler(os.path.join(LOG_DIR, LOG_FILE_ENGINE))
        handler.setLevel(logging.INFO)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))

        logger.addHandler(handler)
        # Keep engine chatter out of the host application's root logger
        logger.propagate = False
        _configured = True


def get_logger(name: str) -> logging.Logger:
    """Return a child of the engine logger, configuring the file handler once."""
    _configure()
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def log_sheet_operation(sheet_id: str, operation: str, request: Dict[str, Any], outcome: str,
                        started_ts: float, error: Optional[str] = None):
    rec = {
        "ts": time.time(),
        "duration_ms": round((time.time() - started_ts) * 1000, 2),
        "sheet_id": sheet_id,
        "operation": operation,
        "request": request,
        "outcome": outcome,
        "error": error,
    }
    line = json.dumps(rec, ensure_ascii=False)
    try:
        with _LOG_LOCK:
            with open(os.path.join(LOG_DIR, LOG_FILE_OPERATIONS), "a", encoding="utf-8") as f:
                f.write(line + "\n")
    except OSError as e:
        get_logger("operations").warning(f"Could not append operation record: {e}")
