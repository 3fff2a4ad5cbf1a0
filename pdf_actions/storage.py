from __future__ import annotations
import os, re, time, shutil, uuid, threading, tempfile
from typing import Optional, Dict, List

from config import SHEET_STORAGE_DIR, SHEET_FILE_NAME, SHEET_META_FILE_NAME, SHEET_INACTIVITY_TIMEOUT
from logging_utils import get_logger

logger = get_logger("storage")

SHEET_ID_PATTERN = re.compile(r"[A-Za-z0-9_-]{1,64}")


def _write_atomic(path: str, data: bytes):
    """Write to a scratch file in the same directory, then rename over ``path``."""
    directory = os.path.dirname(path)
    fd, tmp_path = tempfile.mkstemp(prefix=".tmp-", dir=directory)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


class SheetStorageManager:
    """One directory per sheet: the current PDF plus the original filename.

    Every write replaces the stored PDF atomically, so a reader of the directory
    sees either the previous complete document or the new one.
    """

    def __init__(self, base_dir: str = SHEET_STORAGE_DIR, inactivity_timeout: int = SHEET_INACTIVITY_TIMEOUT):
        self.base_dir = base_dir
        self.inactivity_timeout = inactivity_timeout
        os.makedirs(self.base_dir, exist_ok=True)
        self._lock = threading.Lock()
        self._sessions: Dict[str, float] = {}

    def _sheet_path(self, sheet_id: str) -> str:
        if not SHEET_ID_PATTERN.fullmatch(sheet_id or ""):
            raise ValueError(f"Invalid sheet id: {sheet_id!r}")
        return os.path.join(self.base_dir, sheet_id)

    def create(self, pdf_bytes: bytes, original_filename: str, sheet_id: str | None = None) -> str:
        sheet_id = sheet_id or uuid.uuid4().hex
        path = self._sheet_path(sheet_id)
        os.makedirs(path, exist_ok=True)
        _write_atomic(os.path.join(path, SHEET_FILE_NAME), pdf_bytes)
        _write_atomic(os.path.join(path, SHEET_META_FILE_NAME), original_filename.encode("utf-8"))
        with self._lock:
            self._sessions[sheet_id] = time.time()
        logger.info(f"Stored sheet {sheet_id} ({len(pdf_bytes)} bytes, {original_filename!r})")
        return sheet_id

    def touch(self, sheet_id: str):
        with self._lock:
            if sheet_id in self._sessions:
                self._sessions[sheet_id] = time.time()

    def exists(self, sheet_id: str) -> bool:
        return os.path.exists(os.path.join(self._sheet_path(sheet_id), SHEET_FILE_NAME))

    def load(self, sheet_id: str) -> Optional[bytes]:
        pdf_path = os.path.join(self._sheet_path(sheet_id), SHEET_FILE_NAME)
        if not os.path.exists(pdf_path):
            return None
        with open(pdf_path, "rb") as f:
            return f.read()

    def load_filename(self, sheet_id: str) -> Optional[str]:
        meta_path = os.path.join(self._sheet_path(sheet_id), SHEET_META_FILE_NAME)
        if not os.path.exists(meta_path):
            return None
        with open(meta_path, "r", encoding="utf-8") as m:
            return m.read()

    def save(self, sheet_id: str, pdf_bytes: bytes):
        path = self._sheet_path(sheet_id)
        if not os.path.isdir(path):
            raise FileNotFoundError(f"No stored sheet {sheet_id}")
        _write_atomic(os.path.join(path, SHEET_FILE_NAME), pdf_bytes)
        self.touch(sheet_id)

    def list_ids(self) -> List[str]:
        if not os.path.isdir(self.base_dir):
            return []
        return sorted(d for d in os.listdir(self.base_dir)
                      if SHEET_ID_PATTERN.fullmatch(d) and self.exists(d))

    def delete(self, sheet_id: str):
        path = self._sheet_path(sheet_id)
        if os.path.isdir(path):
            shutil.rmtree(path)
        with self._lock:
            self._sessions.pop(sheet_id, None)

    def cleanup_inactive(self) -> List[str]:
        """Delete sheets not touched within the inactivity timeout. Caller-driven; no thread."""
        now = time.time()
        with self._lock:
            stale = [sid for sid, ts in self._sessions.items() if now - ts > self.inactivity_timeout]
        for sid in stale:
            self.delete(sid)
            logger.info(f"Removed inactive sheet {sid}")
        return stale
