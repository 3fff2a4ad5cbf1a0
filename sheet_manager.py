"""
Sheet lifecycle management.
Holds uploaded sheets in memory, serialises edits per sheet and mirrors every
accepted buffer to disk through SheetStorageManager when one is configured.
"""

import os
import time
import uuid
import threading
from typing import Dict, Optional, List, Tuple
from dataclasses import dataclass, field

from config import MAX_FILE_SIZE, ERROR_MESSAGES
from logging_utils import get_logger, log_sheet_operation
from pdf_actions.editor import apply_recipe, list_attached_actions
from pdf_actions.errors import (
    MalformedDocumentError,
    SerializationFailedError,
    SheetActionError,
    SheetNotFoundError,
)
from pdf_actions.extract import extract_fields, extract_fields_with_geometry, validate_sheet
from pdf_actions.recipes import ActionRecipe
from pdf_actions.schema import AttachedAction, FormField, ListedAction, SheetSummary
from pdf_actions.storage import SheetStorageManager

logger = get_logger("sheets")


@dataclass
class Sheet:
    """An uploaded sheet: the current PDF buffer plus the log of applied actions."""
    sheet_id: str
    original_filename: str
    data: bytes
    actions: List[AttachedAction] = field(default_factory=list)
    last_activity: float = None
    created_at: float = None

    def __post_init__(self):
        now = time.time()
        if self.created_at is None:
            self.created_at = now
        if self.last_activity is None:
            self.last_activity = now

    def touch(self):
        self.last_activity = time.time()


def _display_name(original_filename: Optional[str]) -> str:
    name = os.path.basename(original_filename or "").strip()
    return name or "sheet.pdf"


class SheetManager:
    """Registry of sheets with one lock per sheet for attach calls."""

    def __init__(self, storage: Optional[SheetStorageManager] = None):
        self._sheets: Dict[str, Sheet] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._lock = threading.RLock()
        self._storage = storage

    def _get(self, sheet_id: str) -> Sheet:
        with self._lock:
            sheet = self._sheets.get(sheet_id)
        if sheet is None:
            sheet = self.load(sheet_id)
        sheet.touch()
        return sheet

    def _sheet_lock(self, sheet_id: str) -> threading.Lock:
        with self._lock:
            return self._locks.setdefault(sheet_id, threading.Lock())

    def upload(self, data: bytes, original_filename: str) -> Sheet:
        """Validate an uploaded PDF and register it under a fresh hex id."""
        started = time.time()
        if len(data) > MAX_FILE_SIZE:
            raise MalformedDocumentError(ERROR_MESSAGES['file_too_large'])
        validate_sheet(data)

        sheet_id = uuid.uuid4().hex
        filename = _display_name(original_filename)
        if self._storage:
            try:
                self._storage.create(data, filename, sheet_id)
            except OSError as e:
                raise SerializationFailedError(f"{ERROR_MESSAGES['save_failed']}: {e}") from e

        sheet = Sheet(sheet_id=sheet_id, original_filename=filename, data=bytes(data))
        with self._lock:
            self._sheets[sheet_id] = sheet
            self._locks[sheet_id] = threading.Lock()
        logger.info(f"Uploaded sheet {sheet_id} ({filename!r}, {len(data)} bytes)")
        log_sheet_operation(sheet_id, "upload", {"filename": filename, "size": len(data)}, "ok", started)
        return sheet

    def load(self, sheet_id: str) -> Sheet:
        """Return the sheet, rehydrating it from storage if it is not in memory.

        The action log of a rehydrated sheet is rebuilt from the calculate scripts
        found in the document; unrecognised scripts are left out of it.
        """
        with self._lock:
            if sheet_id in self._sheets:
                return self._sheets[sheet_id]
        if not self._storage:
            raise SheetNotFoundError(sheet_id)
        try:
            data = self._storage.load(sheet_id)
        except ValueError:
            data = None
        if data is None:
            raise SheetNotFoundError(sheet_id)

        actions = [a for a in list_attached_actions(data) if isinstance(a, AttachedAction)]
        sheet = Sheet(
            sheet_id=sheet_id,
            original_filename=_display_name(self._storage.load_filename(sheet_id)),
            data=data,
            actions=actions,
        )
        with self._lock:
            # Another thread may have loaded it meanwhile; keep the first copy
            sheet = self._sheets.setdefault(sheet_id, sheet)
            self._locks.setdefault(sheet_id, threading.Lock())
        logger.info(f"Loaded sheet {sheet_id} from storage with {len(sheet.actions)} actions")
        return sheet

    def fields(self, sheet_id: str) -> List[FormField]:
        return extract_fields(self._get(sheet_id).data)

    def fields_with_geometry(self, sheet_id: str, scale: Optional[float] = None) -> List[FormField]:
        data = self._get(sheet_id).data
        if scale is None:
            return extract_fields_with_geometry(data)
        return extract_fields_with_geometry(data, scale)

    def attach(self, sheet_id: str, recipe: ActionRecipe) -> AttachedAction:
        """Apply one recipe to a sheet.

        Either the new buffer is persisted, swapped in and logged, or the sheet is
        left exactly as it was and the error propagates.
        """
        started = time.time()
        request = {"type": recipe.kind.value, "mapping": dict(recipe.mapping)}
        sheet = self._get(sheet_id)
        try:
            with self._sheet_lock(sheet_id):
                result = apply_recipe(sheet.data, recipe)
                if self._storage:
                    try:
                        self._storage.save(sheet_id, result.data)
                    except OSError as e:
                        raise SerializationFailedError(f"{ERROR_MESSAGES['save_failed']}: {e}") from e
                # Logged under the qualified name the document itself reports
                action = result.action
                sheet.data = result.data
                sheet.actions.append(action)
        except SheetActionError as e:
            log_sheet_operation(sheet_id, "attach", request, "error", started, error=str(e))
            raise
        log_sheet_operation(sheet_id, "attach", request, "ok", started)
        return action

    def list_actions(self, sheet_id: str) -> List[AttachedAction]:
        """Effective actions: the log replayed with the last action per target winning."""
        sheet = self._get(sheet_id)
        latest: Dict[str, AttachedAction] = {}
        for action in list(sheet.actions):
            latest.pop(action.target_field, None)
            latest[action.target_field] = action
        return list(latest.values())

    def history(self, sheet_id: str) -> List[AttachedAction]:
        return list(self._get(sheet_id).actions)

    def document_actions(self, sheet_id: str) -> List[ListedAction]:
        """Actions as read back from the current buffer, unknown scripts included."""
        return list_attached_actions(self._get(sheet_id).data)

    def export(self, sheet_id: str) -> Tuple[str, bytes]:
        started = time.time()
        sheet = self._get(sheet_id)
        data = sheet.data
        log_sheet_operation(sheet_id, "export", {}, "ok", started)
        return sheet.original_filename, data

    def summary(self, sheet_id: str) -> SheetSummary:
        sheet = self._get(sheet_id)
        return SheetSummary(
            sheet_id=sheet.sheet_id,
            original_filename=sheet.original_filename,
            size=len(sheet.data),
            actions=self.list_actions(sheet_id),
        )

    def delete(self, sheet_id: str) -> bool:
        """Forget a sheet in memory and on disk. Returns False if it was unknown."""
        with self._lock:
            known = self._sheets.pop(sheet_id, None) is not None
            self._locks.pop(sheet_id, None)
        if self._storage:
            try:
                on_disk = self._storage.exists(sheet_id)
            except ValueError:
                on_disk = False
            if on_disk:
                self._storage.delete(sheet_id)
                known = True
        if known:
            logger.info(f"Deleted sheet {sheet_id}")
        return known

    def get_all_sheet_ids(self) -> List[str]:
        with self._lock:
            return list(self._sheets.keys())

    def __len__(self):
        with self._lock:
            return len(self._sheets)

    def __contains__(self, sheet_id: str):
        with self._lock:
            return sheet_id in self._sheets


# Global sheet manager instance
_sheet_manager = None


def get_sheet_manager(storage: Optional[SheetStorageManager] = None) -> SheetManager:
    """Get or create the global sheet manager instance."""
    global _sheet_manager
    if _sheet_manager is None:
        _sheet_manager = SheetManager(storage)
    return _sheet_manager


def reset_sheet_manager():
    """Reset the global sheet manager (useful for testing)."""
    global _sheet_manager
    _sheet_manager = None
