"""
Research history: list of completed runs stored as one JSON blob under a single key.

Every operation reads and writes the whole list. Reads are sorted newest first.
A corrupt blob reads as empty; failed writes are logged and the updated list is
still returned to the caller.
"""

import json
import logging
import sqlite3
from datetime import datetime

from pydantic import ValidationError

from storm_writer.core.config import HISTORY_KEY
from storm_writer.core.kv_store import KeyValueStore, build_store
from storm_writer.schemas.research import HistoryItem

logger = logging.getLogger(__name__)

# ValueError: a file store whose namespace file is not a JSON object
_WRITE_ERRORS = (OSError, ValueError, sqlite3.Error)


def _sort_key(item: HistoryItem) -> float:
    try:
        return datetime.fromisoformat(item.timestamp.replace("Z", "+00:00")).timestamp()
    except ValueError:
        return 0.0


class HistoryStore:
    def __init__(self, kv: KeyValueStore, key: str = HISTORY_KEY) -> None:
        self.kv = kv
        self.key = key

    def get_history(self) -> list[HistoryItem]:
        """Return all items, most recent first. Unreadable data yields []."""
        try:
            raw = self.kv.get(self.key)
            if not raw:
                return []
            items = [HistoryItem.model_validate(obj) for obj in json.loads(raw)]
        except (TypeError, ValidationError, *_WRITE_ERRORS) as e:
            logger.error("[history_store:get_history] failed to parse history: %s", e)
            return []
        return sorted(items, key=_sort_key, reverse=True)

    def _write(self, items: list[HistoryItem], op: str) -> None:
        try:
            self.kv.set(self.key, json.dumps([i.model_dump(mode="json") for i in items]))
        except _WRITE_ERRORS as e:
            logger.error("[history_store:%s] failed to write history: %s", op, e)

    def save_research(self, item: HistoryItem) -> list[HistoryItem]:
        """Prepend item; returns the updated list."""
        updated = [item, *self.get_history()]
        self._write(updated, "save_research")
        logger.info("[history_store:save_research] id=%s topic=%r total=%d", item.id, item.topic, len(updated))
        return updated

    def delete_item(self, item_id: str) -> list[HistoryItem]:
        """Remove the item with this id (others untouched); returns the updated list."""
        updated = [i for i in self.get_history() if i.id != item_id]
        self._write(updated, "delete_item")
        logger.info("[history_store:delete_item] id=%s remaining=%d", item_id, len(updated))
        return updated

    def get_item(self, item_id: str) -> HistoryItem | None:
        for item in self.get_history():
            if item.id == item_id:
                return item
        return None

    def clear(self) -> None:
        try:
            self.kv.delete(self.key)
        except _WRITE_ERRORS as e:
            logger.error("[history_store:clear] failed to clear history: %s", e)
            return
        logger.info("[history_store:clear] cleared")


_default_store: HistoryStore | None = None


def get_history_store() -> HistoryStore:
    """Process-wide history store built from config on first use."""
    global _default_store
    if _default_store is None:
        _default_store = HistoryStore(build_store())
    return _default_store
