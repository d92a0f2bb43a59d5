"""Codec and durability boundary between the entity store and the origin storage."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, StrictStr
from pydantic import ValidationError as PydanticValidationError

from .errors import QuotaExceededError
from .log import get_logger
from .model import (
    format_ts,
    folder_from_dict,
    folder_to_dict,
    link_from_dict,
    link_to_dict,
    settings_from_dict,
    settings_to_dict,
    utc_now,
)
from .origin import OriginStorage, StorageEvent

log = get_logger(__name__)

# Never rename: existing durable data is found by these keys.
LINKS_KEY = "linkvault_links"
FOLDERS_KEY = "linkvault_folders"
SETTINGS_KEY = "linkvault_settings"
STORAGE_KEYS = (LINKS_KEY, FOLDERS_KEY, SETTINGS_KEY)

SNAPSHOT_VERSION = 1


class SnapshotEntity(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: StrictStr


class Snapshot(BaseModel):
    model_config = ConfigDict(extra="ignore")

    version: Optional[Union[int, str]] = None
    exportedAt: Optional[str] = None
    links: List[SnapshotEntity]
    folders: List[SnapshotEntity]
    settings: Dict[str, Any]


class Persistence:
    def __init__(self, storage: OriginStorage):
        self.storage = storage

    def get_item(self, key: str) -> Any:
        raw = self.storage.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            log.warning("Discarding corrupt value stored under %s: %s", key, e)
            return None

    def set_item(self, key: str, value: Any) -> None:
        """Serialize and write; raises QuotaExceededError when the origin is full."""
        self.storage.set(key, _dumps(value))

    def remove_item(self, key: str) -> None:
        self.storage.remove(key)

    def export_data(self, *, now: Optional[datetime] = None) -> str:
        links = self.get_item(LINKS_KEY)
        folders = self.get_item(FOLDERS_KEY)
        settings = self.get_item(SETTINGS_KEY)
        doc = {
            "version": SNAPSHOT_VERSION,
            "exportedAt": format_ts(now or utc_now()),
            "links": links if isinstance(links, list) else [],
            "folders": folders if isinstance(folders, list) else [],
            "settings": settings if isinstance(settings, dict) else settings_to_dict(settings_from_dict({})),
        }
        log.info("Exported %d links and %d folders.", len(doc["links"]), len(doc["folders"]))
        return json.dumps(doc, ensure_ascii=False, indent=2)

    def import_data(self, text: str) -> bool:
        """Validate a snapshot and replace the stored dataset with it.

        Returns False, leaving durable state untouched, when the document is not
        valid JSON, does not have the expected shape, or does not fit the quota.
        """
        try:
            doc = json.loads(text)
        except (TypeError, ValueError) as e:
            log.warning("Rejected import: not valid JSON (%s)", e)
            return False
        try:
            snap = Snapshot.model_validate(doc)
        except PydanticValidationError as e:
            log.warning("Rejected import: unexpected snapshot shape (%d errors)", e.error_count())
            return False

        try:
            links = [link_to_dict(link_from_dict(x.model_dump())) for x in snap.links]
            folders = [folder_to_dict(folder_from_dict(x.model_dump())) for x in snap.folders]
        except ValueError as e:
            log.warning("Rejected import: malformed entity (%s)", e)
            return False
        settings = settings_to_dict(settings_from_dict(snap.settings))

        try:
            self.storage.set_many(
                {
                    LINKS_KEY: _dumps(links),
                    FOLDERS_KEY: _dumps(folders),
                    SETTINGS_KEY: _dumps(settings),
                }
            )
        except QuotaExceededError as e:
            log.warning("Rejected import: %s", e)
            return False
        log.info("Imported %d links and %d folders.", len(links), len(folders))
        return True

    def get_storage_size(self) -> int:
        return self.storage.used_bytes(STORAGE_KEYS)

    def clear(self) -> None:
        self.storage.remove_many(STORAGE_KEYS)
        log.info("Cleared all stored linkvault data.")

    def subscribe(self, callback: Callable[[Optional[str]], None]) -> Callable[[], None]:
        """Call ``callback(key)`` whenever another handle changes one of our keys.

        ``key`` is None when the whole origin was wiped.
        """

        def _on_event(event: StorageEvent) -> None:
            if event.key is None or event.key in STORAGE_KEYS:
                callback(event.key)

        return self.storage.add_listener(_on_event)


def format_size(n_bytes: int) -> str:
    mb = n_bytes / (1024 * 1024)
    if mb >= 1:
        return f"{mb:.2f} MB"
    return f"{n_bytes / 1024:.2f} KB"


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
