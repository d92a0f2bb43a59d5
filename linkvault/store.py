"""The entity store: single in-memory owner of links, folders and settings.

Every mutation builds a new collection, writes it through the persistence
layer and only then swaps it in. A failed durable write (quota) therefore
leaves memory exactly as it was and the error reaches the caller.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from .config import Settings
from .errors import FolderDepthError, ValidationError
from .folders import (
    MAX_FOLDER_NAME_LEN,
    MAX_SUB_FOLDERS_PER_FOLDER,
    find_folder,
    get_all_descendant_folder_ids,
    get_sub_folder_count,
    validate_folder_name,
    validate_new_folder,
)
from .log import get_logger
from .model import (
    ACTIVE,
    DEFAULT_SETTINGS,
    FOLDER_INPUT_FIELDS,
    LINK_INPUT_FIELDS,
    SETTINGS_FIELDS,
    THEMES,
    VIEW_MODES,
    AppSettings,
    Deleted,
    Folder,
    Link,
    folder_from_dict,
    folder_to_dict,
    link_from_dict,
    link_to_dict,
    new_id,
    settings_from_dict,
    settings_to_dict,
    utc_now,
)
from .persistence import FOLDERS_KEY, LINKS_KEY, SETTINGS_KEY, Persistence
from .platforms import detect_platform, is_platform, platform_folder_specs

log = get_logger(__name__)

VIEWS = ("all", "favorites", "trash")


class EntityStore:
    def __init__(
        self,
        persistence: Persistence,
        *,
        max_sub_folders: int = MAX_SUB_FOLDERS_PER_FOLDER,
        max_folder_name_len: int = MAX_FOLDER_NAME_LEN,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] = new_id,
    ):
        self.persistence = persistence
        self.max_sub_folders = max_sub_folders
        self.max_folder_name_len = max_folder_name_len
        self._clock = clock
        self._new_id = id_factory

        self._links: Tuple[Link, ...] = ()
        self._folders: Tuple[Folder, ...] = ()
        self._settings: AppSettings = DEFAULT_SETTINGS
        self.is_hydrated = False

        # View state; never persisted.
        self.selected_folder_id: Optional[str] = None
        self.current_view = "all"
        self.search_query = ""
        self.expanded_folders: FrozenSet[str] = frozenset()
        self.editing_link_id: Optional[str] = None
        self.editing_folder_id: Optional[str] = None
        self.parent_folder_id: Optional[str] = None

        self._unsubscribe: Optional[Callable[[], None]] = None

    @classmethod
    def from_settings(cls, persistence: Persistence, cfg: Settings, **kwargs: Any) -> "EntityStore":
        return cls(
            persistence,
            max_sub_folders=cfg.max_sub_folders,
            max_folder_name_len=cfg.max_folder_name_len,
            **kwargs,
        )

    # -- reads ---------------------------------------------------------------

    @property
    def links(self) -> Tuple[Link, ...]:
        return self._links

    @property
    def folders(self) -> Tuple[Folder, ...]:
        return self._folders

    @property
    def settings(self) -> AppSettings:
        return self._settings

    def get_link(self, link_id: str) -> Optional[Link]:
        for link in self._links:
            if link.id == link_id:
                return link
        return None

    def get_folder(self, folder_id: str) -> Optional[Folder]:
        return find_folder(folder_id, self._folders)

    def visible_links(
        self,
        *,
        view: Optional[str] = None,
        folder_id: Optional[str] = None,
        query: Optional[str] = None,
    ) -> List[Link]:
        """Links for a view, newest first. Arguments default to the current view state."""
        view = view if view is not None else self.current_view
        folder_id = folder_id if folder_id is not None else self.selected_folder_id
        query = query if query is not None else self.search_query

        if view == "trash":
            out = [link for link in self._links if link.is_deleted]
        else:
            out = [link for link in self._links if not link.is_deleted]
            if view == "favorites":
                out = [link for link in out if link.is_favorite]
            elif folder_id:
                ids = set(get_all_descendant_folder_ids(folder_id, self._folders))
                out = [link for link in out if link.folder_id in ids]

        q = (query or "").lower()
        if q:
            out = [
                link
                for link in out
                if q in link.title.lower() or q in link.description.lower() or q in link.url.lower()
            ]
        out.sort(key=lambda link: link.created_at, reverse=True)
        return out

    # -- links ---------------------------------------------------------------

    def add_link(self, data: Mapping[str, Any]) -> None:
        self._require_hydrated()
        values = _checked_fields(data, LINK_INPUT_FIELDS, "link")
        url = values.get("url")
        if not isinstance(url, str) or not url.strip():
            raise ValidationError("link url is required")
        values.setdefault("platform", detect_platform(url))
        _check_platform(values["platform"])

        now = self._clock()
        link = Link(id=self._new_id(), created_at=now, updated_at=now, state=ACTIVE, **values)
        self._commit_links(self._links + (link,))
        log.debug("Added link %s (%s)", link.id, link.url)

    def update_link(self, link_id: str, partial: Mapping[str, Any]) -> None:
        self._require_hydrated()
        values = _checked_fields(partial, LINK_INPUT_FIELDS, "link")
        if "platform" in values:
            _check_platform(values["platform"])
        self._replace_link(link_id, lambda link: replace(link, **values, updated_at=self._bump(link)))

    def delete_link(self, link_id: str) -> None:
        """Move a link to the trash. Deleting a trashed link keeps its original deletion time."""
        self._require_hydrated()
        link = self.get_link(link_id)
        if link is None or link.is_deleted:
            return
        now = self._bump(link)
        self._replace_link(link_id, lambda cur: replace(cur, state=Deleted(now), updated_at=now))

    def restore_link(self, link_id: str) -> None:
        self._require_hydrated()
        self._replace_link(link_id, lambda link: replace(link, state=ACTIVE, updated_at=self._bump(link)))

    def permanently_delete_link(self, link_id: str) -> None:
        self._require_hydrated()
        if self.get_link(link_id) is None:
            return
        self._commit_links(tuple(link for link in self._links if link.id != link_id))
        log.debug("Permanently deleted link %s", link_id)

    def toggle_favorite(self, link_id: str) -> None:
        self._require_hydrated()
        self._replace_link(
            link_id,
            lambda link: replace(link, is_favorite=not link.is_favorite, updated_at=self._bump(link)),
        )

    # -- folders -------------------------------------------------------------

    def add_folder(self, data: Mapping[str, Any]) -> None:
        self._require_hydrated()
        values = _checked_fields(data, FOLDER_INPUT_FIELDS, "folder")
        parent_id = values.get("parent_id")
        values["name"] = validate_new_folder(
            values.get("name"),
            parent_id,
            self._folders,
            max_sub_folders=self.max_sub_folders,
            max_name_len=self.max_folder_name_len,
        )
        _normalize_platform_folder(values)

        now = self._clock()
        folder = Folder(id=self._new_id(), created_at=now, updated_at=now, **values)
        self._commit_folders(self._folders + (folder,))
        log.debug("Added folder %s (%s) under %s", folder.id, folder.name, parent_id)

    def update_folder(self, folder_id: str, partial: Mapping[str, Any]) -> None:
        self._require_hydrated()
        values = _checked_fields(partial, FOLDER_INPUT_FIELDS, "folder")
        current = self.get_folder(folder_id)
        if current is None:
            return
        if "name" in values:
            values["name"] = validate_folder_name(values["name"], max_len=self.max_folder_name_len)
        if "parent_id" in values and values["parent_id"] != current.parent_id:
            self._check_reparent(current, values["parent_id"])
        merged = replace(current, **values)
        fixed = {
            "is_platform_folder": merged.is_platform_folder,
            "platform": merged.platform,
        }
        _normalize_platform_folder(fixed)
        updated = replace(merged, **fixed, updated_at=self._bump(current))
        self._commit_folders(tuple(updated if f.id == folder_id else f for f in self._folders))

    def delete_folder(self, folder_id: str) -> None:
        """Remove a folder only. Links and sub-folders keep their now-dangling references."""
        self._require_hydrated()
        if self.get_folder(folder_id) is None:
            return
        self._commit_folders(tuple(f for f in self._folders if f.id != folder_id))
        if self.selected_folder_id == folder_id:
            self.selected_folder_id = None
        self.expanded_folders = self.expanded_folders - {folder_id}
        log.debug("Deleted folder %s", folder_id)

    def toggle_folder_expanded(self, folder_id: str) -> None:
        if folder_id in self.expanded_folders:
            self.expanded_folders = self.expanded_folders - {folder_id}
        else:
            self.expanded_folders = self.expanded_folders | {folder_id}

    # -- settings ------------------------------------------------------------

    def update_settings(self, partial: Mapping[str, Any]) -> None:
        self._require_hydrated()
        values = _checked_fields(partial, SETTINGS_FIELDS, "settings")
        if "theme" in values and values["theme"] not in THEMES:
            raise ValidationError(f"theme must be one of {', '.join(THEMES)}")
        if "view_mode" in values and values["view_mode"] not in VIEW_MODES:
            raise ValidationError(f"view mode must be one of {', '.join(VIEW_MODES)}")
        updated = replace(self._settings, **values)
        self.persistence.set_item(SETTINGS_KEY, settings_to_dict(updated))
        self._settings = updated

    # -- view state ----------------------------------------------------------

    def set_selected_folder(self, folder_id: Optional[str]) -> None:
        self.selected_folder_id = folder_id

    def set_current_view(self, view: str) -> None:
        if view not in VIEWS:
            raise ValidationError(f"view must be one of {', '.join(VIEWS)}")
        self.current_view = view

    def set_search_query(self, query: str) -> None:
        self.search_query = query or ""

    def set_editing_link(self, link_id: Optional[str]) -> None:
        self.editing_link_id = link_id

    def set_editing_folder(self, folder_id: Optional[str]) -> None:
        self.editing_folder_id = folder_id

    def set_parent_folder(self, folder_id: Optional[str]) -> None:
        self.parent_folder_id = folder_id

    # -- hydration, backup, cross-view sync ----------------------------------

    def load_from_storage(self) -> None:
        links = tuple(_decode_all(self.persistence.get_item(LINKS_KEY), link_from_dict, "link"))
        folders = tuple(_decode_all(self.persistence.get_item(FOLDERS_KEY), folder_from_dict, "folder"))
        raw_settings = self.persistence.get_item(SETTINGS_KEY)
        settings = settings_from_dict(raw_settings) if isinstance(raw_settings, dict) else DEFAULT_SETTINGS

        if not folders:
            folders = self._platform_folders()
            self.persistence.set_item(FOLDERS_KEY, [folder_to_dict(f) for f in folders])
            log.info("Created %d platform folders.", len(folders))

        self._links, self._folders, self._settings = links, folders, settings
        if self.selected_folder_id is not None and find_folder(self.selected_folder_id, folders) is None:
            self.selected_folder_id = None
        self.is_hydrated = True
        log.debug("Loaded %d links and %d folders from storage.", len(links), len(folders))

    def export_data(self) -> str:
        return self.persistence.export_data(now=self._clock())

    def import_data(self, text: str) -> bool:
        ok = self.persistence.import_data(text)
        if ok:
            self.load_from_storage()
        return ok

    def reset(self) -> None:
        """Erase every stored record and start over from the platform folders."""
        self.persistence.clear()
        self.selected_folder_id = None
        self.expanded_folders = frozenset()
        self.load_from_storage()

    def watch(self) -> None:
        """Reload whenever another handle on the same origin changes our data."""
        if self._unsubscribe is None:
            self._unsubscribe = self.persistence.subscribe(self._on_storage_change)

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_storage_change(self, key: Optional[str]) -> None:
        log.debug("Storage changed elsewhere (%s); reloading.", key or "all keys")
        self.load_from_storage()

    # -- internals -----------------------------------------------------------

    def _require_hydrated(self) -> None:
        if not self.is_hydrated:
            raise RuntimeError("store is not hydrated; call load_from_storage() first")

    def _bump(self, entity: Link | Folder) -> datetime:
        return max(self._clock(), entity.updated_at)

    def _replace_link(self, link_id: str, fn: Callable[[Link], Link]) -> None:
        if self.get_link(link_id) is None:
            return
        self._commit_links(tuple(fn(link) if link.id == link_id else link for link in self._links))

    def _commit_links(self, links: Tuple[Link, ...]) -> None:
        self.persistence.set_item(LINKS_KEY, [link_to_dict(link) for link in links])
        self._links = links

    def _commit_folders(self, folders: Tuple[Folder, ...]) -> None:
        self.persistence.set_item(FOLDERS_KEY, [folder_to_dict(f) for f in folders])
        self._folders = folders

    def _check_reparent(self, folder: Folder, new_parent_id: Optional[str]) -> None:
        if new_parent_id is None:
            return
        if new_parent_id == folder.id:
            raise FolderDepthError("a folder cannot be its own parent")
        if get_sub_folder_count(folder.id, self._folders) > 0:
            raise FolderDepthError(f'"{folder.name}" has sub-folders and cannot become a sub-folder')
        others = [f for f in self._folders if f.id != folder.id]
        validate_new_folder(
            folder.name,
            new_parent_id,
            others,
            max_sub_folders=self.max_sub_folders,
            max_name_len=max(self.max_folder_name_len, len(folder.name)),
        )

    def _platform_folders(self) -> Tuple[Folder, ...]:
        now = self._clock()
        return tuple(
            Folder(
                id=self._new_id(),
                name=info.name,
                created_at=now,
                updated_at=now,
                color=info.color,
                icon=info.icon,
                parent_id=None,
                is_platform_folder=True,
                platform=key,
            )
            for key, info in platform_folder_specs()
        )


def _checked_fields(data: Mapping[str, Any], allowed: FrozenSet[str], kind: str) -> Dict[str, Any]:
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ValidationError(f"unknown {kind} field(s): {', '.join(unknown)}")
    return dict(data)


def _check_platform(value: Any) -> None:
    if not is_platform(value):
        raise ValidationError(f"unknown platform: {value!r}")


def _normalize_platform_folder(values: Dict[str, Any]) -> None:
    if values.get("is_platform_folder"):
        platform = values.get("platform")
        if platform is not None:
            _check_platform(platform)
    else:
        values["platform"] = None


def _decode_all(raw: Any, decode: Callable[[Mapping[str, Any]], Any], kind: str) -> Iterable[Any]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        log.warning("Stored %ss are not a list; ignoring them.", kind)
        return []
    out = []
    for item in raw:
        if not isinstance(item, dict):
            log.warning("Skipping stored %s that is not an object.", kind)
            continue
        try:
            out.append(decode(item))
        except ValueError as e:
            log.warning("Skipping malformed stored %s: %s", kind, e)
    return out
