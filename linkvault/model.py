from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Union

from .platforms import OTHER, is_platform

THEMES = ("light", "dark", "system")
VIEW_MODES = ("grid", "list")


def utc_now() -> datetime:
    # Millisecond precision so timestamps survive the JSON round trip unchanged.
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def new_id() -> str:
    return str(uuid.uuid4())


def format_ts(dt: datetime) -> str:
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def parse_ts(value: Any) -> datetime:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"not a timestamp: {value!r}")
    s = value.strip()
    if s.endswith(("Z", "z")):
        s = s[:-1] + "+00:00"
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass(frozen=True)
class Active:
    pass


@dataclass(frozen=True)
class Deleted:
    at: datetime


ACTIVE = Active()
LinkState = Union[Active, Deleted]


@dataclass(frozen=True)
class Link:
    id: str
    url: str
    created_at: datetime
    updated_at: datetime
    title: str = ""
    description: str = ""
    thumbnail: str = ""
    platform: str = OTHER
    folder_id: Optional[str] = None
    is_favorite: bool = False
    state: LinkState = ACTIVE

    @property
    def is_deleted(self) -> bool:
        return isinstance(self.state, Deleted)

    @property
    def deleted_at(self) -> Optional[datetime]:
        return self.state.at if isinstance(self.state, Deleted) else None


@dataclass(frozen=True)
class Folder:
    id: str
    name: str
    created_at: datetime
    updated_at: datetime
    description: str = ""
    color: str = ""
    icon: str = ""
    parent_id: Optional[str] = None
    is_platform_folder: bool = False
    platform: Optional[str] = None

    @property
    def is_root(self) -> bool:
        return self.parent_id is None


@dataclass(frozen=True)
class AppSettings:
    theme: str = "system"
    view_mode: str = "grid"


DEFAULT_SETTINGS = AppSettings()

# Fields callers may set through add/update; the rest belong to the store.
LINK_INPUT_FIELDS = frozenset(
    {"url", "title", "description", "thumbnail", "platform", "folder_id", "is_favorite"}
)
FOLDER_INPUT_FIELDS = frozenset(
    {"name", "description", "color", "icon", "parent_id", "is_platform_folder", "platform"}
)
SETTINGS_FIELDS = frozenset({"theme", "view_mode"})


# Wire codec. Keys match the original browser storage layout so old backups import as-is.


def link_to_dict(link: Link) -> Dict[str, Any]:
    return {
        "id": link.id,
        "url": link.url,
        "title": link.title,
        "description": link.description,
        "thumbnail": link.thumbnail,
        "platform": link.platform,
        "folderId": link.folder_id,
        "isFavorite": link.is_favorite,
        "deletedAt": format_ts(link.deleted_at) if link.deleted_at else None,
        "createdAt": format_ts(link.created_at),
        "updatedAt": format_ts(link.updated_at),
    }


def link_from_dict(data: Mapping[str, Any]) -> Link:
    link_id = data.get("id")
    url = data.get("url")
    if not isinstance(link_id, str) or not link_id:
        raise ValueError("link has no id")
    if not isinstance(url, str):
        raise ValueError(f"link {link_id} has no url")
    created = parse_ts(data.get("createdAt"))
    updated = _parse_optional_ts(data.get("updatedAt")) or created
    deleted = _parse_optional_ts(data.get("deletedAt"))
    platform = data.get("platform")
    return Link(
        id=link_id,
        url=url,
        created_at=created,
        updated_at=max(updated, created),
        title=_str(data.get("title")),
        description=_str(data.get("description")),
        thumbnail=_str(data.get("thumbnail")),
        platform=platform if is_platform(platform) else OTHER,
        folder_id=_opt_str(data.get("folderId")),
        is_favorite=bool(data.get("isFavorite", False)),
        state=Deleted(deleted) if deleted else ACTIVE,
    )


def folder_to_dict(folder: Folder) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "id": folder.id,
        "name": folder.name,
        "description": folder.description,
        "color": folder.color,
        "icon": folder.icon,
        "parentId": folder.parent_id,
        "isPlatformFolder": folder.is_platform_folder,
        "createdAt": format_ts(folder.created_at),
        "updatedAt": format_ts(folder.updated_at),
    }
    if folder.is_platform_folder and folder.platform:
        out["platform"] = folder.platform
    return out


def folder_from_dict(data: Mapping[str, Any]) -> Folder:
    folder_id = data.get("id")
    name = data.get("name")
    if not isinstance(folder_id, str) or not folder_id:
        raise ValueError("folder has no id")
    if not isinstance(name, str):
        raise ValueError(f"folder {folder_id} has no name")
    created = parse_ts(data.get("createdAt"))
    updated = _parse_optional_ts(data.get("updatedAt")) or created
    is_pf = bool(data.get("isPlatformFolder", False))
    platform = data.get("platform")
    return Folder(
        id=folder_id,
        name=name,
        created_at=created,
        updated_at=max(updated, created),
        description=_str(data.get("description")),
        color=_str(data.get("color")),
        icon=_str(data.get("icon")),
        parent_id=_opt_str(data.get("parentId")),
        is_platform_folder=is_pf,
        platform=platform if is_pf and is_platform(platform) else None,
    )


def settings_to_dict(settings: AppSettings) -> Dict[str, Any]:
    return {"theme": settings.theme, "viewMode": settings.view_mode}


def settings_from_dict(data: Mapping[str, Any]) -> AppSettings:
    theme = data.get("theme")
    view_mode = data.get("viewMode")
    return AppSettings(
        theme=theme if theme in THEMES else DEFAULT_SETTINGS.theme,
        view_mode=view_mode if view_mode in VIEW_MODES else DEFAULT_SETTINGS.view_mode,
    )


def _parse_optional_ts(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    return parse_ts(value)


def _str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _opt_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None
