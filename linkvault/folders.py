"""Pure helpers over a snapshot of the folder collection.

Folders form two-level trees: a root folder may hold sub-folders, a sub-folder
may not. The helpers here only read; enforcement happens before a folder is
written (see :func:`validate_new_folder`).
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence, Set

from .errors import FolderDepthError, FolderLimitError, ValidationError
from .model import Folder, Link

MAX_SUB_FOLDERS_PER_FOLDER = 10
MAX_FOLDER_DEPTH = 2
MAX_FOLDER_NAME_LEN = 30


def find_folder(folder_id: Optional[str], folders: Iterable[Folder]) -> Optional[Folder]:
    if folder_id is None:
        return None
    for f in folders:
        if f.id == folder_id:
            return f
    return None


def get_root_folders(folders: Sequence[Folder]) -> List[Folder]:
    return [f for f in folders if f.parent_id is None]


def get_child_folders(parent_id: str, folders: Sequence[Folder]) -> List[Folder]:
    return [f for f in folders if f.parent_id == parent_id]


def get_all_descendant_folder_ids(folder_id: str, folders: Sequence[Folder]) -> List[str]:
    """Return ``folder_id`` followed by every folder nested below it.

    Recursive on purpose: today's trees are two levels deep, but a deeper tree
    must not be under-counted. Stale or cyclic parent pointers are tolerated.
    """
    out: List[str] = []
    seen: Set[str] = set()

    def _walk(fid: str) -> None:
        if fid in seen:
            return
        seen.add(fid)
        out.append(fid)
        for child in get_child_folders(fid, folders):
            _walk(child.id)

    _walk(folder_id)
    return out


def get_sub_folder_count(parent_id: str, folders: Sequence[Folder]) -> int:
    return sum(1 for f in folders if f.parent_id == parent_id)


def can_add_sub_folder(
    parent_id: str,
    folders: Sequence[Folder],
    *,
    limit: int = MAX_SUB_FOLDERS_PER_FOLDER,
) -> bool:
    return get_sub_folder_count(parent_id, folders) < limit


def folder_depth(folder_id: str, folders: Sequence[Folder]) -> int:
    """1 for a root folder, 2 for its children; a dangling parent counts as a root."""
    depth = 0
    seen: Set[str] = set()
    current = find_folder(folder_id, folders)
    while current is not None and current.id not in seen:
        seen.add(current.id)
        depth += 1
        current = find_folder(current.parent_id, folders)
    return depth


def validate_folder_name(name: object, *, max_len: int = MAX_FOLDER_NAME_LEN) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("folder name is required")
    clean = name.strip()
    if len(clean) > max_len:
        raise ValidationError(f"folder name must be {max_len} characters or less")
    return clean


def validate_new_folder(
    name: object,
    parent_id: Optional[str],
    folders: Sequence[Folder],
    *,
    max_sub_folders: int = MAX_SUB_FOLDERS_PER_FOLDER,
    max_name_len: int = MAX_FOLDER_NAME_LEN,
) -> str:
    """Check a folder about to be created under ``parent_id``; returns the cleaned name."""
    clean = validate_folder_name(name, max_len=max_name_len)
    if parent_id is None:
        return clean

    parent = find_folder(parent_id, folders)
    if parent is None:
        raise FolderDepthError(f"parent folder {parent_id} does not exist")
    if parent.parent_id is not None:
        raise FolderDepthError(
            "sub-folders can only be created under root folders, not inside other sub-folders"
        )
    if not can_add_sub_folder(parent_id, folders, limit=max_sub_folders):
        count = get_sub_folder_count(parent_id, folders)
        raise FolderLimitError(
            f'"{parent.name}" already has {count} sub-folders; maximum is {max_sub_folders} per folder'
        )
    return clean


def count_links_in_folder(folder_id: str, folders: Sequence[Folder], links: Iterable[Link]) -> int:
    """Active links filed in the folder or any of its descendants."""
    ids = set(get_all_descendant_folder_ids(folder_id, folders))
    return sum(1 for link in links if link.folder_id in ids and not link.is_deleted)
