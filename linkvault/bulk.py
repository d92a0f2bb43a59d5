"""Apply one user intent (move, favorite, delete) to a set of selected links."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from .errors import LinkVaultError, ValidationError
from .log import get_logger
from .store import EntityStore

log = get_logger(__name__)

Confirm = Callable[[str], bool]


def _always_yes(_message: str) -> bool:
    return True


def _plural(n: int, one: str = "item", many: str = "items") -> str:
    return f"{n} {one if n == 1 else many}"


class Selection:
    """Ordered set of selected link ids."""

    def __init__(self, ids: Iterable[str] = ()):
        self._ids: Dict[str, None] = dict.fromkeys(ids)

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, link_id: object) -> bool:
        return link_id in self._ids

    def __iter__(self):
        return iter(list(self._ids))

    @property
    def ids(self) -> List[str]:
        return list(self._ids)

    def select(self, link_id: str) -> None:
        self._ids.setdefault(link_id, None)

    def deselect(self, link_id: str) -> None:
        self._ids.pop(link_id, None)

    def toggle(self, link_id: str) -> None:
        if link_id in self._ids:
            self.deselect(link_id)
        else:
            self.select(link_id)

    def select_all(self, visible_ids: Iterable[str]) -> None:
        """Select every visible id, or deselect them all if they already are."""
        visible = list(visible_ids)
        if visible and all(i in self._ids for i in visible):
            for i in visible:
                self.deselect(i)
        else:
            for i in visible:
                self.select(i)

    def clear(self) -> None:
        self._ids.clear()


@dataclass
class BulkResult:
    action: str
    requested: int
    mutated: int = 0
    skipped: int = 0
    failures: List[Tuple[str, str]] = field(default_factory=list)
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return not self.cancelled and not self.failures

    def summary(self) -> str:
        if self.cancelled:
            return f"{self.action}: cancelled, nothing changed."
        text = f"{self.action}: {self.mutated} of {_plural(self.requested)} changed"
        if self.skipped:
            text += f", {self.skipped} skipped"
        if self.failures:
            text += f", {len(self.failures)} failed"
        return text + "."


class BulkCoordinator:
    def __init__(self, store: EntityStore, selection: Selection, *, confirm: Confirm = _always_yes):
        self.store = store
        self.selection = selection
        self.confirm = confirm

    def favorite(self) -> BulkResult:
        """Favorite all on a mixed selection, otherwise flip relative to the first selected link."""
        ids = self.selection.ids
        links = [link for link in (self.store.get_link(i) for i in ids) if link is not None]
        result = BulkResult("favorite", requested=len(ids))
        if not links:
            result.skipped = len(ids)
            return self._finish(result)

        mixed = any(link.is_favorite for link in links) and any(not link.is_favorite for link in links)
        target = True if mixed else not links[0].is_favorite
        result.action = "favorite" if target else "unfavorite"

        present = {link.id: link for link in links}
        for link_id in ids:
            link = present.get(link_id)
            if link is None or link.is_favorite == target:
                result.skipped += 1
                continue
            self._apply(result, link_id, lambda: self.store.update_link(link_id, {"is_favorite": target}))
        return self._finish(result)

    def move(self, target_folder_id: Optional[str], *, touch_existing: bool = False) -> BulkResult:
        """Move selected links into a folder, or out of all folders when target is None."""
        if target_folder_id is not None and self.store.get_folder(target_folder_id) is None:
            raise ValidationError(f"target folder {target_folder_id} does not exist")

        ids = self.selection.ids
        result = BulkResult("move", requested=len(ids))
        links = [link for link in (self.store.get_link(i) for i in ids) if link is not None]
        already = [link for link in links if link.folder_id == target_folder_id]
        if already:
            verb = "is" if len(already) == 1 else "are"
            message = (
                f"{_plural(len(already))} {verb} already in the selected folder. "
                "Continue moving the selected items?"
            )
            if not self.confirm(message):
                result.cancelled = True
                return result

        present = {link.id: link for link in links}
        for link_id in ids:
            link = present.get(link_id)
            if link is None or (link.folder_id == target_folder_id and not touch_existing):
                result.skipped += 1
                continue
            self._apply(result, link_id, lambda: self.store.update_link(link_id, {"folder_id": target_folder_id}))
        return self._finish(result)

    def delete(self) -> BulkResult:
        """Send every selected link to the trash after one confirmation."""
        ids = self.selection.ids
        result = BulkResult("delete", requested=len(ids))
        if not ids:
            return result
        if not self.confirm(f"Move {_plural(len(ids))} to the trash?"):
            result.cancelled = True
            return result

        for link_id in ids:
            link = self.store.get_link(link_id)
            if link is None or link.is_deleted:
                result.skipped += 1
                continue
            self._apply(result, link_id, lambda: self.store.delete_link(link_id))
        return self._finish(result)

    def _apply(self, result: BulkResult, link_id: str, fn: Callable[[], None]) -> None:
        try:
            fn()
        except (LinkVaultError, sqlite3.Error) as e:
            log.warning("Bulk %s failed for %s: %s", result.action, link_id, e)
            result.failures.append((link_id, str(e)))
        else:
            result.mutated += 1

    def _finish(self, result: BulkResult) -> BulkResult:
        if result.ok:
            self.selection.clear()
        log.info(result.summary())
        return result
