from __future__ import annotations

import argparse
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from rich.console import Console
from rich.prompt import Confirm
from rich.table import Table
from rich.tree import Tree

from . import __version__
from .bulk import BulkCoordinator, BulkResult, Selection
from .config import Settings, load_settings
from .errors import ImportRejectedError, LinkVaultError, ValidationError
from .folders import count_links_in_folder, get_child_folders, get_root_folders
from .log import LogConfig, get_logger, setup_logging
from .metadata import MetadataError, fetch_metadata
from .origin import OriginStorage
from .persistence import Persistence, format_size
from .platforms import PLATFORMS
from .store import VIEWS, EntityStore

log = get_logger(__name__)

NONE_FOLDER = "none"


def main(argv: List[str] | None = None, *, console: Optional[Console] = None) -> int:
    p = _build_parser()
    args = p.parse_args(argv)
    cfg = load_settings(args.config)
    if args.data:
        cfg.data_path = args.data
    if args.log_level:
        cfg.log_level = args.log_level
    if args.no_color:
        cfg.no_color = True
    setup_logging(LogConfig(level=cfg.log_level, no_color=cfg.no_color))
    console = console or Console(no_color=cfg.no_color)

    handler = _COMMANDS[args.cmd]
    with OriginStorage(cfg.resolved_data_path, quota_bytes=cfg.quota_bytes) as origin:
        store = EntityStore.from_settings(Persistence(origin), cfg)
        try:
            store.load_from_storage()
            return handler(args, store, cfg, console)
        except LinkVaultError as e:
            log.error("%s", e)
            return 1


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="linkvault", description="Personal bookmark vault.")
    p.add_argument("-V", "--version", action="version", version=f"linkvault {__version__}")
    p.add_argument("--config", default=None, help="YAML config file (optional). Env vars override defaults.")
    p.add_argument("--data", default=None, help="Storage file (default: LINKVAULT_DATA_PATH or ~/.local/share/linkvault).")
    p.add_argument("--log-level", default=None, help="DEBUG/INFO/WARNING/ERROR (overrides env/config).")
    p.add_argument("--no-color", action="store_true", help="Disable colored output.")
    sub = p.add_subparsers(dest="cmd", required=True)

    add = sub.add_parser("add", help="Save a link.")
    add.add_argument("url")
    add.add_argument("--title", default=None)
    add.add_argument("--description", default=None)
    add.add_argument("--folder", default=None, help="Folder id (or unique id prefix).")
    add.add_argument("--favorite", action="store_true")
    add.add_argument("--no-fetch", action="store_true", help="Do not look up title/description/thumbnail.")

    edit = sub.add_parser("edit", help="Edit a link.")
    edit.add_argument("id")
    edit.add_argument("--url", default=None)
    edit.add_argument("--title", default=None)
    edit.add_argument("--description", default=None)
    edit.add_argument("--platform", choices=PLATFORMS, default=None)
    edit.add_argument("--folder", default=None, help=f"Folder id, or '{NONE_FOLDER}' to unfile.")

    ls = sub.add_parser("list", help="List links.")
    ls.add_argument("--view", choices=VIEWS, default="all")
    ls.add_argument("--folder", default=None, help="Only links in this folder and its sub-folders.")
    ls.add_argument("--query", default="", help="Case-insensitive match on title, description or URL.")

    for name, help_text in (
        ("fav", "Toggle favorite on a link."),
        ("restore", "Restore a link from the trash."),
        ("purge", "Permanently delete a link."),
    ):
        sp = sub.add_parser(name, help=help_text)
        sp.add_argument("id")

    rm = sub.add_parser("rm", help="Move links to the trash.")
    rm.add_argument("ids", nargs="+")

    sub.add_parser("folders", help="Show the folder tree.")

    mkdir = sub.add_parser("mkdir", help="Create a folder.")
    mkdir.add_argument("name")
    mkdir.add_argument("--parent", default=None, help="Parent folder id; creates a sub-folder.")
    mkdir.add_argument("--color", default="#F59E0B")
    mkdir.add_argument("--icon", default="Folder")

    rename = sub.add_parser("rename", help="Rename a folder.")
    rename.add_argument("id")
    rename.add_argument("name")

    rmdir = sub.add_parser("rmdir", help="Delete a folder (its links stay, unfiled).")
    rmdir.add_argument("id")
    rmdir.add_argument("-y", "--yes", action="store_true")

    move = sub.add_parser("move", help="Move several links to a folder.")
    move.add_argument("ids", nargs="+")
    move.add_argument("--to", required=True, help=f"Target folder id, or '{NONE_FOLDER}'.")
    move.add_argument("--touch-existing", action="store_true", help="Also rewrite links already in the target.")
    move.add_argument("-y", "--yes", action="store_true")

    bfav = sub.add_parser("bulk-fav", help="Favorite (or unfavorite) several links.")
    bfav.add_argument("ids", nargs="+")

    brm = sub.add_parser("bulk-rm", help="Move several links to the trash after one confirmation.")
    brm.add_argument("ids", nargs="+")
    brm.add_argument("-y", "--yes", action="store_true")

    exp = sub.add_parser("export", help="Write a JSON backup.")
    exp.add_argument("--out", default=None, help="Output file (default: linkvault-backup-YYYY-MM-DD.json).")

    imp = sub.add_parser("import", help="Replace all data with a JSON backup.")
    imp.add_argument("file")

    sub.add_parser("stats", help="Show counts and storage usage.")

    st = sub.add_parser("settings", help="Show or change settings.")
    st.add_argument("--theme", choices=("light", "dark", "system"), default=None)
    st.add_argument("--view-mode", choices=("grid", "list"), default=None)

    reset = sub.add_parser("reset", help="Delete all data.")
    reset.add_argument("-y", "--yes", action="store_true")
    return p


def _cmd_add(args, store: EntityStore, cfg: Settings, console: Console) -> int:
    data: Dict[str, object] = {"url": args.url.strip(), "is_favorite": bool(args.favorite)}
    if args.folder:
        data["folder_id"] = _resolve_folder(store, args.folder)

    title, description, thumbnail = args.title, args.description, ""
    if not args.no_fetch and (title is None or description is None):
        try:
            meta = fetch_metadata(
                data["url"],  # type: ignore[arg-type]
                timeout_s=cfg.fetch_timeout_s,
                user_agent=cfg.fetch_user_agent,
                max_bytes=cfg.fetch_max_bytes,
            )
            title = title if title is not None else meta.title
            description = description if description is not None else meta.description
            thumbnail = meta.image
        except MetadataError as e:
            log.warning("Metadata lookup failed for %s: %s", data["url"], e)
    data["title"] = title if title is not None else data["url"]
    data["description"] = description or ""
    data["thumbnail"] = thumbnail

    store.add_link(data)
    link = store.links[-1]
    console.print(f"Added [bold]{link.title}[/bold] ({link.platform}) id={link.id}")
    return 0


def _cmd_edit(args, store: EntityStore, cfg: Settings, console: Console) -> int:
    link_id = _resolve_link(store, args.id)
    partial: Dict[str, object] = {}
    for field_name in ("url", "title", "description", "platform"):
        value = getattr(args, field_name)
        if value is not None:
            partial[field_name] = value
    if args.folder is not None:
        partial["folder_id"] = None if args.folder == NONE_FOLDER else _resolve_folder(store, args.folder)
    if not partial:
        raise ValidationError("nothing to change")
    store.update_link(link_id, partial)
    console.print(f"Updated {link_id}")
    return 0


def _cmd_list(args, store: EntityStore, cfg: Settings, console: Console) -> int:
    folder_id = _resolve_folder(store, args.folder) if args.folder else None
    links = store.visible_links(view=args.view, folder_id=folder_id or "", query=args.query)
    table = Table(title=f"{args.view} ({len(links)})")
    for col in ("id", "title", "platform", "folder", "fav", "url"):
        table.add_column(col, overflow="fold")
    for link in links:
        folder = store.get_folder(link.folder_id) if link.folder_id else None
        table.add_row(
            link.id[:8],
            link.title,
            link.platform,
            folder.name if folder else "",
            "*" if link.is_favorite else "",
            link.url,
        )
    console.print(table)
    return 0


def _cmd_fav(args, store: EntityStore, cfg: Settings, console: Console) -> int:
    link_id = _resolve_link(store, args.id)
    store.toggle_favorite(link_id)
    link = store.get_link(link_id)
    console.print(f"{'Added to' if link and link.is_favorite else 'Removed from'} favorites: {link_id}")
    return 0


def _cmd_rm(args, store: EntityStore, cfg: Settings, console: Console) -> int:
    moved = 0
    for link_id in dict.fromkeys(_resolve_link(store, raw) for raw in args.ids):
        link = store.get_link(link_id)
        if link is None or link.is_deleted:
            continue
        store.delete_link(link_id)
        moved += 1
    skipped = len(args.ids) - moved
    console.print(f"Moved {moved} to the trash" + (f", {skipped} skipped." if skipped else "."))
    return 0


def _cmd_restore(args, store: EntityStore, cfg: Settings, console: Console) -> int:
    link_id = _resolve_link(store, args.id)
    store.restore_link(link_id)
    console.print(f"Restored {link_id}")
    return 0


def _cmd_purge(args, store: EntityStore, cfg: Settings, console: Console) -> int:
    link_id = _resolve_link(store, args.id)
    store.permanently_delete_link(link_id)
    console.print(f"Permanently deleted {link_id}")
    return 0


def _cmd_folders(args, store: EntityStore, cfg: Settings, console: Console) -> int:
    tree = Tree("folders")
    folders = store.folders
    for root in get_root_folders(folders):
        node = tree.add(f"{root.name} [dim]{root.id[:8]} ({count_links_in_folder(root.id, folders, store.links)})[/dim]")
        for child in get_child_folders(root.id, folders):
            node.add(f"{child.name} [dim]{child.id[:8]} ({count_links_in_folder(child.id, folders, store.links)})[/dim]")
    console.print(tree)
    return 0


def _cmd_mkdir(args, store: EntityStore, cfg: Settings, console: Console) -> int:
    parent_id = _resolve_folder(store, args.parent) if args.parent else None
    store.add_folder(
        {
            "name": args.name,
            "description": "",
            "color": args.color,
            "icon": args.icon,
            "parent_id": parent_id,
            "is_platform_folder": False,
        }
    )
    folder = store.folders[-1]
    console.print(f"Created folder [bold]{folder.name}[/bold] id={folder.id}")
    return 0


def _cmd_rename(args, store: EntityStore, cfg: Settings, console: Console) -> int:
    folder_id = _resolve_folder(store, args.id)
    store.update_folder(folder_id, {"name": args.name})
    console.print(f"Renamed {folder_id}")
    return 0


def _cmd_rmdir(args, store: EntityStore, cfg: Settings, console: Console) -> int:
    folder_id = _resolve_folder(store, args.id)
    folder = store.get_folder(folder_id)
    n = count_links_in_folder(folder_id, store.folders, store.links)
    message = f'Delete folder "{folder.name if folder else folder_id}"?'
    if n:
        message += f" It contains {n} link{'s' if n > 1 else ''}; they will not be deleted."
    if not _confirm(args, message):
        return 1
    store.delete_folder(folder_id)
    console.print(f"Deleted folder {folder_id}")
    return 0


def _cmd_move(args, store: EntityStore, cfg: Settings, console: Console) -> int:
    target = None if args.to == NONE_FOLDER else _resolve_folder(store, args.to)
    coordinator = BulkCoordinator(store, _selection(store, args.ids), confirm=lambda m: _confirm(args, m))
    return _report(coordinator.move(target, touch_existing=args.touch_existing), console)


def _cmd_bulk_fav(args, store: EntityStore, cfg: Settings, console: Console) -> int:
    coordinator = BulkCoordinator(store, _selection(store, args.ids))
    return _report(coordinator.favorite(), console)


def _cmd_bulk_rm(args, store: EntityStore, cfg: Settings, console: Console) -> int:
    coordinator = BulkCoordinator(store, _selection(store, args.ids), confirm=lambda m: _confirm(args, m))
    return _report(coordinator.delete(), console)


def _cmd_export(args, store: EntityStore, cfg: Settings, console: Console) -> int:
    out = Path(args.out) if args.out else Path(f"linkvault-backup-{datetime.now(timezone.utc):%Y-%m-%d}.json")
    out.write_text(store.export_data(), encoding="utf-8")
    console.print(f"Exported to {out}")
    return 0


def _cmd_import(args, store: EntityStore, cfg: Settings, console: Console) -> int:
    path = Path(args.file)
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ImportRejectedError(f"cannot read backup file {path}: {e}") from e
    if not store.import_data(text):
        raise ImportRejectedError(f"invalid backup file: {path}")
    console.print(f"Imported {len(store.links)} links and {len(store.folders)} folders from {path}")
    return 0


def _cmd_stats(args, store: EntityStore, cfg: Settings, console: Console) -> int:
    active = [link for link in store.links if not link.is_deleted]
    table = Table(show_header=False)
    table.add_row("links", str(len(active)))
    table.add_row("favorites", str(sum(1 for link in active if link.is_favorite)))
    table.add_row("trash", str(len(store.links) - len(active)))
    table.add_row("folders", str(len(store.folders)))
    table.add_row("storage", f"{format_size(store.persistence.get_storage_size())} of {format_size(cfg.quota_bytes)}")
    console.print(table)
    return 0


def _cmd_settings(args, store: EntityStore, cfg: Settings, console: Console) -> int:
    partial = {}
    if args.theme:
        partial["theme"] = args.theme
    if args.view_mode:
        partial["view_mode"] = args.view_mode
    if partial:
        store.update_settings(partial)
    console.print(f"theme={store.settings.theme} view_mode={store.settings.view_mode}")
    return 0


def _cmd_reset(args, store: EntityStore, cfg: Settings, console: Console) -> int:
    if not _confirm(args, "Delete all data? This cannot be undone."):
        return 1
    store.reset()
    console.print("All data deleted.")
    return 0


_COMMANDS: Dict[str, Callable[..., int]] = {
    "add": _cmd_add,
    "edit": _cmd_edit,
    "list": _cmd_list,
    "fav": _cmd_fav,
    "rm": _cmd_rm,
    "restore": _cmd_restore,
    "purge": _cmd_purge,
    "folders": _cmd_folders,
    "mkdir": _cmd_mkdir,
    "rename": _cmd_rename,
    "rmdir": _cmd_rmdir,
    "move": _cmd_move,
    "bulk-fav": _cmd_bulk_fav,
    "bulk-rm": _cmd_bulk_rm,
    "export": _cmd_export,
    "import": _cmd_import,
    "stats": _cmd_stats,
    "settings": _cmd_settings,
    "reset": _cmd_reset,
}


def _confirm(args, message: str) -> bool:
    if getattr(args, "yes", False):
        return True
    return Confirm.ask(message, default=False)


def _report(result: BulkResult, console: Console) -> int:
    console.print(result.summary())
    for link_id, err in result.failures:
        console.print(f"  {link_id}: {err}")
    return 0 if result.ok else 1


def _selection(store: EntityStore, raw_ids: Sequence[str]) -> Selection:
    return Selection(_resolve_link(store, raw) for raw in raw_ids)


def _resolve_link(store: EntityStore, raw: str) -> str:
    return _resolve_id(raw, [link.id for link in store.links], "link")


def _resolve_folder(store: EntityStore, raw: str) -> str:
    return _resolve_id(raw, [f.id for f in store.folders], "folder")


def _resolve_id(raw: str, ids: Sequence[str], kind: str) -> str:
    """Accept a full id or an unambiguous prefix of one."""
    if raw in ids:
        return raw
    matches = [i for i in ids if i.startswith(raw)]
    if len(matches) == 1:
        return matches[0]
    if not matches:
        raise ValidationError(f"no {kind} matches {raw!r}")
    raise ValidationError(f"{kind} id {raw!r} is ambiguous ({len(matches)} matches)")
