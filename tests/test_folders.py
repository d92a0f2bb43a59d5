from datetime import datetime, timezone

import pytest

from linkvault.errors import FolderDepthError, FolderLimitError, ValidationError
from linkvault.folders import (
    MAX_SUB_FOLDERS_PER_FOLDER,
    can_add_sub_folder,
    count_links_in_folder,
    folder_depth,
    get_all_descendant_folder_ids,
    get_child_folders,
    get_root_folders,
    get_sub_folder_count,
    validate_new_folder,
)
from linkvault.model import ACTIVE, Deleted, Folder, Link

T0 = datetime(2025, 10, 18, tzinfo=timezone.utc)


def _f(fid, parent=None, name=None):
    return Folder(id=fid, name=name or fid, created_at=T0, updated_at=T0, parent_id=parent)


def _l(lid, folder_id, deleted=False):
    return Link(
        id=lid,
        url=f"https://example.com/{lid}",
        created_at=T0,
        updated_at=T0,
        folder_id=folder_id,
        state=Deleted(T0) if deleted else ACTIVE,
    )


def test_roots_keep_collection_order():
    folders = [_f("b"), _f("a"), _f("b1", "b")]
    assert [f.id for f in get_root_folders(folders)] == ["b", "a"]


def test_descendants_include_self_and_children():
    folders = [_f("a"), _f("b", "a"), _f("c", "a"), _f("x")]
    assert get_all_descendant_folder_ids("a", folders) == ["a", "b", "c"]
    assert get_all_descendant_folder_ids("x", folders) == ["x"]
    assert get_all_descendant_folder_ids("missing", folders) == ["missing"]


def test_descendants_recurse_past_two_levels_and_survive_cycles():
    deep = [_f("a"), _f("b", "a"), _f("c", "b")]
    assert get_all_descendant_folder_ids("a", deep) == ["a", "b", "c"]
    cyclic = [_f("a", "b"), _f("b", "a")]
    assert sorted(get_all_descendant_folder_ids("a", cyclic)) == ["a", "b"]


def test_fan_out_limit():
    folders = [_f("p")] + [_f(f"c{i}", "p") for i in range(MAX_SUB_FOLDERS_PER_FOLDER - 1)]
    assert get_sub_folder_count("p", folders) == MAX_SUB_FOLDERS_PER_FOLDER - 1
    assert can_add_sub_folder("p", folders)
    folders.append(_f("last", "p"))
    assert not can_add_sub_folder("p", folders)
    with pytest.raises(FolderLimitError):
        validate_new_folder("one more", "p", folders)


def test_depth_limit():
    folders = [_f("a"), _f("b", "a")]
    assert folder_depth("a", folders) == 1
    assert folder_depth("b", folders) == 2
    assert validate_new_folder("  ok  ", "a", folders) == "ok"
    with pytest.raises(FolderDepthError):
        validate_new_folder("too deep", "b", folders)
    with pytest.raises(FolderDepthError):
        validate_new_folder("orphan", "missing", folders)


@pytest.mark.parametrize("name", ["", "   ", None, "x" * 31])
def test_folder_names_are_bounded(name):
    with pytest.raises(ValidationError):
        validate_new_folder(name, None, [])


def test_link_under_sub_folder_counts_for_parent():
    folders = [_f("A"), _f("B", "A")]
    links = [_l("L", "B"), _l("gone", "B", deleted=True), _l("elsewhere", None)]
    assert count_links_in_folder("A", folders, links) == 1
    assert count_links_in_folder("B", folders, links) == 1


def test_children_of_one_parent_only():
    folders = [_f("a"), _f("a1", "a"), _f("b1", "b"), _f("a2", "a")]
    assert [f.id for f in get_child_folders("a", folders)] == ["a1", "a2"]
    assert get_child_folders("a1", folders) == []
