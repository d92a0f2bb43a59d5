import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from linkvault.errors import QuotaExceededError
from linkvault.origin import OriginStorage
from linkvault.persistence import (
    FOLDERS_KEY,
    LINKS_KEY,
    SETTINGS_KEY,
    Persistence,
    format_size,
)

LINK = {
    "id": "l1",
    "url": "https://github.com/",
    "title": "GitHub",
    "description": "",
    "thumbnail": "",
    "platform": "github",
    "folderId": None,
    "isFavorite": False,
    "deletedAt": None,
    "createdAt": "2025-10-18T12:00:00.000Z",
    "updatedAt": "2025-10-18T12:00:00.000Z",
}
FOLDER = {
    "id": "f1",
    "name": "Reading",
    "description": "",
    "color": "#F59E0B",
    "icon": "Folder",
    "parentId": None,
    "isPlatformFolder": False,
    "createdAt": "2025-10-18T12:00:00.000Z",
    "updatedAt": "2025-10-18T12:00:00.000Z",
}
SETTINGS = {"theme": "dark", "viewMode": "list"}


def _seed(p: Persistence) -> None:
    p.set_item(LINKS_KEY, [LINK])
    p.set_item(FOLDERS_KEY, [FOLDER])
    p.set_item(SETTINGS_KEY, SETTINGS)


def _raw(p: Persistence):
    return {k: p.storage.get(k) for k in (LINKS_KEY, FOLDERS_KEY, SETTINGS_KEY)}


def test_get_item_treats_corrupt_payload_as_absent(persistence):
    persistence.storage.set(LINKS_KEY, "{not json")
    assert persistence.get_item(LINKS_KEY) is None
    assert persistence.get_item("never-written") is None


def test_set_item_reports_quota_errors(tmp_path: Path):
    with OriginStorage(tmp_path / "tiny.sqlite", quota_bytes=64) as o:
        p = Persistence(o)
        with pytest.raises(QuotaExceededError):
            p.set_item(LINKS_KEY, [LINK])
        assert p.get_item(LINKS_KEY) is None


def test_export_bundles_everything_with_a_version_marker(persistence):
    _seed(persistence)
    doc = json.loads(persistence.export_data(now=datetime(2025, 10, 19, tzinfo=timezone.utc)))
    assert doc["version"] == 1
    assert doc["exportedAt"] == "2025-10-19T00:00:00.000Z"
    assert doc["links"] == [LINK]
    assert doc["folders"] == [FOLDER]
    assert doc["settings"] == SETTINGS


def test_export_of_empty_storage_uses_defaults(persistence):
    doc = json.loads(persistence.export_data())
    assert doc["links"] == [] and doc["folders"] == []
    assert doc["settings"] == {"theme": "system", "viewMode": "grid"}


@pytest.mark.parametrize(
    "payload",
    [
        "not json at all",
        json.dumps({"links": [], "settings": {}}),  # folders missing
        json.dumps({"links": {}, "folders": [], "settings": {}}),
        json.dumps({"links": [], "folders": "nope", "settings": {}}),
        json.dumps({"links": [], "folders": [], "settings": []}),
        json.dumps({"links": [{"url": "https://x"}], "folders": [], "settings": {}}),
        json.dumps({"links": [1], "folders": [], "settings": {}}),
        json.dumps({"links": [{"id": "l", "url": "https://x", "createdAt": "yesterday"}], "folders": [], "settings": {}}),
        json.dumps([1, 2, 3]),
    ],
)
def test_import_rejects_bad_snapshots_without_touching_storage(persistence, payload):
    _seed(persistence)
    before = _raw(persistence)
    assert persistence.import_data(payload) is False
    assert _raw(persistence) == before


def test_import_replaces_all_three_records(persistence):
    _seed(persistence)
    other = dict(LINK, id="l2", url="https://medium.com/x", platform="medium")
    ok = persistence.import_data(json.dumps({"links": [other], "folders": [], "settings": {"theme": "light"}}))
    assert ok is True
    assert [x["id"] for x in persistence.get_item(LINKS_KEY)] == ["l2"]
    assert persistence.get_item(FOLDERS_KEY) == []
    assert persistence.get_item(SETTINGS_KEY) == {"theme": "light", "viewMode": "grid"}


def test_import_that_does_not_fit_is_rejected(tmp_path: Path):
    with OriginStorage(tmp_path / "small.sqlite", quota_bytes=1200) as o:
        p = Persistence(o)
        _seed(p)
        before = _raw(p)
        many = [dict(LINK, id=f"l{i}") for i in range(50)]
        assert p.import_data(json.dumps({"links": many, "folders": [], "settings": {}})) is False
        assert _raw(p) == before


def test_storage_size_counts_only_our_keys(persistence):
    persistence.storage.set("someone-else", "x" * 100)
    persistence.set_item(SETTINGS_KEY, SETTINGS)
    raw = persistence.storage.get(SETTINGS_KEY)
    assert persistence.get_storage_size() == len(SETTINGS_KEY) + len(raw)


def test_clear_removes_only_our_keys(persistence):
    persistence.storage.set("someone-else", "keep")
    _seed(persistence)
    persistence.clear()
    assert persistence.storage.keys() == ["someone-else"]


def test_subscribe_only_reports_our_keys(db_path: Path, persistence):
    changed = []
    unsubscribe = persistence.subscribe(changed.append)
    with OriginStorage(db_path) as other:
        other.set("someone-else", "1")
        other.set(LINKS_KEY, "[]")
        other.clear()
        unsubscribe()
        other.set(FOLDERS_KEY, "[]")
    assert changed == [LINKS_KEY, None]


def test_format_size():
    assert format_size(512) == "0.50 KB"
    assert format_size(3 * 1024 * 1024) == "3.00 MB"


def test_remove_item(persistence):
    _seed(persistence)
    persistence.remove_item(SETTINGS_KEY)
    persistence.remove_item(SETTINGS_KEY)
    assert persistence.get_item(SETTINGS_KEY) is None
    assert persistence.get_item(LINKS_KEY) == [LINK]
