from datetime import datetime, timezone

import pytest

from linkvault.model import (
    ACTIVE,
    Deleted,
    Link,
    folder_from_dict,
    folder_to_dict,
    format_ts,
    link_from_dict,
    link_to_dict,
    parse_ts,
    settings_from_dict,
)

T0 = datetime(2025, 10, 18, 12, 0, 0, 123000, tzinfo=timezone.utc)


def test_timestamps_use_millisecond_utc_with_z():
    assert format_ts(T0) == "2025-10-18T12:00:00.123Z"
    assert parse_ts("2025-10-18T12:00:00.123Z") == T0
    assert parse_ts("2025-10-18T14:00:00.123+02:00") == T0


def test_lifecycle_variant_drives_deleted_views():
    link = Link(id="l", url="https://x", created_at=T0, updated_at=T0)
    assert link.state == ACTIVE
    assert not link.is_deleted and link.deleted_at is None
    gone = Link(id="l", url="https://x", created_at=T0, updated_at=T0, state=Deleted(T0))
    assert gone.is_deleted and gone.deleted_at == T0


def test_link_wire_form_uses_original_keys():
    link = Link(
        id="l",
        url="https://x.com/a",
        created_at=T0,
        updated_at=T0,
        platform="twitter",
        folder_id="f",
        is_favorite=True,
        state=Deleted(T0),
    )
    data = link_to_dict(link)
    assert data["folderId"] == "f"
    assert data["isFavorite"] is True
    assert data["deletedAt"] == "2025-10-18T12:00:00.123Z"
    assert link_from_dict(data) == link


def test_link_decode_is_lenient_about_optional_fields():
    link = link_from_dict(
        {"id": "l", "url": "https://x", "createdAt": "2025-10-18T12:00:00.123Z", "platform": "myspace"}
    )
    assert link.platform == "other"
    assert link.updated_at == link.created_at
    assert link.title == "" and link.folder_id is None


@pytest.mark.parametrize(
    "data",
    [
        {"url": "https://x", "createdAt": "2025-10-18T12:00:00Z"},
        {"id": "l", "createdAt": "2025-10-18T12:00:00Z"},
        {"id": "l", "url": "https://x"},
    ],
)
def test_link_decode_rejects_missing_required_fields(data):
    with pytest.raises(ValueError):
        link_from_dict(data)


def test_folder_platform_only_kept_for_platform_folders():
    base = {
        "id": "f",
        "name": "GitHub",
        "createdAt": "2025-10-18T12:00:00.000Z",
        "updatedAt": "2025-10-18T12:00:00.000Z",
        "platform": "github",
    }
    assert folder_from_dict(dict(base, isPlatformFolder=True)).platform == "github"
    user = folder_from_dict(dict(base, isPlatformFolder=False))
    assert user.platform is None
    assert "platform" not in folder_to_dict(user)


def test_settings_fall_back_per_field():
    s = settings_from_dict({"theme": "dark", "viewMode": "carousel"})
    assert (s.theme, s.view_mode) == ("dark", "grid")
