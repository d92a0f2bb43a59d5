from linkvault.origin import OriginStorage
from linkvault.persistence import Persistence
from linkvault.store import EntityStore


def _view(db_path, clock):
    storage = OriginStorage(db_path)
    storage.open()
    s = EntityStore(Persistence(storage), clock=clock)
    s.load_from_storage()
    return s


def test_watching_view_follows_writes_from_another(db_path, clock):
    a = _view(db_path, clock)
    b = _view(db_path, clock)
    try:
        assert [f.id for f in a.folders] == [f.id for f in b.folders]
        b.watch()

        a.add_link({"url": "https://github.com/python/cpython", "title": "cpython"})
        assert b.links == a.links

        a.delete_link(a.links[0].id)
        assert b.links[0].is_deleted

        b.close()
        a.restore_link(a.links[0].id)
        assert b.links[0].is_deleted
    finally:
        b.close()
        a.persistence.storage.close()
        b.persistence.storage.close()


def test_watching_view_reloads_after_reset_elsewhere(db_path, clock):
    a = _view(db_path, clock)
    b = _view(db_path, clock)
    try:
        a.watch()
        b.watch()
        a.add_link({"url": "https://example.com"})
        assert len(b.links) == 1

        a.reset()

        assert a.links == () and b.links == ()
        assert [f.id for f in a.folders] == [f.id for f in b.folders]
        assert all(f.is_platform_folder for f in b.folders)
    finally:
        a.close()
        b.close()
        a.persistence.storage.close()
        b.persistence.storage.close()


def test_unwatched_views_are_last_writer_wins(db_path, clock):
    a = _view(db_path, clock)
    b = _view(db_path, clock)
    try:
        a.add_link({"url": "https://example.com/a"})
        b.add_link({"url": "https://example.com/b"})

        a.load_from_storage()
        assert [link.url for link in a.links] == ["https://example.com/b"]
    finally:
        a.persistence.storage.close()
        b.persistence.storage.close()
