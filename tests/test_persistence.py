from lcapbridge.client.persistence import ORIGIN_KEY, PROCEEDED_KEY, READY_KEY, SessionPersistence
from lcapbridge.host.storage import MemoryStorage


def test_fresh_storage_has_no_markers():
    persistence = SessionPersistence(MemoryStorage())
    assert not persistence.was_ready
    assert not persistence.has_proceeded
    assert persistence.remembered_origin("https://platform.example.com") == "https://platform.example.com"


def test_mark_connected_and_proceeded():
    storage = MemoryStorage()
    persistence = SessionPersistence(storage)
    persistence.mark_connected("https://platform.example.com")
    persistence.mark_proceeded()
    assert storage[READY_KEY] == "1"
    assert storage[ORIGIN_KEY] == "https://platform.example.com"
    assert storage[PROCEEDED_KEY] == "1"
    assert persistence.was_ready
    assert persistence.has_proceeded
    assert persistence.remembered_origin("fallback") == "https://platform.example.com"


def test_invalidate_clears_proceeded_with_ready():
    storage = MemoryStorage({"other": "x"})
    persistence = SessionPersistence(storage)
    persistence.mark_connected("https://platform.example.com")
    persistence.mark_proceeded()
    persistence.invalidate()
    assert not persistence.was_ready
    assert not persistence.has_proceeded
    assert dict(storage) == {"other": "x"}
    persistence.invalidate()
