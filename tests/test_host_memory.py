import pytest

from lcapbridge.errors import DataCloneError
from lcapbridge.host.context import origin_matches, origin_of
from lcapbridge.host.memory import WindowHost
from lcapbridge.host.storage import FileSessionStorage

APP_URL = "http://localhost:3000/"
PLATFORM_URL = "https://platform.example.com/app"


@pytest.mark.parametrize(
    ("url", "origin"),
    [
        ("https://platform.example.com/app?x=1", "https://platform.example.com"),
        ("https://Platform.Example.com:443/", "https://platform.example.com"),
        ("http://localhost:3000/", "http://localhost:3000"),
        ("about:blank", "null"),
        ("", "null"),
    ],
)
def test_origin_of(url, origin):
    assert origin_of(url) == origin


def test_origin_matches():
    assert origin_matches("*", "https://a.example")
    assert origin_matches("https://a.example/path", "https://a.example")
    assert not origin_matches("https://a.example", "https://a.example:8443")


@pytest.mark.asyncio
async def test_open_needs_user_activation():
    host = WindowHost()
    tab = host.create_context(APP_URL, name="app")
    assert tab.open(PLATFORM_URL, "popup") is None
    assert host.get("popup") is None
    with host.user_activation():
        handle = tab.open(PLATFORM_URL, "popup")
    assert handle is not None
    assert handle.name == "popup"
    assert host.get("popup").opener is tab


@pytest.mark.asyncio
async def test_open_reuses_named_context_without_activation():
    host = WindowHost()
    tab = host.create_context(APP_URL, name="app")
    with host.user_activation():
        first = tab.open(PLATFORM_URL, "popup")
    again = tab.open(PLATFORM_URL, "popup")
    assert again == first
    assert tab.find("popup") == first
    assert tab.find("app") is None
    assert tab.find("missing") is None


@pytest.mark.asyncio
async def test_delivery_is_asynchronous_and_cloned():
    host = WindowHost()
    tab = host.create_context(APP_URL, name="app")
    other = host.create_context(PLATFORM_URL, name="platform")
    received = []
    other.add_event_listener(received.append)

    payload = {"rows": [1, 2]}
    tab.find("platform").post_message(payload, "https://platform.example.com")
    assert received == []
    await host.settle()

    assert len(received) == 1
    event = received[0]
    assert event.origin == "http://localhost:3000"
    assert event.data == payload
    assert event.data is not payload
    assert event.source.name == "app"
    assert host.sent(target="platform") == [payload]


@pytest.mark.asyncio
async def test_delivery_drops_on_origin_mismatch_or_closed_target():
    host = WindowHost()
    tab = host.create_context(APP_URL, name="app")
    other = host.create_context(PLATFORM_URL, name="platform")
    received = []
    other.add_event_listener(received.append)
    handle = tab.find("platform")

    handle.post_message({"n": 1}, "https://evil.example")
    other.close()
    handle.post_message({"n": 2}, "*")
    await host.settle()

    assert received == []
    assert host.trace == []
    assert handle.closed


@pytest.mark.asyncio
async def test_uncloneable_post_raises():
    host = WindowHost()
    tab = host.create_context(APP_URL, name="app")
    host.create_context(PLATFORM_URL, name="platform")
    with pytest.raises(DataCloneError):
        tab.find("platform").post_message({"fn": print}, "*")


@pytest.mark.asyncio
async def test_failing_listener_does_not_stop_others():
    host = WindowHost()
    tab = host.create_context(APP_URL, name="app")
    other = host.create_context(PLATFORM_URL, name="platform")
    seen = []

    def _broken(event):
        raise RuntimeError("listener bug")

    async def _async_ok(event):
        seen.append(event.data)

    other.add_event_listener(_broken)
    other.add_event_listener(_async_ok)
    tab.find("platform").post_message("hi", "*")
    await host.settle()
    assert seen == ["hi"]


def test_reload_clears_page_state_but_keeps_session_storage():
    loads = []
    host = WindowHost()
    host.register_page(APP_URL, loads.append)
    tab = host.create_context(APP_URL, name="app")
    tab.namespace["x"] = 1
    tab.session_storage["k"] = "v"
    tab.add_event_listener(lambda event: None)

    tab.reload()

    assert tab.namespace == {}
    assert tab.listener_count == 0
    assert tab.session_storage["k"] == "v"
    assert loads == [tab, tab]


def test_create_context_rejects_duplicate_live_name():
    host = WindowHost()
    host.create_context(APP_URL, name="app")
    with pytest.raises(ValueError):
        host.create_context(APP_URL, name="app")
    assert host.create_context(APP_URL).name.startswith("tab-")


def test_file_session_storage_persists(tmp_path):
    path = tmp_path / "sessions" / "app.json"
    storage = FileSessionStorage(path)
    storage["rb_nonce"] = "1-2-3-4"
    storage["lcap.ready"] = "1"
    del storage["lcap.ready"]

    reopened = FileSessionStorage(path)
    assert dict(reopened) == {"rb_nonce": "1-2-3-4"}


def test_file_session_storage_tolerates_garbage(tmp_path):
    path = tmp_path / "app.json"
    path.write_text("[not json")
    assert dict(FileSessionStorage(path)) == {}
