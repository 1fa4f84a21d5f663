import json
import os

from calendula.objects import ItemRef
from calendula.objects import SyncState
from calendula.syncstate import default_state_dir
from calendula.syncstate import SyncStateStore

URI = "https://dav.example.com/calendars/me/work/"


def state(**kwargs):
    values = dict(
        calendar_id="work",
        backend_uri=URI,
        token="http://example.com/sync/1",
        items={"abc": ItemRef(href="/calendars/me/work/abc.ics", etag='"1"')},
    )
    values.update(kwargs)
    return SyncState(**values)


class TestSyncState:
    def test_matches(self):
        assert state().matches("work", URI)
        assert not state().matches("home", URI)
        assert not state().matches("work", URI + "other/")

    def test_uid_for_href(self):
        assert state().uid_for_href("/calendars/me/work/abc.ics") == "abc"
        assert state().uid_for_href("/calendars/me/work/nope.ics") is None

    def test_dict_round_trip(self):
        assert SyncState.from_dict(state().to_dict()) == state()

    def test_from_dict_defaults(self):
        loaded = SyncState.from_dict({"calendar_id": "work", "backend_uri": URI})
        assert loaded.token is None
        assert loaded.token_kind == "sync-token"
        assert loaded.items == {}


class TestStore:
    def test_save_and_load(self, tmp_path):
        store = SyncStateStore(str(tmp_path), account="me@work")
        store.save(state())
        assert store.load("work") == state()
        assert store.load("work", URI) == state()
        assert os.listdir(tmp_path) == ["me%40work"]
        assert os.listdir(tmp_path / "me%40work") == ["work.json"]

    def test_nothing_stored(self, tmp_path):
        assert SyncStateStore(str(tmp_path)).load("work") is None

    def test_other_backend_uri(self, tmp_path):
        store = SyncStateStore(str(tmp_path))
        store.save(state())
        assert store.load("work", "https://elsewhere.example.com/work/") is None

    def test_unreadable_state(self, tmp_path):
        store = SyncStateStore(str(tmp_path))
        store.save(state())
        with open(store._filename("work"), "w") as f:
            f.write("{not json")
        assert store.load("work") is None
        with open(store._filename("work"), "w") as f:
            json.dump({"token": "x"}, f)
        assert store.load("work") is None

    def test_save_replaces(self, tmp_path):
        store = SyncStateStore(str(tmp_path))
        store.save(state())
        store.save(state(token="http://example.com/sync/2", items={}))
        loaded = store.load("work")
        assert loaded.token == "http://example.com/sync/2"
        assert loaded.items == {}
        assert os.listdir(tmp_path / "default") == ["work.json"]

    def test_clear(self, tmp_path):
        store = SyncStateStore(str(tmp_path))
        store.save(state())
        store.clear("work")
        store.clear("work")
        assert store.load("work") is None

    def test_calendar_id_is_quoted(self, tmp_path):
        store = SyncStateStore(str(tmp_path))
        store.save(state(calendar_id="a/b"))
        assert os.listdir(tmp_path / "default") == ["a%2Fb.json"]

    def test_default_state_dir(self, monkeypatch, tmp_path):
        monkeypatch.setenv("XDG_STATE_HOME", str(tmp_path))
        assert default_state_dir() == os.path.join(str(tmp_path), "calendula")
        monkeypatch.delenv("XDG_STATE_HOME")
        monkeypatch.setenv("HOME", "/home/me")
        assert default_state_dir() == "/home/me/.local/state/calendula"
