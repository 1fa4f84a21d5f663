import pytest

from fake_caldav import make_ics

from calendula import Client
from calendula.backends import CaldavBackend
from calendula.backends import VdirBackend
from calendula.config import AccountConfig
from calendula.config import CaldavConfig
from calendula.config import VdirConfig
from calendula.lib import error
from calendula.objects import Calendar
from calendula.syncstate import SyncStateStore

HOME = "https://dav.example.com/calendars/me/"


@pytest.fixture
def client(fake):
    account = AccountConfig(name="work", caldav=CaldavConfig(home_uri=HOME))
    return Client(account, io=fake)


class TestDispatch:
    def test_caldav(self, client):
        assert isinstance(client.backend, CaldavBackend)

    def test_vdir(self, tmp_path):
        client = Client(AccountConfig(name="local", vdir=VdirConfig(path=str(tmp_path))))
        assert isinstance(client.backend, VdirBackend)

    def test_caldav_wins_over_vdir(self, fake, tmp_path):
        account = AccountConfig(
            name="both",
            caldav=CaldavConfig(home_uri=HOME),
            vdir=VdirConfig(path=str(tmp_path)),
        )
        assert isinstance(Client(account, io=fake).backend, CaldavBackend)

    def test_neither(self):
        with pytest.raises(error.ConfigurationError):
            Client(AccountConfig(name="empty"))

    def test_same_operations_on_both_backends(self, client, tmp_path):
        local = Client(AccountConfig(name="local", vdir=VdirConfig(path=str(tmp_path))))
        for c in (client, local):
            c.create_calendar(Calendar(id="home", display_name="Home"))
            c.create_item("home", make_ics("abc", "Meeting"))
            assert c.get_item("home", "abc").summary == "Meeting"
            assert [x.id for x in c.list_items("home").items] == ["abc"]
            assert [x.id for x in c.list_events("home")] == ["abc"]
            c.delete_item("home", "abc")
            assert c.list_items("home").items == []
            assert "home" in [x.id for x in c.list_calendars()]
            c.delete_calendar("home")

    def test_context_manager_closes(self, fake, client):
        with client:
            pass
        assert fake.closed


class TestConvenience:
    def test_create_item(self, fake, client):
        item = client.create_item("work", make_ics("abc"))
        assert item.etag is not None
        with pytest.raises(error.ConflictError):
            client.create_item("work", make_ics("abc", "duplicate"))

    def test_create_malformed_item(self, client):
        with pytest.raises(error.MalformedItem):
            client.create_item("work", "BEGIN:VCALENDAR\nEND:VCALENDAR\n")

    def test_update_item(self, fake, client):
        client.create_item("work", make_ics("abc", "Meeting"))
        updated = client.update_item("work", "abc", lambda body: body.replace(b"Meeting", b"Lunch"))
        assert updated.summary == "Lunch"
        assert fake.calendars["work"].objects["abc.ics"][0] == make_ics("abc", "Lunch")
        assert "If-Match" in fake.requests[-1].headers

    def test_update_unchanged(self, fake, client):
        client.create_item("work", make_ics("abc"))
        count = len(fake.requests)
        client.update_item("work", "abc", lambda body: body)
        assert len(fake.requests) == count + 1

    def test_update_conflict(self, fake, client):
        client.create_item("work", make_ics("abc", "Meeting"))

        def edit(body):
            ## somebody else is faster
            fake.add_object("work", "abc.ics", make_ics("abc", "Theirs"))
            return body.replace(b"Meeting", b"Mine")

        with pytest.raises(error.ConflictError):
            client.update_item("work", "abc", edit)
        assert fake.calendars["work"].objects["abc.ics"][0] == make_ics("abc", "Theirs")

    def test_update_cannot_change_uid(self, client):
        client.create_item("work", make_ics("abc"))
        with pytest.raises(error.MalformedItem):
            client.update_item("work", "abc", lambda body: body.replace(b"UID:abc", b"UID:xyz"))

    def test_sync_items(self, fake, client, tmp_path):
        store = SyncStateStore(str(tmp_path), account="work")
        fake.add_object("work", "a.ics", make_ics("a"))

        first = client.sync_items("work", store)
        assert [x.id for x in first.items] == ["a"]
        assert store.load("work").token == fake.token("work")

        fake.add_object("work", "b.ics", make_ics("b"))
        fake.remove_object("work", "a.ics")
        second = client.sync_items("work", store)
        assert [x.id for x in second.items] == ["b"]
        assert second.removed == ["a"]
        assert set(store.load("work").items) == {"b"}

    def test_sync_items_after_reset(self, fake, client, tmp_path):
        store = SyncStateStore(str(tmp_path), account="work")
        fake.add_object("work", "a.ics", make_ics("a"))
        client.sync_items("work", store)
        fake.sync_failure = (410, b"")
        result = client.sync_items("work", store)
        assert result.sync_reset
        assert [x.id for x in result.items] == ["a"]
