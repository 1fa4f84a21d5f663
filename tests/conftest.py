import pytest

from fake_caldav import FakeCalDAVServer

from calendula.backends.caldav import CaldavBackend
from calendula.davclient import DAVClient
from calendula.objects import ServerLocation

HOME = "https://dav.example.com/calendars/me/"


@pytest.fixture
def fake():
    server = FakeCalDAVServer()
    server.add_calendar("work", displayname="Work", color="#ff0000")
    return server


@pytest.fixture
def backend(fake):
    client = DAVClient(HOME, io=fake)
    return CaldavBackend(client, ServerLocation(home_uri=HOME))
