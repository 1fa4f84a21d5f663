"""
HTTP transport.  Nothing in here knows about XML or CalDAV, see
calendula.protocol for that.

    from calendula.protocol import CalDAVProtocol
    from calendula.io import SyncIO

    protocol = CalDAVProtocol(base_url="https://cal.example.com/dav/")
    with SyncIO(timeout=30) as io:
        response = io.execute(protocol.propfind_request("", ["displayname"]))
        results = protocol.parse_propfind(response)
"""

from .base import SyncIOProtocol
from .sync import SyncIO

__all__ = [
    "SyncIOProtocol",
    "SyncIO",
]
