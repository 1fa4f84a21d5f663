"""
Data passed between the protocol layer, the I/O layer and the auth
strategies.  Requests and responses are immutable, the parse results
are plain containers filled by :mod:`calendula.protocol.xml_parsers`.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from http import HTTPStatus
from typing import Any


class DAVMethod(Enum):
    """The HTTP methods a CalDAV client needs."""

    GET = "GET"
    PUT = "PUT"
    DELETE = "DELETE"
    PROPFIND = "PROPFIND"
    PROPPATCH = "PROPPATCH"
    REPORT = "REPORT"
    MKCALENDAR = "MKCALENDAR"


@dataclass(frozen=True)
class DAVRequest:
    """
    A request that is yet to be sent.  ``url`` is always absolute,
    ``body`` is None for GET and DELETE.
    """

    method: DAVMethod
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes | None = None

    def with_header(self, name: str, value: str) -> "DAVRequest":
        return replace(self, headers={**self.headers, name: value})

    def with_url(self, url: str) -> "DAVRequest":
        """The same request towards another URL, i.e. after a redirect."""
        return replace(self, url=url)


@dataclass(frozen=True)
class DAVResponse:
    """
    A response as received.  ``url`` is the URL the request was sent
    to, redirects are not followed by the I/O layer.
    """

    status: int
    headers: dict[str, str]
    body: bytes
    url: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def is_multistatus(self) -> bool:
        return self.status == 207

    @property
    def is_redirect(self) -> bool:
        return self.status in (301, 302, 303, 307, 308)

    @property
    def reason(self) -> str:
        try:
            return HTTPStatus(self.status).phrase
        except ValueError:
            return "Unknown"

    def header(self, name: str) -> str | None:
        """Case-insensitive header lookup."""
        name = name.lower()
        for key, value in self.headers.items():
            if key.lower() == name:
                return value
        return None


@dataclass
class PropfindResult:
    """
    One DAV:response of a multistatus.

    Attributes:
        href: unquoted URL path of the resource
        properties: Clark-notation property name -> value.  Properties
            the server reported as missing are left out.
        status: status of the response element itself (default 200)
    """

    href: str
    properties: dict[str, Any] = field(default_factory=dict)
    status: int = 200


@dataclass
class CalendarQueryResult:
    """
    One calendar object from a calendar-query, calendar-multiget or
    sync-collection REPORT.  ``calendar_data`` holds the bytes exactly
    as delivered, and is None when the server did not include them.
    """

    href: str
    etag: str | None = None
    calendar_data: bytes | None = None
    status: int = 200


@dataclass
class SyncCollectionResult:
    changed: list[CalendarQueryResult] = field(default_factory=list)
    ## hrefs reported with status 404
    deleted: list[str] = field(default_factory=list)
    sync_token: str | None = None


@dataclass
class MultistatusResponse:
    responses: list[PropfindResult] = field(default_factory=list)
    ## only present in sync-collection answers
    sync_token: str | None = None
