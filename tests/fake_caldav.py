"""
An in-memory CalDAV server implementing the SyncIO interface.

It understands just enough of RFC 4791, RFC 4918 and RFC 6578 to
exercise the backends: PROPFIND, REPORT (calendar-query,
calendar-multiget, sync-collection), GET, PUT, DELETE, MKCALENDAR
and PROPPATCH, with ETag preconditions.  Every request is recorded
in ``requests``.
"""

import itertools
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote, unquote, urlparse

from lxml import etree

from calendula.protocol.types import DAVRequest, DAVResponse

DAV = "DAV:"
CALDAV = "urn:ietf:params:xml:ns:caldav"
APPLE = "http://apple.com/ns/ical/"
CS = "http://calendarserver.org/ns/"

NSMAP = {"D": DAV, "C": CALDAV, "I": APPLE, "CS": CS}


def tag(ns: str, name: str) -> str:
    return "{%s}%s" % (ns, name)


def make_ics(uid: str, summary: str = "Meeting", comp: str = "VEVENT") -> bytes:
    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        "PRODID:-//calendula//tests//EN",
        f"BEGIN:{comp}",
        f"UID:{uid}",
        "DTSTAMP:20250101T100000Z",
        "DTSTART:20250102T100000Z",
        f"SUMMARY:{summary}",
        f"END:{comp}",
        "END:VCALENDAR",
        "",
    ]
    return "\r\n".join(lines).encode("utf-8")


class FakeCalendar:
    def __init__(self, displayname=None, description=None, color=None):
        self.displayname = displayname
        self.description = description
        self.color = color
        ## name -> (body, etag)
        self.objects: Dict[str, Tuple[bytes, str]] = {}
        ## (revision, name) for every change
        self.changes: List[Tuple[int, str]] = []
        self.revision = 0

    def touch(self, name: str) -> None:
        self.revision += 1
        self.changes.append((self.revision, name))


class FakeCalDAVServer:
    def __init__(
        self,
        base: str = "https://dav.example.com",
        sync_support: bool = True,
        data_in_sync: bool = True,
        etag_on_put: bool = True,
        collection_tags: bool = True,
    ):
        self.base = base
        self.principal = "/principals/me/"
        self.home = "/calendars/me/"
        self.server_root = "/dav/"
        self.calendars: Dict[str, FakeCalendar] = {}
        self.requests: List[DAVRequest] = []
        self.sync_support = sync_support
        self.data_in_sync = data_in_sync
        self.etag_on_put = etag_on_put
        ## without, calendars carry neither getctag nor getetag
        self.collection_tags = collection_tags
        ## when set, sync-collection fails with (status, body)
        self.sync_failure: Optional[Tuple[int, bytes]] = None
        self.redirects: Dict[str, str] = {"/.well-known/caldav": self.server_root}
        self._etags = itertools.count(1)
        self.closed = False

    ## Setting up content

    def add_calendar(self, calendar_id: str, **kwargs) -> FakeCalendar:
        self.calendars[calendar_id] = FakeCalendar(**kwargs)
        return self.calendars[calendar_id]

    def add_object(self, calendar_id: str, name: str, body: bytes) -> str:
        etag = '"%i"' % next(self._etags)
        calendar = self.calendars[calendar_id]
        calendar.objects[name] = (body, etag)
        calendar.touch(name)
        return etag

    def remove_object(self, calendar_id: str, name: str) -> None:
        calendar = self.calendars[calendar_id]
        del calendar.objects[name]
        calendar.touch(name)

    def href(self, calendar_id: str, name: str = "") -> str:
        return quote(f"{self.home}{calendar_id}/{name}")

    def token(self, calendar_id: str) -> str:
        return f"http://fake.example.com/sync/{calendar_id}/{self.calendars[calendar_id].revision}"

    ## SyncIO interface

    def execute(self, request: DAVRequest) -> DAVResponse:
        self.requests.append(request)
        path = unquote(urlparse(request.url).path)
        if path in self.redirects:
            return self._response(301, headers={"Location": self.redirects[path]})
        handler = getattr(self, "_" + request.method.value.lower())
        return handler(request, path)

    def close(self) -> None:
        self.closed = True

    ## Helpers

    def _response(self, status: int, body: bytes = b"", headers=None) -> DAVResponse:
        return DAVResponse(status=status, headers=headers or {}, body=body)

    def _locate(self, path: str) -> Tuple[Optional[FakeCalendar], Optional[str], Optional[str]]:
        if not path.startswith(self.home) or path == self.home:
            return (None, None, None)
        rest = path[len(self.home):]
        calendar_id, _, name = rest.partition("/")
        return (self.calendars.get(calendar_id), calendar_id, name)

    def _multistatus(self) -> etree._Element:
        return etree.Element(tag(DAV, "multistatus"), nsmap=NSMAP)

    def _add_response(self, ms, href, found: dict, missing=(), status: Optional[int] = None):
        response = etree.SubElement(ms, tag(DAV, "response"))
        etree.SubElement(response, tag(DAV, "href")).text = href
        if status is not None:
            etree.SubElement(response, tag(DAV, "status")).text = f"HTTP/1.1 {status} X"
            return response
        propstat = etree.SubElement(response, tag(DAV, "propstat"))
        prop = etree.SubElement(propstat, tag(DAV, "prop"))
        for name, value in found.items():
            elem = etree.SubElement(prop, name)
            if isinstance(value, list):
                for child in value:
                    etree.SubElement(elem, child)
            elif isinstance(value, tuple):
                etree.SubElement(elem, tag(DAV, "href")).text = value[1]
            else:
                elem.text = value
        etree.SubElement(propstat, tag(DAV, "status")).text = "HTTP/1.1 200 OK"
        if missing:
            propstat = etree.SubElement(response, tag(DAV, "propstat"))
            prop = etree.SubElement(propstat, tag(DAV, "prop"))
            for name in missing:
                etree.SubElement(prop, name)
            etree.SubElement(propstat, tag(DAV, "status")).text = "HTTP/1.1 404 Not Found"
        return response

    def _props_response(self, ms, href, available: dict, requested: List[str]):
        found = {k: v for k, v in available.items() if k in requested and v is not None}
        missing = [k for k in requested if k not in found]
        self._add_response(ms, href, found, missing)

    def _done(self, ms, status: int = 207) -> DAVResponse:
        return self._response(
            status,
            etree.tostring(ms, xml_declaration=True, encoding="utf-8"),
            {"Content-Type": "application/xml; charset=utf-8"},
        )

    def _calendar_props(self, calendar_id: str) -> dict:
        calendar = self.calendars[calendar_id]
        props = {
            tag(DAV, "resourcetype"): [tag(DAV, "collection"), tag(CALDAV, "calendar")],
            tag(DAV, "displayname"): calendar.displayname,
            tag(CALDAV, "calendar-description"): calendar.description,
            tag(APPLE, "calendar-color"): calendar.color,
        }
        if self.collection_tags:
            props[tag(CS, "getctag")] = f"ctag-{calendar.revision}"
            props[tag(DAV, "getetag")] = f'"col-{calendar.revision}"'
        if self.sync_support:
            props[tag(DAV, "sync-token")] = self.token(calendar_id)
        return props

    def _object_props(self, calendar: FakeCalendar, name: str, with_data: bool = True) -> dict:
        body, etag = calendar.objects[name]
        props = {tag(DAV, "getetag"): etag}
        if with_data:
            props[tag(CALDAV, "calendar-data")] = body.decode("utf-8")
        return props

    ## Methods

    def _propfind(self, request: DAVRequest, path: str) -> DAVResponse:
        tree = etree.fromstring(request.body)
        requested = [x.tag for x in tree.find(tag(DAV, "prop"))]
        depth = request.headers.get("Depth", "0")
        ms = self._multistatus()

        if path == self.server_root:
            available = {tag(DAV, "current-user-principal"): ("href", self.principal)}
        elif path == self.principal:
            available = {tag(CALDAV, "calendar-home-set"): ("href", self.home)}
        elif path == self.home:
            self._props_response(
                ms,
                quote(self.home),
                {tag(DAV, "resourcetype"): [tag(DAV, "collection")]},
                requested,
            )
            if depth == "1":
                for calendar_id in self.calendars:
                    self._props_response(
                        ms, self.href(calendar_id), self._calendar_props(calendar_id), requested
                    )
            return self._done(ms)
        else:
            calendar, calendar_id, name = self._locate(path)
            if calendar is None or name:
                return self._response(404)
            available = self._calendar_props(calendar_id)
        self._props_response(ms, quote(path), available, requested)
        return self._done(ms)

    def _report(self, request: DAVRequest, path: str) -> DAVResponse:
        calendar, calendar_id, name = self._locate(path)
        if calendar is None:
            return self._response(404)
        tree = etree.fromstring(request.body)
        ms = self._multistatus()

        if tree.tag == tag(CALDAV, "calendar-query"):
            comp_filters = tree.findall(".//" + tag(CALDAV, "comp-filter"))
            comp = comp_filters[1].get("name") if len(comp_filters) > 1 else None
            text_match = tree.find(".//" + tag(CALDAV, "text-match"))
            uid = text_match.text if text_match is not None else None
            for obj_name, (body, etag) in calendar.objects.items():
                text = body.decode("utf-8")
                if comp and f"BEGIN:{comp}" not in text:
                    continue
                if uid is not None and f"UID:{uid}\r\n" not in text:
                    continue
                self._add_response(
                    ms, self.href(calendar_id, obj_name), self._object_props(calendar, obj_name)
                )
            return self._done(ms)

        if tree.tag == tag(CALDAV, "calendar-multiget"):
            for href_elem in tree.findall(tag(DAV, "href")):
                href = unquote(href_elem.text)
                obj_name = href.rsplit("/", 1)[-1]
                if obj_name in calendar.objects:
                    self._add_response(
                        ms, quote(href), self._object_props(calendar, obj_name)
                    )
                else:
                    self._add_response(ms, quote(href), {}, status=404)
            return self._done(ms)

        if tree.tag == tag(DAV, "sync-collection"):
            if self.sync_failure:
                status, body = self.sync_failure
                return self._response(status, body)
            token = tree.find(tag(DAV, "sync-token")).text
            if token:
                try:
                    since = int(token.rsplit("/", 1)[-1])
                except ValueError:
                    return self._response(403, VALID_SYNC_TOKEN_ERROR)
            else:
                since = 0
            names = []
            for revision, obj_name in calendar.changes:
                if revision > since and obj_name not in names:
                    names.append(obj_name)
            for obj_name in names:
                href = self.href(calendar_id, obj_name)
                if obj_name in calendar.objects:
                    self._add_response(
                        ms, href, self._object_props(calendar, obj_name, self.data_in_sync)
                    )
                else:
                    self._add_response(ms, href, {}, status=404)
            etree.SubElement(ms, tag(DAV, "sync-token")).text = self.token(calendar_id)
            return self._done(ms)

        return self._response(501)

    def _get(self, request: DAVRequest, path: str) -> DAVResponse:
        calendar, calendar_id, name = self._locate(path)
        if calendar is None or name not in calendar.objects:
            return self._response(404)
        body, etag = calendar.objects[name]
        return self._response(200, body, {"ETag": etag, "Content-Type": "text/calendar"})

    def _put(self, request: DAVRequest, path: str) -> DAVResponse:
        calendar, calendar_id, name = self._locate(path)
        if calendar is None or not name:
            return self._response(409)
        existing = calendar.objects.get(name)
        if_match = request.headers.get("If-Match")
        if_none_match = request.headers.get("If-None-Match")
        if if_match is not None and (existing is None or existing[1] != if_match):
            return self._response(412)
        if if_none_match == "*" and existing is not None:
            return self._response(412)
        etag = self.add_object(calendar_id, name, request.body)
        headers = {"ETag": etag} if self.etag_on_put else {}
        return self._response(204 if existing else 201, headers=headers)

    def _delete(self, request: DAVRequest, path: str) -> DAVResponse:
        calendar, calendar_id, name = self._locate(path)
        if calendar is None:
            return self._response(404)
        if not name:
            del self.calendars[calendar_id]
            return self._response(204)
        existing = calendar.objects.get(name)
        if existing is None:
            return self._response(404)
        if_match = request.headers.get("If-Match")
        if if_match is not None and existing[1] != if_match:
            return self._response(412)
        self.remove_object(calendar_id, name)
        return self._response(204)

    def _mkcalendar(self, request: DAVRequest, path: str) -> DAVResponse:
        calendar, calendar_id, name = self._locate(path)
        if calendar is not None:
            return self._response(405)
        tree = etree.fromstring(request.body)

        def text(t):
            elem = tree.find(".//" + t)
            return elem.text if elem is not None else None

        self.add_calendar(
            calendar_id,
            displayname=text(tag(DAV, "displayname")),
            description=text(tag(CALDAV, "calendar-description")),
            color=text(tag(APPLE, "calendar-color")),
        )
        return self._response(201)

    def _proppatch(self, request: DAVRequest, path: str) -> DAVResponse:
        calendar, calendar_id, name = self._locate(path)
        if calendar is None or name:
            return self._response(404)
        tree = etree.fromstring(request.body)
        found = {}
        for elem in tree.find(tag(DAV, "set")).find(tag(DAV, "prop")):
            attribute = {
                tag(DAV, "displayname"): "displayname",
                tag(CALDAV, "calendar-description"): "description",
                tag(APPLE, "calendar-color"): "color",
            }[elem.tag]
            setattr(calendar, attribute, elem.text)
            found[elem.tag] = ""
        ms = self._multistatus()
        self._add_response(ms, quote(path), found)
        return self._done(ms)


VALID_SYNC_TOKEN_ERROR = (
    b'<?xml version="1.0" encoding="utf-8"?>'
    b'<D:error xmlns:D="DAV:"><D:valid-sync-token/></D:error>'
)
