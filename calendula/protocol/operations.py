"""
The request side of the sans-I/O layer.

:class:`CalDAVProtocol` turns calendar operations into
:class:`DAVRequest` objects and hands response bodies to the parsers.
It never touches the network, the I/O layer executes the requests and
the auth strategy decorates them on the way out.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from calendula.lib.url import URL

from .types import (
    CalendarQueryResult,
    DAVMethod,
    DAVRequest,
    DAVResponse,
    MultistatusResponse,
    PropfindResult,
    SyncCollectionResult,
)
from .xml_builders import (
    build_calendar_multiget_body,
    build_calendar_query_body,
    build_mkcalendar_body,
    build_propfind_body,
    build_proppatch_body,
    build_sync_collection_body,
)
from .xml_parsers import (
    parse_calendar_query_response,
    parse_multistatus,
    parse_propfind_response,
    parse_sync_collection_response,
)

XML_CONTENT_TYPE = "application/xml; charset=utf-8"
ICAL_CONTENT_TYPE = "text/calendar; charset=utf-8"


class CalDAVProtocol:
    """
    Builds CalDAV requests and parses the responses, without I/O.

    Example::

        protocol = CalDAVProtocol(base_url="https://cal.example.com/dav/")
        request = protocol.propfind_request("calendars/", ["displayname"], depth=1)
        response = io.execute(request)
        results = protocol.parse_propfind(response)

    Paths may be relative to ``base_url``, absolute paths on the same
    server, or full URLs.
    """

    def __init__(
        self,
        base_url: str = "",
        headers: Optional[Dict[str, str]] = None,
        huge_tree: bool = False,
    ):
        self.base_url = URL(base_url or "")
        ## i.e. User-Agent, sent with every request
        self.extra_headers = dict(headers or {})
        self.huge_tree = huge_tree

    def _resolve_url(self, path: str) -> str:
        return str(self.base_url.join(path))

    def _request(
        self,
        method: DAVMethod,
        path: str,
        body: Optional[bytes] = None,
        content_type: Optional[str] = XML_CONTENT_TYPE,
        headers: Optional[Dict[str, Optional[str]]] = None,
    ) -> DAVRequest:
        """Common request factory, headers with a None value are left out."""
        req_headers = dict(self.extra_headers)
        if content_type:
            req_headers["Content-Type"] = content_type
        for name, value in (headers or {}).items():
            if value is not None:
                req_headers[name] = value
        return DAVRequest(
            method=method,
            url=self._resolve_url(path),
            headers=req_headers,
            body=body,
        )

    ## Request builders

    def report_request(self, path: str, body: bytes, depth: int = 1) -> DAVRequest:
        """Build a REPORT request around an already built body."""
        return self._request(DAVMethod.REPORT, path, body, headers={"Depth": str(depth)})

    def propfind_request(
        self,
        path: str,
        props: Optional[List[str]] = None,
        depth: int = 0,
    ) -> DAVRequest:
        """
        Build a PROPFIND request.

        Args:
            path: Resource path or URL
            props: Property names to retrieve, unknown names are skipped
            depth: Depth header value (0 or 1)
        """
        body = build_propfind_body(props)
        return self._request(DAVMethod.PROPFIND, path, body, headers={"Depth": str(depth)})

    def proppatch_request(
        self,
        path: str,
        set_props: Optional[Dict[str, Any]] = None,
        remove_props: Optional[List[str]] = None,
    ) -> DAVRequest:
        body = build_proppatch_body(set_props, remove_props)
        return self._request(DAVMethod.PROPPATCH, path, body)

    def calendar_query_request(
        self,
        path: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        comp_filter: Optional[str] = None,
        uid: Optional[str] = None,
        include_data: bool = True,
    ) -> DAVRequest:
        """
        Build a calendar-query REPORT towards a calendar collection.
        See :func:`build_calendar_query_body` for the filter rules.
        """
        body = build_calendar_query_body(
            start=start,
            end=end,
            comp_filter=comp_filter,
            uid=uid,
            include_data=include_data,
        )
        return self.report_request(path, body)

    def calendar_multiget_request(self, path: str, hrefs: List[str]) -> DAVRequest:
        return self.report_request(path, build_calendar_multiget_body(hrefs))

    def sync_collection_request(
        self,
        path: str,
        sync_token: Optional[str] = None,
        include_data: bool = True,
    ) -> DAVRequest:
        """
        Build a sync-collection REPORT.  A missing token asks for the
        complete collection.
        """
        ## RFC 6578 requires Depth: 0 for sync-collection, the level goes
        ## into the body
        body = build_sync_collection_body(sync_token, include_data)
        return self.report_request(path, body, depth=0)

    def mkcalendar_request(
        self,
        path: str,
        displayname: Optional[str] = None,
        description: Optional[str] = None,
        color: Optional[str] = None,
        supported_components: Optional[List[str]] = None,
    ) -> DAVRequest:
        body = build_mkcalendar_body(
            displayname=displayname,
            description=description,
            color=color,
            supported_components=supported_components,
        )
        return self._request(DAVMethod.MKCALENDAR, path, body)

    def get_request(
        self,
        path: str,
        headers: Optional[Dict[str, str]] = None,
    ) -> DAVRequest:
        return self._request(DAVMethod.GET, path, content_type=None, headers=headers)

    def put_request(
        self,
        path: str,
        data: bytes,
        content_type: str = ICAL_CONTENT_TYPE,
        if_match: Optional[str] = None,
        if_none_match: bool = False,
    ) -> DAVRequest:
        """
        Build a PUT request to create or update a resource.

        Args:
            path: Resource path or URL
            data: Resource content, sent as is
            content_type: Content-Type header
            if_match: Only overwrite the resource carrying this etag
            if_none_match: Send "If-None-Match: *" so that an existing
                resource is never overwritten.  Ignored when if_match
                is given.
        """
        return self._request(
            DAVMethod.PUT,
            path,
            data,
            content_type=content_type,
            headers={
                "If-Match": if_match or None,
                "If-None-Match": "*" if if_none_match and not if_match else None,
            },
        )

    def delete_request(
        self,
        path: str,
        if_match: Optional[str] = None,
    ) -> DAVRequest:
        return self._request(
            DAVMethod.DELETE, path, content_type=None, headers={"If-Match": if_match or None}
        )

    ## Response parsers

    def parse_multistatus(self, response: DAVResponse) -> MultistatusResponse:
        return parse_multistatus(response.body, huge_tree=self.huge_tree)

    def parse_propfind(self, response: DAVResponse) -> List[PropfindResult]:
        return parse_propfind_response(response.body, huge_tree=self.huge_tree)

    def parse_calendar_query(self, response: DAVResponse) -> List[CalendarQueryResult]:
        """Parse a calendar-query or calendar-multiget REPORT response."""
        return parse_calendar_query_response(response.body, huge_tree=self.huge_tree)

    def parse_sync_collection(self, response: DAVResponse) -> SyncCollectionResult:
        return parse_sync_collection_response(response.body, huge_tree=self.huge_tree)
