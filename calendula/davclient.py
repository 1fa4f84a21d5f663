#!/usr/bin/env python
import datetime
import logging
import sys
from collections.abc import Mapping
from dataclasses import replace
from types import TracebackType
from typing import Any
from typing import Dict
from typing import List
from typing import Optional
from typing import Tuple
from typing import Union
from urllib.parse import urljoin

from calendula import __version__
from calendula.auth import AuthDecision
from calendula.auth import AuthStrategy
from calendula.auth import NoAuth
from calendula.io import SyncIO
from calendula.io import SyncIOProtocol
from calendula.lib import error
from calendula.lib.python_utilities import to_normal_str
from calendula.lib.python_utilities import to_wire
from calendula.lib.url import URL
from calendula.protocol import CalDAVProtocol
from calendula.protocol.types import CalendarQueryResult
from calendula.protocol.types import DAVRequest
from calendula.protocol.types import DAVResponse
from calendula.protocol.types import MultistatusResponse
from calendula.protocol.types import SyncCollectionResult

if sys.version_info < (3, 11):
    from typing_extensions import Self
else:
    from typing import Self

"""
The ``DAVClient`` class handles the basic communication with a
CalDAV server.  It glues together the sans-I/O request builders in
``calendula.protocol``, an I/O implementation (by default ``SyncIO``,
a requests session) and an auth strategy.

Status codes are translated into the error hierarchy here, so that
the backends only deal with parsed results and exceptions.
"""

log = logging.getLogger(__name__)


class DAVClient:
    """
    Basic client for webdav; gives access to low-level operations
    towards the caldav server.

    All methods accepting an url accept a full URL, an absolute path
    or a path relative to the url the client was set up with.
    """

    url: URL = None
    huge_tree: bool = False

    def __init__(
        self,
        url: str,
        io: Optional[SyncIOProtocol] = None,
        auth: Optional[AuthStrategy] = None,
        timeout: Optional[float] = 30.0,
        ssl_verify_cert: Union[bool, str] = True,
        ssl_cert: Union[str, Tuple[str, str], None] = None,
        headers: Mapping[str, str] = None,
        huge_tree: bool = False,
    ) -> None:
        """
        Sets up a client towards the server in the url.

        Args:
          url: A fully qualified url: `scheme://hostname:port/path`
          io: Something that can execute a DAVRequest, defaults to a
            SyncIO with a fresh requests session
          auth: An auth strategy from calendula.auth, defaults to NoAuth
          timeout, ssl_verify_cert and ssl_cert are passed to requests
            when no io is given.  ssl_verify_cert can be the path of a
            CA-bundle or False.
          headers: extra headers for every request
          huge_tree: boolean, enable XMLParser huge_tree to handle big events
        """
        log.debug("url: " + str(url))
        self.url = URL.objectify(url)
        self.huge_tree = huge_tree
        self.io = io or SyncIO(timeout=timeout, verify=ssl_verify_cert, cert=ssl_cert)
        self.auth = auth or NoAuth()

        # Build global headers
        self.headers = {
            "User-Agent": "calendula/" + __version__,
            "Accept": "text/xml, text/calendar",
        }
        self.headers.update(headers or {})
        self.protocol = CalDAVProtocol(
            base_url=str(self.url), headers=self.headers, huge_tree=huge_tree
        )

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: Optional[BaseException] = None,
        exc_value: Optional[BaseException] = None,
        traceback: Optional[TracebackType] = None,
    ) -> None:
        self.close()

    def close(self) -> None:
        """
        Closes the I/O session
        """
        self.io.close()

    def request(self, request: DAVRequest, max_redirects: int = 0) -> DAVResponse:
        """
        Actually sends the request, and does the authentication.

        The auth strategy gets one chance to refresh its credentials
        after a 401.  Redirects are only followed when max_redirects is
        given; with max_redirects=0 a 3xx response is returned as is.

        Raises:
          Unauthorized: 401 after the auth strategy gave up or retried once
          TooManyRedirects: more than max_redirects redirects in a row
          TransportError: from the I/O layer
        """
        redirects = 0
        retried = False
        while True:
            log.debug(
                "sending request - method={0}, url={1}, headers={2}\nbody:\n{3}".format(
                    request.method.value,
                    request.url,
                    request.headers,
                    to_normal_str(request.body or b""),
                )
            )
            response = self.io.execute(self.auth.apply(request))
            if not response.url:
                response = replace(response, url=request.url)
            log.debug("server responded with %i %s" % (response.status, response.reason))
            self._dump_communication(request, response)

            if response.status == 401:
                if not retried and self.auth.on_unauthorized(response) == AuthDecision.RETRY:
                    retried = True
                    continue
                raise error.Unauthorized(url=request.url, reason=response.reason)

            if response.is_redirect and max_redirects > 0:
                location = response.header("Location")
                if not location:
                    error.weirdness("redirect without Location header", request.url)
                    return response
                if redirects >= max_redirects:
                    raise error.TooManyRedirects(
                        url=request.url,
                        reason=f"more than {max_redirects} redirects",
                    )
                redirects += 1
                target = urljoin(request.url, location)
                log.debug(f"following {response.status} redirect to {target}")
                request = request.with_url(target)
                continue

            return response

    ## Status handling

    def _check(self, response: DAVResponse, url: str) -> DAVResponse:
        if response.ok:
            return response
        if response.status == 404:
            raise error.NotFoundError(url=url, reason=response.reason)
        if response.status == 412:
            raise error.ConflictError(url=url, reason="precondition failed")
        raise error.UnexpectedStatus(
            url=url,
            reason=error.errmsg(response),
            status=response.status,
            body=response.body,
        )

    def multistatus(self, response: DAVResponse) -> MultistatusResponse:
        """
        Parses a (hopefully) multi-status response, or raises the
        appropriate error for the status code.

        Some servers answer 200 with a multistatus body, that's
        accepted as well.
        """
        self._check(response, response.url)
        return self.protocol.parse_multistatus(response)

    ## HTTP methods

    def propfind(
        self,
        url: Any = None,
        props: Optional[List[str]] = None,
        depth: int = 0,
        max_redirects: int = 0,
    ) -> MultistatusResponse:
        """
        Send a propfind request.

        Args:
          url: url for the root of the propfind.
          props: property names, i.e. ["displayname", "getetag"]
          depth: maximum recursion depth

        Returns:
          MultistatusResponse
        """
        request = self.protocol.propfind_request(str(url or self.url), props, depth)
        return self.multistatus(self.request(request, max_redirects))

    def proppatch(
        self,
        url: Any,
        set_props: Optional[Dict[str, Any]] = None,
        remove_props: Optional[List[str]] = None,
    ) -> MultistatusResponse:
        """
        Send a proppatch request.
        """
        request = self.protocol.proppatch_request(str(url), set_props, remove_props)
        return self.multistatus(self.request(request))

    def report(self, url: Any, query: bytes, depth: int = 1) -> MultistatusResponse:
        """
        Send a report request.

        Args:
          url: url for the root of the report
          query: XML request body, see calendula.protocol.xml_builders
          depth: maximum recursion depth

        Returns:
          MultistatusResponse
        """
        request = self.protocol.report_request(str(url), query, depth)
        return self.multistatus(self.request(request))

    def calendar_query(self, url: Any, **kwargs) -> List[CalendarQueryResult]:
        """
        calendar-query REPORT, see CalDAVProtocol.calendar_query_request
        for the accepted keyword arguments
        """
        request = self.protocol.calendar_query_request(str(url), **kwargs)
        response = self._check(self.request(request), request.url)
        return self.protocol.parse_calendar_query(response)

    def calendar_multiget(self, url: Any, hrefs: List[str]) -> List[CalendarQueryResult]:
        request = self.protocol.calendar_multiget_request(str(url), hrefs)
        response = self._check(self.request(request), request.url)
        return self.protocol.parse_calendar_query(response)

    def sync_collection(
        self, url: Any, sync_token: Optional[str] = None
    ) -> SyncCollectionResult:
        """
        sync-collection REPORT (RFC 6578).  An invalidated token comes
        back as UnexpectedStatus, carrying the status and body.
        """
        request = self.protocol.sync_collection_request(str(url), sync_token)
        response = self._check(self.request(request), request.url)
        return self.protocol.parse_sync_collection(response)

    def mkcalendar(self, url: Any, **kwargs) -> DAVResponse:
        """
        Send a mkcalendar request.  An already existing collection
        gives a ConflictError.
        """
        request = self.protocol.mkcalendar_request(str(url), **kwargs)
        response = self.request(request)
        if response.status == 405:
            raise error.ConflictError(url=request.url, reason="collection already exists")
        return self._check(response, request.url)

    def get(self, url: Any) -> DAVResponse:
        request = self.protocol.get_request(str(url))
        return self._check(self.request(request), request.url)

    def put(
        self,
        url: Any,
        body: bytes,
        if_match: Optional[str] = None,
        if_none_match: bool = False,
    ) -> DAVResponse:
        """
        Send a put request.  A failed precondition gives a ConflictError.
        The body is sent byte by byte as given, line endings included.
        """
        request = self.protocol.put_request(
            str(url), body, if_match=if_match, if_none_match=if_none_match
        )
        return self._check(self.request(request), request.url)

    def delete(self, url: Any, if_match: Optional[str] = None) -> DAVResponse:
        request = self.protocol.delete_request(str(url), if_match=if_match)
        return self._check(self.request(request), request.url)

    def _dump_communication(self, request: DAVRequest, response: DAVResponse) -> None:
        if not error.debug_dump_communication:
            return
        from tempfile import NamedTemporaryFile

        with NamedTemporaryFile(prefix="calendulacomm", delete=False) as commlog:
            commlog.write(b"=" * 80 + b"\n")
            commlog.write(f"{datetime.datetime.now():%FT%H:%M:%S}".encode("utf-8"))
            commlog.write(b"\n====>\n")
            commlog.write(f"{request.method.value} {request.url}\n".encode("utf-8"))
            ## the Authorization header is added by the auth strategy, so it
            ## is not part of the request we see here
            commlog.write(
                b"\n".join(to_wire(f"{x}: {request.headers[x]}") for x in request.headers)
            )
            commlog.write(b"\n\n")
            commlog.write(to_wire(request.body or b""))
            commlog.write(b"<====\n")
            commlog.write(f"{response.status} {response.reason}\n".encode("utf-8"))
            commlog.write(
                b"\n".join(to_wire(f"{x}: {response.headers[x]}") for x in response.headers)
            )
            commlog.write(b"\n\n")
            commlog.write(to_wire(response.body))
            commlog.write(b"\n")
