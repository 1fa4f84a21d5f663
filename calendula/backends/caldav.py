#!/usr/bin/env python
"""
The CalDAV backend: calendars are collections below the calendar
home of the user, items are calendar object resources inside them.
"""
import logging
import uuid
from datetime import datetime
from typing import Callable
from typing import Dict
from typing import List
from typing import Optional
from typing import Tuple
from urllib.parse import quote
from urllib.parse import unquote

from calendula.auth import AuthStrategy
from calendula.auth import BasicAuth
from calendula.auth import BearerAuth
from calendula.auth import NoAuth
from calendula.config import BasicAuthConfig
from calendula.config import BearerAuthConfig
from calendula.config import CaldavConfig
from calendula.config import DiscoverConfig
from calendula.davclient import DAVClient
from calendula.discovery import _extract_domain
from calendula.discovery import discover
from calendula.elements import cdav
from calendula.elements import dav
from calendula.elements import ical
from calendula.io import SyncIOProtocol
from calendula.lib import error
from calendula.lib.url import URL
from calendula.objects import Calendar
from calendula.objects import Item
from calendula.objects import ItemFields
from calendula.objects import ItemRef
from calendula.objects import ListResult
from calendula.objects import ServerLocation
from calendula.objects import SyncState
from calendula.protocol import has_precondition
from calendula.protocol.types import CalendarQueryResult
from calendula.secret import resolve_secret
from calendula.secret import SecretResolver

log = logging.getLogger(__name__)

## characters servers commonly leave unquoted in paths
_PATH_SAFE = "/@:+,;=~!$&'()*"

CALENDAR_PROPS = ["displayname", "calendar-description", "calendar-color", "resourcetype"]


def auth_from_config(auth, resolve: SecretResolver = resolve_secret) -> AuthStrategy:
    if isinstance(auth, BasicAuthConfig):
        return BasicAuth(auth.username, auth.password, resolve)
    if isinstance(auth, BearerAuthConfig):
        return BearerAuth(auth.token, resolve)
    return NoAuth()


def _start_url(config: CaldavConfig) -> str:
    url = config.home_uri or config.principal_uri or config.server_uri
    if url:
        return url
    hint = config.discover
    ## the hint may be an email address or carry a port of its own
    host, port = _extract_domain(hint.host)
    port = hint.port or port
    netloc = f"{host}:{port}" if port else host
    return f"{hint.scheme}://{netloc}/"


def _basename(href: str) -> str:
    return href.rstrip("/").rsplit("/", 1)[-1]


def _same_path(href1: str, href2: str) -> bool:
    return href1.rstrip("/") == href2.rstrip("/")


class CaldavBackend:
    """
    Calendar backend talking to a CalDAV server.

    Discovery of the calendar home is postponed until the first
    operation needing it.  One DAVClient (and so one HTTP session) is
    kept for the lifetime of the backend.
    """

    def __init__(
        self,
        client: DAVClient,
        location: ServerLocation,
        hint: Optional[DiscoverConfig] = None,
        extract: Optional[Callable[[bytes], ItemFields]] = None,
    ) -> None:
        self.client = client
        self._configured = location
        self._location: Optional[ServerLocation] = location if location.home_uri else None
        self.hint = hint
        self.extract = extract

    @classmethod
    def from_config(
        cls,
        config: CaldavConfig,
        io: Optional[SyncIOProtocol] = None,
        resolve: SecretResolver = resolve_secret,
        extract: Optional[Callable[[bytes], ItemFields]] = None,
    ) -> "CaldavBackend":
        client = DAVClient(
            _start_url(config),
            io=io,
            auth=auth_from_config(config.auth, resolve),
            timeout=config.timeout,
            ssl_verify_cert=config.ssl_verify_cert,
            ssl_cert=config.ssl_cert,
            headers=config.headers,
        )
        location = ServerLocation(
            server_uri=config.server_uri,
            principal_uri=config.principal_uri,
            home_uri=config.home_uri,
        )
        return cls(client, location, hint=config.discover, extract=extract)

    def close(self) -> None:
        self.client.close()

    @property
    def location(self) -> ServerLocation:
        if self._location is None:
            self._location = discover(self.client, self._configured, self.hint)
        return self._location

    ## URLs

    def _home(self) -> URL:
        return URL.objectify(self.location.home_uri).with_trailing_slash()

    def _calendar_url(self, calendar_id: str) -> URL:
        return self._home().join(quote(calendar_id, safe=_PATH_SAFE.replace("/", "")) + "/")

    def _item_url(self, calendar_id: str, uid: str) -> URL:
        return self._calendar_url(calendar_id).join(quote(uid, safe="") + ".ics")

    def _href_url(self, href: str) -> URL:
        ## hrefs are kept unquoted, see xml_parsers
        return self._home().join(quote(href, safe=_PATH_SAFE))

    @staticmethod
    def _href(url: URL) -> str:
        return unquote(url.path)

    ## Calendars

    def list_calendars(self) -> List[Calendar]:
        home = self._home()
        multistatus = self.client.propfind(home, CALENDAR_PROPS, depth=1)
        calendars = []
        for result in multistatus.responses:
            resourcetype = result.properties.get(dav.ResourceType.tag) or []
            if cdav.Calendar.tag not in resourcetype:
                continue
            calendar_id = _basename(result.href)
            props = result.properties
            calendars.append(
                Calendar(
                    id=calendar_id,
                    display_name=props.get(dav.DisplayName.tag) or calendar_id,
                    description=props.get(cdav.CalendarDescription.tag),
                    color=props.get(ical.CalendarColor.tag),
                    url=str(self._href_url(result.href).with_trailing_slash()),
                )
            )
        log.debug(f"found {len(calendars)} calendars below {home}")
        return calendars

    def create_calendar(self, calendar: Calendar) -> Calendar:
        calendar_id = calendar.id or str(uuid.uuid4())
        url = self._calendar_url(calendar_id)
        self.client.mkcalendar(
            url,
            displayname=calendar.display_name,
            description=calendar.description,
            color=calendar.color,
        )
        return Calendar(
            id=calendar_id,
            display_name=calendar.display_name or calendar_id,
            description=calendar.description,
            color=calendar.color,
            url=str(url),
        )

    def update_calendar(self, calendar: Calendar) -> Calendar:
        """
        Sets the fields that are not None.
        """
        url = self._calendar_url(calendar.id)
        set_props = {}
        if calendar.display_name is not None:
            set_props["displayname"] = calendar.display_name
        if calendar.description is not None:
            set_props["calendar-description"] = calendar.description
        if calendar.color is not None:
            set_props["calendar-color"] = calendar.color
        if set_props:
            self.client.proppatch(url, set_props)
        return Calendar(
            id=calendar.id,
            display_name=calendar.display_name,
            description=calendar.description,
            color=calendar.color,
            url=str(url),
        )

    def delete_calendar(self, calendar_id: str) -> None:
        self.client.delete(self._calendar_url(calendar_id))

    ## Items

    def _parse(self, calendar_id: str, result: CalendarQueryResult) -> Item:
        return Item.parse(
            calendar_id,
            result.calendar_data,
            extract=self.extract,
            etag=result.etag,
            href=result.href,
        )

    def _items_from_results(
        self,
        calendar_id: str,
        url: URL,
        results: List[CalendarQueryResult],
    ) -> List[Item]:
        """
        Turns REPORT results into items.  Results without calendar
        data are fetched with one calendar-multiget.  Unparseable
        objects are logged and skipped.
        """
        collection_path = self._href(url)
        results = [r for r in results if not _same_path(r.href, collection_path)]
        missing = [r.href for r in results if r.calendar_data is None]
        if missing:
            log.debug(f"fetching {len(missing)} objects with calendar-multiget")
            fetched = {
                r.href: r
                for r in self.client.calendar_multiget(
                    url, [quote(href, safe=_PATH_SAFE) for href in missing]
                )
            }
            results = [fetched.get(r.href, r) if r.calendar_data is None else r for r in results]

        items = []
        for result in results:
            if result.calendar_data is None:
                error.weirdness("no calendar data delivered", result.href)
                continue
            try:
                items.append(self._parse(calendar_id, result))
            except error.MalformedItem as e:
                log.error(f"skipping unparseable object {result.href}: {e.reason}")
        return items

    def _collection_token(self, url: URL) -> Tuple[Optional[str], str]:
        """
        Returns (token, token_kind) for the collection.  The
        sync-token is preferred, the ctag or the etag of the
        collection are used when the server has no RFC 6578 support.
        """
        multistatus = self.client.propfind(url, ["sync-token", "getctag", "getetag"], depth=0)
        props: Dict = {}
        for result in multistatus.responses:
            props.update(result.properties)
        if props.get(dav.SyncToken.tag):
            return (props[dav.SyncToken.tag], "sync-token")
        if props.get(ical.GetCTag.tag):
            return (props[ical.GetCTag.tag], "ctag")
        return (props.get(dav.GetEtag.tag), "ctag")

    def _full_listing(
        self,
        calendar_id: str,
        url: URL,
        prior: Optional[SyncState] = None,
        token: Optional[Tuple[Optional[str], str]] = None,
    ) -> ListResult:
        ## the token is captured before listing, changes in between are
        ## reported again on the next sync
        token, token_kind = token or self._collection_token(url)
        items = self._items_from_results(calendar_id, url, self.client.calendar_query(url))
        refs = {item.id: ItemRef(href=item.href, etag=item.etag) for item in items}
        removed = [uid for uid in prior.items if uid not in refs] if prior else []
        state = SyncState(
            calendar_id=calendar_id,
            backend_uri=str(url),
            token=token,
            token_kind=token_kind,
            items=refs,
        )
        return ListResult(items=items, removed=removed, sync_state=state)

    def _ctag_listing(self, calendar_id: str, url: URL, prior: SyncState) -> ListResult:
        token = self._collection_token(url)
        if token[0] is not None and token == (prior.token, prior.token_kind):
            log.debug(f"collection tag unchanged for {url}")
            return ListResult(sync_state=prior)
        full = self._full_listing(calendar_id, url, prior, token)
        changed = []
        for item in full.items:
            ref = prior.items.get(item.id)
            if ref is None or item.etag is None or ref.etag != item.etag:
                changed.append(item)
        return ListResult(items=changed, removed=full.removed, sync_state=full.sync_state)

    @staticmethod
    def _is_sync_reset(e: error.UnexpectedStatus) -> bool:
        if e.status in (403, 410):
            return True
        return 400 <= e.status < 500 and has_precondition(e.body, dav.ValidSyncToken.tag)

    def list_items(
        self, calendar_id: str, prior_sync_state: Optional[SyncState] = None
    ) -> ListResult:
        url = self._calendar_url(calendar_id)
        prior = prior_sync_state
        if prior is not None and not prior.matches(calendar_id, str(url)):
            log.info("sync state was captured for another calendar, ignoring it")
            prior = None

        if prior is None:
            return self._full_listing(calendar_id, url)
        if not prior.token:
            ## no tag at all on this server, every listing is a full one
            ## diffed against the known items
            return self._full_listing(calendar_id, url, prior)

        if prior.token_kind == "ctag":
            return self._ctag_listing(calendar_id, url, prior)

        try:
            delta = self.client.sync_collection(url, prior.token)
        except error.UnexpectedStatus as e:
            if not self._is_sync_reset(e):
                raise
            log.warning(f"sync token for {url} was rejected ({e.status}), doing a full listing")
            result = self._full_listing(calendar_id, url, prior)
            result.sync_reset = True
            return result

        refs = dict(prior.items)
        removed = []
        for href in delta.deleted:
            uid = prior.uid_for_href(href)
            if uid is None:
                name = _basename(href)
                uid = unquote(name[:-4] if name.endswith(".ics") else name)
            refs.pop(uid, None)
            removed.append(uid)

        items = self._items_from_results(calendar_id, url, delta.changed)
        for item in items:
            ## the same UID may have moved to another href
            for uid in [u for u, ref in refs.items() if ref.href == item.href]:
                del refs[uid]
            refs[item.id] = ItemRef(href=item.href, etag=item.etag)

        state = SyncState(
            calendar_id=calendar_id,
            backend_uri=str(url),
            token=delta.sync_token or prior.token,
            token_kind="sync-token",
            items=refs,
        )
        return ListResult(items=items, removed=removed, sync_state=state)

    def list_events(
        self,
        calendar_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[Item]:
        url = self._calendar_url(calendar_id)
        results = self.client.calendar_query(url, start=start, end=end, comp_filter="VEVENT")
        return self._items_from_results(calendar_id, url, results)

    def _query_by_uid(self, calendar_id: str, uid: str) -> Optional[Item]:
        url = self._calendar_url(calendar_id)
        ## sibling comp-filters would be AND-ed, so one query per type
        for comp in ("VEVENT", "VTODO", "VJOURNAL"):
            results = self.client.calendar_query(url, comp_filter=comp, uid=uid)
            for item in self._items_from_results(calendar_id, url, results):
                if item.id == uid:
                    return item
        return None

    def get_item(self, calendar_id: str, uid: str) -> Item:
        """
        Fetches the item with a GET on <calendar>/<uid>.ics.  Items
        created by other clients are not necessarily named after their
        UID, those are searched for with a calendar-query.
        """
        url = self._item_url(calendar_id, uid)
        try:
            response = self.client.get(url)
        except error.NotFoundError:
            log.debug(f"{url} not found, searching by UID")
        else:
            return Item.parse(
                calendar_id,
                response.body,
                extract=self.extract,
                etag=response.header("ETag"),
                href=self._href(url),
            )
        item = self._query_by_uid(calendar_id, uid)
        if item is None:
            raise error.NotFoundError(url=str(url), reason=f"no item with UID {uid}")
        return item

    def put_item(
        self, calendar_id: str, item: Item, expected_etag: Optional[str] = None
    ) -> Item:
        """
        Creates the item (expected_etag None, "If-None-Match: *") or
        replaces it ("If-Match: <expected_etag>").  A failed
        precondition is a ConflictError and is never retried.
        """
        if item.href and item.calendar_id == calendar_id and item.href.startswith("/"):
            url = self._href_url(item.href)
        else:
            url = self._item_url(calendar_id, item.id)
        response = self.client.put(
            url,
            item.body,
            if_match=expected_etag,
            if_none_match=expected_etag is None,
        )
        return item.evolve(
            calendar_id=calendar_id,
            etag=response.header("ETag"),
            href=self._href(url),
        )

    def delete_item(
        self, calendar_id: str, uid: str, expected_etag: Optional[str] = None
    ) -> None:
        url = self._item_url(calendar_id, uid)
        try:
            self.client.delete(url, if_match=expected_etag)
            return
        except error.NotFoundError:
            item = self._query_by_uid(calendar_id, uid)
            if item is None:
                raise
        self.client.delete(self._href_url(item.href), if_match=expected_etag)
