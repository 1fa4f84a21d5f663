"""
Backend-neutral read models.

Everything in here is produced fresh by a backend on every call and is
never mutated afterwards; an update is done by building a new Item and
handing it to put_item.
"""
from dataclasses import dataclass
from dataclasses import field
from dataclasses import replace
from datetime import datetime
from typing import Callable
from typing import Dict
from typing import List
from typing import Optional
from typing import Union

from calendula.lib import error


@dataclass(frozen=True)
class ItemFields:
    """The few fields the extraction collaborator pulls out of a body."""

    uid: str
    summary: str = ""
    components: List[str] = field(default_factory=list)
    last_modified: Optional[datetime] = None


@dataclass(frozen=True)
class Calendar:
    """
    A calendar collection.

    Attributes:
        id: last path segment of the collection URL (CalDAV) or the
            directory name (Vdir)
        display_name: human readable name
        description: optional description
        color: optional color, typically "#RRGGBB" or "#RRGGBBAA"
        url: full collection URL, CalDAV only
    """

    id: str
    display_name: Optional[str] = None
    description: Optional[str] = None
    color: Optional[str] = None
    url: Optional[str] = None


@dataclass(frozen=True)
class Item:
    """
    A calendar item: an opaque iCalendar body plus extracted fields.

    The etag is only set by the CalDAV backend.  For Vdir items
    last_modified falls back to the file modification time, which is an
    ordering hint and nothing more.
    """

    id: str
    calendar_id: str
    body: bytes
    summary: str = ""
    components: List[str] = field(default_factory=list)
    last_modified: Optional[datetime] = None
    etag: Optional[str] = None
    href: Optional[str] = None

    @classmethod
    def parse(
        cls,
        calendar_id: str,
        body: Union[bytes, str],
        extract: Optional[Callable[[bytes], ItemFields]] = None,
        **kwargs,
    ) -> "Item":
        """
        Build an Item from raw iCalendar data.

        Args:
            calendar_id: calendar the item belongs to
            body: raw iCalendar data, str is encoded as utf-8
            extract: extraction collaborator, defaults to
                calendula.lib.vcal.extract
            kwargs: etag, href or any other Item attribute

        Raises:
            MalformedItem: from the extraction collaborator
        """
        if extract is None:
            from calendula.lib.vcal import extract
        if isinstance(body, str):
            body = body.encode("utf-8")
        try:
            fields = extract(body)
        except error.MalformedItem as e:
            ## name the file or resource, the extractor only sees bytes
            if e.url is None and kwargs.get("href"):
                raise error.MalformedItem(url=kwargs["href"], reason=e.reason) from e
            raise
        return cls(
            id=fields.uid,
            calendar_id=calendar_id,
            body=body,
            summary=fields.summary,
            components=list(fields.components),
            last_modified=fields.last_modified,
            **kwargs,
        )

    def evolve(self, **changes) -> "Item":
        return replace(self, **changes)


@dataclass(frozen=True)
class ItemRef:
    """Where an item lives on the server and which version we saw."""

    href: str
    etag: Optional[str] = None


@dataclass(frozen=True)
class SyncState:
    """
    Per-calendar synchronization state.

    Attributes:
        calendar_id: calendar the state was captured for
        backend_uri: collection URL (CalDAV) the state was captured against
        token: RFC 6578 sync-token, or the collection tag when the server
            has no sync-collection support
        token_kind: "sync-token" or "ctag"
        items: UID -> ItemRef for every item known at capture time
    """

    calendar_id: str
    backend_uri: str
    token: Optional[str] = None
    token_kind: str = "sync-token"
    items: Dict[str, ItemRef] = field(default_factory=dict)

    def matches(self, calendar_id: str, backend_uri: str) -> bool:
        return self.calendar_id == calendar_id and self.backend_uri == backend_uri

    def uid_for_href(self, href: str) -> Optional[str]:
        for uid, ref in self.items.items():
            if ref.href == href:
                return uid
        return None

    def to_dict(self) -> dict:
        return {
            "calendar_id": self.calendar_id,
            "backend_uri": self.backend_uri,
            "token": self.token,
            "token_kind": self.token_kind,
            "items": {
                uid: {"href": ref.href, "etag": ref.etag}
                for uid, ref in self.items.items()
            },
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SyncState":
        return cls(
            calendar_id=data["calendar_id"],
            backend_uri=data["backend_uri"],
            token=data.get("token"),
            token_kind=data.get("token_kind", "sync-token"),
            items={
                uid: ItemRef(href=ref["href"], etag=ref.get("etag"))
                for uid, ref in data.get("items", {}).items()
            },
        )


@dataclass
class ListResult:
    """
    Outcome of list_items.

    Attributes:
        items: items that are new or changed (all items on a full listing)
        removed: UIDs that disappeared since the prior sync state
        sync_state: state to hand to the next list_items call, None if the
            backend has no notion of incremental sync
        sync_reset: the server rejected the prior sync state and a full
            listing was done instead.  This is not an error.
    """

    items: List[Item] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    sync_state: Optional[SyncState] = None
    sync_reset: bool = False


@dataclass(frozen=True)
class ServerLocation:
    """
    Where the CalDAV service lives.  Every field may be left out in the
    configuration, discovery fills in what is missing.
    """

    server_uri: Optional[str] = None
    principal_uri: Optional[str] = None
    home_uri: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return bool(self.server_uri and self.principal_uri and self.home_uri)
