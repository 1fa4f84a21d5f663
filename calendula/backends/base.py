"""
The capability contract shared by all backends.

Callers program against CalendarBackend only and never need to know
which kind of store is behind it.
"""
from datetime import datetime
from typing import List
from typing import Optional
from typing import Protocol
from typing import runtime_checkable

from calendula.objects import Calendar
from calendula.objects import Item
from calendula.objects import ListResult
from calendula.objects import SyncState


@runtime_checkable
class CalendarBackend(Protocol):
    def list_calendars(self) -> List[Calendar]:
        ...

    def create_calendar(self, calendar: Calendar) -> Calendar:
        ...

    def update_calendar(self, calendar: Calendar) -> Calendar:
        ...

    def delete_calendar(self, calendar_id: str) -> None:
        ...

    def list_items(
        self, calendar_id: str, prior_sync_state: Optional[SyncState] = None
    ) -> ListResult:
        """
        Items that are new or changed since prior_sync_state (all of
        them without one), plus the UIDs that disappeared.
        """
        ...

    def list_events(
        self,
        calendar_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[Item]:
        ...

    def get_item(self, calendar_id: str, uid: str) -> Item:
        """Raises NotFoundError"""
        ...

    def put_item(
        self, calendar_id: str, item: Item, expected_etag: Optional[str] = None
    ) -> Item:
        """
        Creates (expected_etag None) or replaces (expected_etag given)
        an item.  Raises ConflictError when the precondition fails.
        """
        ...

    def delete_item(
        self, calendar_id: str, uid: str, expected_etag: Optional[str] = None
    ) -> None:
        """Raises NotFoundError, ConflictError"""
        ...

    def close(self) -> None:
        ...
