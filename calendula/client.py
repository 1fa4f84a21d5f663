#!/usr/bin/env python
"""
The ``Client`` is the entry point of the library.  It picks one
backend for an account and exposes the backend operations, plus a few
convenience operations built on top of them.

    from calendula.config import read_config, find_account
    from calendula import Client

    with Client(find_account(read_config())) as client:
        for calendar in client.list_calendars():
            print(calendar.display_name)
"""
import logging
import sys
from datetime import datetime
from types import TracebackType
from typing import Callable
from typing import List
from typing import Optional
from typing import Union

from calendula.backends.base import CalendarBackend
from calendula.backends.caldav import CaldavBackend
from calendula.backends.vdir import VdirBackend
from calendula.config import AccountConfig
from calendula.io import SyncIOProtocol
from calendula.lib import error
from calendula.objects import Calendar
from calendula.objects import Item
from calendula.objects import ItemFields
from calendula.objects import ListResult
from calendula.objects import SyncState
from calendula.secret import resolve_secret
from calendula.secret import SecretResolver
from calendula.syncstate import SyncStateStore

if sys.version_info < (3, 11):
    from typing_extensions import Self
else:
    from typing import Self

log = logging.getLogger(__name__)


class Client:
    """
    One account, one backend.  CalDAV is used when the account has a
    caldav section, else Vdir.
    """

    def __init__(
        self,
        account: AccountConfig,
        io: Optional[SyncIOProtocol] = None,
        resolve: SecretResolver = resolve_secret,
        extract: Optional[Callable[[bytes], ItemFields]] = None,
    ) -> None:
        self.account = account
        self.extract = extract
        if account.caldav is not None:
            log.debug(f"account {account.name}: using the caldav backend")
            self.backend: CalendarBackend = CaldavBackend.from_config(
                account.caldav, io=io, resolve=resolve, extract=extract
            )
        elif account.vdir is not None:
            log.debug(f"account {account.name}: using the vdir backend")
            self.backend = VdirBackend.from_config(account.vdir, extract=extract)
        else:
            raise error.ConfigurationError(
                reason=f"account {account.name} has neither a caldav nor a vdir section"
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
        self.backend.close()

    ## The backend contract

    def list_calendars(self) -> List[Calendar]:
        return self.backend.list_calendars()

    def create_calendar(self, calendar: Calendar) -> Calendar:
        return self.backend.create_calendar(calendar)

    def update_calendar(self, calendar: Calendar) -> Calendar:
        return self.backend.update_calendar(calendar)

    def delete_calendar(self, calendar_id: str) -> None:
        self.backend.delete_calendar(calendar_id)

    def list_items(
        self, calendar_id: str, prior_sync_state: Optional[SyncState] = None
    ) -> ListResult:
        return self.backend.list_items(calendar_id, prior_sync_state)

    def list_events(
        self,
        calendar_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[Item]:
        return self.backend.list_events(calendar_id, start, end)

    def get_item(self, calendar_id: str, uid: str) -> Item:
        return self.backend.get_item(calendar_id, uid)

    def put_item(
        self, calendar_id: str, item: Item, expected_etag: Optional[str] = None
    ) -> Item:
        return self.backend.put_item(calendar_id, item, expected_etag)

    def delete_item(
        self, calendar_id: str, uid: str, expected_etag: Optional[str] = None
    ) -> None:
        self.backend.delete_item(calendar_id, uid, expected_etag)

    ## Convenience

    def sync_items(self, calendar_id: str, store: SyncStateStore) -> ListResult:
        """
        Incremental listing.  The state from the previous run is taken
        from the store, and the new one is written back to it.
        """
        prior = store.load(calendar_id)
        result = self.backend.list_items(calendar_id, prior)
        if result.sync_reset:
            log.warning(f"sync state of {calendar_id} was reset by the server")
        if result.sync_state is not None:
            store.save(result.sync_state)
        return result

    def create_item(self, calendar_id: str, body: Union[bytes, str]) -> Item:
        """
        Creates a new item from raw iCalendar data.  An existing item
        with the same UID is never overwritten.

        Raises:
          MalformedItem, ConflictError
        """
        item = Item.parse(calendar_id, body, extract=self.extract)
        return self.backend.put_item(calendar_id, item)

    def update_item(
        self, calendar_id: str, uid: str, edit: Callable[[bytes], bytes]
    ) -> Item:
        """
        Read-modify-write of one item.  The body is handed to edit
        (i.e. a function running the text editor of the user), the
        result is written back on condition that nobody else changed
        the item in between.

        Raises:
          NotFoundError, MalformedItem, ConflictError
        """
        item = self.backend.get_item(calendar_id, uid)
        body = edit(item.body)
        if body == item.body:
            log.info(f"item {uid} unchanged, not writing it back")
            return item
        new_item = Item.parse(
            calendar_id, body, extract=self.extract, href=item.href
        )
        if new_item.id != item.id:
            raise error.MalformedItem(
                reason=f"the UID of an item cannot be changed ({item.id} -> {new_item.id})"
            )
        return self.backend.put_item(calendar_id, new_item, expected_etag=item.etag)
