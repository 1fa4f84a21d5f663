"""
The Vdir backend: a local directory per calendar, one ``.ics`` file
per item.

    <root>/<calendar-id>/displayname
    <root>/<calendar-id>/color
    <root>/<calendar-id>/description
    <root>/<calendar-id>/<uid>.ics

UIDs that are not safe as file names are percent-quoted.  Files not
named after the UID of their content (i.e. written by other tools)
are found by scanning the calendar directory.
"""
import logging
import os
import shutil
import uuid
from datetime import datetime
from datetime import timezone
from typing import Callable
from typing import Iterator
from typing import List
from typing import Optional
from urllib.parse import quote

from calendula.config import VdirConfig
from calendula.lib import error
from calendula.lib.python_utilities import atomic_write
from calendula.objects import Calendar
from calendula.objects import Item
from calendula.objects import ItemFields
from calendula.objects import ListResult
from calendula.objects import SyncState

log = logging.getLogger(__name__)

SIDECARS = ("displayname", "color", "description")
ITEM_SUFFIX = ".ics"


def item_filename(uid: str) -> str:
    return quote(uid, safe="@+-_.=") + ITEM_SUFFIX


class VdirBackend:
    def __init__(
        self,
        path: str,
        extract: Optional[Callable[[bytes], ItemFields]] = None,
    ) -> None:
        self.path = os.path.expanduser(path)
        self.extract = extract

    @classmethod
    def from_config(
        cls, config: VdirConfig, extract: Optional[Callable[[bytes], ItemFields]] = None
    ) -> "VdirBackend":
        return cls(config.path, extract=extract)

    def close(self) -> None:
        pass

    ## Paths

    def _calendar_dir(self, calendar_id: str) -> str:
        if not calendar_id or calendar_id.startswith(".") or os.sep in calendar_id:
            raise error.NotFoundError(url=calendar_id, reason="invalid calendar id")
        return os.path.join(self.path, calendar_id)

    def _existing_calendar_dir(self, calendar_id: str) -> str:
        path = self._calendar_dir(calendar_id)
        if not os.path.isdir(path):
            raise error.NotFoundError(url=path, reason="no such calendar")
        return path

    def _item_files(self, calendar_dir: str) -> Iterator[str]:
        if not os.path.isdir(calendar_dir):
            return
        for name in sorted(os.listdir(calendar_dir)):
            if name.endswith(ITEM_SUFFIX) and not name.startswith("."):
                yield os.path.join(calendar_dir, name)

    def _read(self, calendar_id: str, filename: str) -> Item:
        with open(filename, "rb") as f:
            body = f.read()
        item = Item.parse(calendar_id, body, extract=self.extract, href=filename)
        if item.last_modified is None:
            mtime = os.path.getmtime(filename)
            item = item.evolve(last_modified=datetime.fromtimestamp(mtime, tz=timezone.utc))
        return item

    def _find(self, calendar_id: str, uid: str) -> str:
        """
        Locates the file holding the item with the given UID.  A file
        named after the UID is taken without reading it, so that a
        broken one can still be replaced or removed.

        Raises:
          NotFoundError
        """
        calendar_dir = self._calendar_dir(calendar_id)
        filename = os.path.join(calendar_dir, item_filename(uid))
        if os.path.isfile(filename):
            return filename
        for filename in self._item_files(calendar_dir):
            try:
                item = self._read(calendar_id, filename)
            except error.MalformedItem:
                continue
            if item.id == uid:
                return filename
        raise error.NotFoundError(url=calendar_dir, reason=f"no item with UID {uid}")

    ## Calendars

    def _read_sidecar(self, calendar_dir: str, name: str) -> Optional[str]:
        try:
            with open(os.path.join(calendar_dir, name), encoding="utf-8") as f:
                return f.read().strip() or None
        except FileNotFoundError:
            return None

    def _write_sidecars(self, calendar_dir: str, calendar: Calendar) -> None:
        values = {
            "displayname": calendar.display_name,
            "color": calendar.color,
            "description": calendar.description,
        }
        for name, value in values.items():
            if value is None:
                continue
            filename = os.path.join(calendar_dir, name)
            if value == "":
                if os.path.exists(filename):
                    os.unlink(filename)
                continue
            atomic_write(filename, value.encode("utf-8"))

    def _calendar(self, calendar_id: str) -> Calendar:
        calendar_dir = self._calendar_dir(calendar_id)
        return Calendar(
            id=calendar_id,
            display_name=self._read_sidecar(calendar_dir, "displayname") or calendar_id,
            description=self._read_sidecar(calendar_dir, "description"),
            color=self._read_sidecar(calendar_dir, "color"),
        )

    def list_calendars(self) -> List[Calendar]:
        if not os.path.isdir(self.path):
            log.info(f"vdir {self.path} does not exist (yet)")
            return []
        return [
            self._calendar(name)
            for name in sorted(os.listdir(self.path))
            if not name.startswith(".") and os.path.isdir(os.path.join(self.path, name))
        ]

    def create_calendar(self, calendar: Calendar) -> Calendar:
        calendar_id = calendar.id or str(uuid.uuid4())
        calendar_dir = self._calendar_dir(calendar_id)
        try:
            os.makedirs(calendar_dir)
        except FileExistsError:
            raise error.ConflictError(url=calendar_dir, reason="calendar already exists")
        self._write_sidecars(calendar_dir, calendar)
        return self._calendar(calendar_id)

    def update_calendar(self, calendar: Calendar) -> Calendar:
        """
        Rewrites the sidecars of the fields that are not None.  An
        empty string removes the sidecar.
        """
        calendar_dir = self._existing_calendar_dir(calendar.id)
        self._write_sidecars(calendar_dir, calendar)
        return self._calendar(calendar.id)

    def delete_calendar(self, calendar_id: str) -> None:
        shutil.rmtree(self._existing_calendar_dir(calendar_id))

    ## Items

    def list_items(
        self, calendar_id: str, prior_sync_state: Optional[SyncState] = None
    ) -> ListResult:
        """
        Always a full listing, there is no cheap way to tell what
        changed in a directory.
        """
        calendar_dir = self._existing_calendar_dir(calendar_id)
        items = []
        for filename in self._item_files(calendar_dir):
            try:
                items.append(self._read(calendar_id, filename))
            except error.MalformedItem as e:
                log.error(f"skipping unparseable file {filename}: {e.reason}")
        return ListResult(items=items)

    def list_events(
        self,
        calendar_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[Item]:
        if start is not None or end is not None:
            log.warning("filtering events by date is not supported by the vdir backend")
        return [
            item
            for item in self.list_items(calendar_id).items
            if "VEVENT" in item.components
        ]

    def get_item(self, calendar_id: str, uid: str) -> Item:
        return self._read(calendar_id, self._find(calendar_id, uid))

    def put_item(
        self, calendar_id: str, item: Item, expected_etag: Optional[str] = None
    ) -> Item:
        """
        Writes the item atomically.  There are no etags in a vdir,
        expected_etag is ignored.
        """
        calendar_dir = self._calendar_dir(calendar_id)
        os.makedirs(calendar_dir, exist_ok=True)
        try:
            filename = self._find(calendar_id, item.id)
        except error.NotFoundError:
            filename = os.path.join(calendar_dir, item_filename(item.id))
        atomic_write(filename, item.body)
        log.debug(f"wrote {filename}")
        return item.evolve(calendar_id=calendar_id, href=filename, etag=None)

    def delete_item(
        self, calendar_id: str, uid: str, expected_etag: Optional[str] = None
    ) -> None:
        filename = self._find(calendar_id, uid)
        os.unlink(filename)
        log.debug(f"removed {filename}")
