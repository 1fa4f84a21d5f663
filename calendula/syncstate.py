"""
Persistence of sync states between runs.

One JSON file per calendar below a state directory.  Every save
replaces the whole file atomically, so a reader never sees a token
that does not belong to the item map stored with it.
"""
import json
import logging
import os
from typing import Optional
from urllib.parse import quote

from calendula.lib.python_utilities import atomic_write
from calendula.objects import SyncState

log = logging.getLogger(__name__)


def default_state_dir() -> str:
    base = os.environ.get("XDG_STATE_HOME") or os.path.join(
        os.environ.get("HOME", "/"), ".local", "state"
    )
    return os.path.join(base, "calendula")


class SyncStateStore:
    def __init__(self, path: Optional[str] = None, account: str = "default") -> None:
        self.path = os.path.join(path or default_state_dir(), quote(account, safe=""))

    def _filename(self, calendar_id: str) -> str:
        return os.path.join(self.path, quote(calendar_id, safe="") + ".json")

    def load(self, calendar_id: str, backend_uri: Optional[str] = None) -> Optional[SyncState]:
        """
        Returns the stored state, or None if there is none, it cannot
        be read, or it was captured against another backend URI.
        """
        filename = self._filename(calendar_id)
        try:
            with open(filename, "rb") as f:
                state = SyncState.from_dict(json.load(f))
        except FileNotFoundError:
            return None
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            log.warning(f"ignoring unreadable sync state {filename}: {e}")
            return None
        if backend_uri is not None and not state.matches(calendar_id, backend_uri):
            log.info(f"sync state in {filename} belongs to {state.backend_uri}, ignoring it")
            return None
        return state

    def save(self, state: SyncState) -> None:
        os.makedirs(self.path, exist_ok=True)
        data = json.dumps(state.to_dict(), indent=2, sort_keys=True).encode("utf-8")
        atomic_write(self._filename(state.calendar_id), data)

    def clear(self, calendar_id: str) -> None:
        try:
            os.unlink(self._filename(calendar_id))
        except FileNotFoundError:
            pass
