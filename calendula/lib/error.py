#!/usr/bin/env python
import logging
import os
from typing import Optional

from calendula import __version__

## Environmental variables prepended with "CALENDULA_" are used for
## debug purposes.
debug_dump_communication = os.environ.get("CALENDULA_COMMDUMP", False)
## one of DEBUG_PDB, DEBUG, DEVELOPMENT, PRODUCTION
debugmode = os.environ.get("CALENDULA_DEBUGMODE")
if not debugmode:
    if "dev" in __version__:
        debugmode = "DEVELOPMENT"
    else:
        debugmode = "PRODUCTION"

log = logging.getLogger("calendula")
if debugmode.startswith("DEBUG"):
    log.setLevel(logging.DEBUG)
else:
    log.setLevel(logging.WARNING)


def errmsg(r) -> str:
    """Utility for formatting an error response to an error string"""
    return "%s %s\n\n%s" % (r.status, r.reason, r.body)


def weirdness(*reasons) -> None:
    """Log a deviation from what the RFCs promise.  Never raises."""
    reason = " : ".join(str(x) for x in reasons)
    log.warning(f"Deviation from expectations found: {reason}")
    if debugmode == "DEBUG_PDB":
        log.error(f"Dropping into debugger due to {reason}")
        import pdb

        pdb.set_trace()


class DAVError(Exception):
    url: Optional[str] = None
    reason: str = "no reason"
    exit_status: int = 1

    def __init__(self, url: Optional[str] = None, reason: Optional[str] = None) -> None:
        if url:
            self.url = url
        if reason:
            self.reason = reason
        super().__init__(self.url, self.reason)

    def __str__(self) -> str:
        return "%s at '%s', reason %s" % (
            self.__class__.__name__,
            self.url,
            self.reason,
        )


## Discovery


class DiscoveryError(DAVError):
    """Raised when the server, principal or calendar home cannot be located"""

    exit_status = 10


class TooManyRedirects(DiscoveryError):
    exit_status = 11


class PrincipalNotFound(DiscoveryError):
    exit_status = 12


class HomeSetNotFound(DiscoveryError):
    exit_status = 13


## Authentication


class AuthError(DAVError):
    exit_status = 20


class Unauthorized(AuthError):
    """
    The server kept answering 401 after the auth strategy had its one
    chance to refresh the credentials.
    """

    exit_status = 21


class SecretUnavailable(AuthError):
    exit_status = 22


## Transport


class TransportError(DAVError):
    exit_status = 30


class TransportTimeout(TransportError):
    exit_status = 31


class ConnectionFailed(TransportError):
    exit_status = 32


class TlsError(TransportError):
    exit_status = 33


## Protocol


class ProtocolError(DAVError):
    exit_status = 40


class MalformedResponse(ProtocolError):
    exit_status = 41


class UnexpectedStatus(ProtocolError):
    """
    The server answered with a status code the operation has no
    meaning for.  The status code and the response body are kept, the
    caller may want to look into them (i.e. for a RFC 6578
    valid-sync-token precondition).
    """

    exit_status = 42
    status: int = 0
    body: bytes = b""

    def __init__(
        self,
        url: Optional[str] = None,
        reason: Optional[str] = None,
        status: int = 0,
        body: bytes = b"",
    ) -> None:
        self.status = status
        self.body = body or b""
        super().__init__(url, reason or f"unexpected status {status}")


## Domain


class ConflictError(DAVError):
    """The If-Match / If-None-Match precondition failed (HTTP 412)"""

    exit_status = 50


class NotFoundError(DAVError):
    exit_status = 51


class MalformedItem(DAVError):
    exit_status = 52


class ConfigurationError(DAVError):
    exit_status = 60
