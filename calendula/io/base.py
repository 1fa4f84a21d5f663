"""
The interface between :class:`calendula.davclient.DAVClient` and
whatever moves the bytes.  :class:`calendula.io.SyncIO` is the real
one, the tests plug in an in-memory CalDAV server instead.
"""

from typing import Protocol, runtime_checkable

from calendula.protocol.types import DAVRequest, DAVResponse


@runtime_checkable
class SyncIOProtocol(Protocol):
    def execute(self, request: DAVRequest) -> DAVResponse:
        """
        Send the request and hand back the response as it is.  Any
        status, 3xx and 4xx included, is a response and not an error,
        redirects and authentication are dealt with by the caller.

        Raises:
            TransportError: on timeouts, TLS and connection failures
        """
        ...

    def close(self) -> None:
        ...
