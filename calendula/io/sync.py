"""
The requests based transport.
"""

import logging
from typing import Optional
from typing import Tuple
from typing import Union

import requests

from calendula.lib import error
from calendula.protocol.types import DAVRequest, DAVResponse

log = logging.getLogger(__name__)


class SyncIO:
    """
    Sends DAVRequests over one requests.Session, so that connections
    are reused between the requests of an operation.  requests
    exceptions come out as TransportError subclasses.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = 30.0,
        verify: Union[bool, str] = True,
        cert: Union[str, Tuple[str, str], None] = None,
    ):
        """
        Args:
            session: a session of the caller, it is not closed by close()
            timeout: Request timeout in seconds
            verify: Verify SSL certificates, or path to a CA bundle
            cert: Client certificate, a path or a (cert, key) tuple
        """
        self._owns_session = session is None
        self.session = session or requests.Session()
        self.timeout = timeout
        self.verify = verify
        self.cert = cert

    def execute(self, request: DAVRequest) -> DAVResponse:
        try:
            response = self.session.request(
                method=request.method.value,
                url=request.url,
                headers=request.headers,
                data=request.body,
                timeout=self.timeout,
                verify=self.verify,
                cert=self.cert,
                allow_redirects=False,
            )
        except requests.exceptions.Timeout as e:
            raise error.TransportTimeout(url=request.url, reason=str(e))
        ## SSLError is a subclass of ConnectionError, so it goes first
        except requests.exceptions.SSLError as e:
            raise error.TlsError(url=request.url, reason=str(e))
        except requests.exceptions.ConnectionError as e:
            raise error.ConnectionFailed(url=request.url, reason=str(e))
        except requests.exceptions.RequestException as e:
            raise error.TransportError(url=request.url, reason=str(e))

        return DAVResponse(
            status=response.status_code,
            headers=dict(response.headers),
            body=response.content,
            url=request.url,
        )

    def close(self) -> None:
        if self._owns_session and self.session:
            self.session.close()

    def __enter__(self) -> "SyncIO":
        return self

    def __exit__(self, *args) -> None:
        self.close()
