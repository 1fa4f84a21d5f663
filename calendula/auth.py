"""
Authentication strategies.

Each strategy knows how to decorate an outgoing request with its
credentials and what to do when the server answers 401.  The
DAVClient gives a strategy at most one chance per request to refresh
its credentials; a second 401 is raised as Unauthorized.
"""
import base64
import enum
import logging
from typing import Optional

from calendula.protocol.types import DAVRequest
from calendula.protocol.types import DAVResponse
from calendula.secret import resolve_secret
from calendula.secret import SecretResolver
from calendula.secret import SecretSource

log = logging.getLogger(__name__)


class AuthDecision(enum.Enum):
    RETRY = "retry"
    GIVE_UP = "give-up"


def extract_auth_types(header: str) -> set[str]:
    """
    Extract authentication types from WWW-Authenticate header.

    Example:
        >>> extract_auth_types('Basic realm="test", Digest realm="test"')
        {'basic', 'digest'}

    Reference:
        https://developer.mozilla.org/en-US/docs/Web/HTTP/Headers/WWW-Authenticate#syntax
    """
    return {h.split()[0] for h in header.lower().split(",") if h.strip()}


def _log_unauthorized(strategy: str, response: DAVResponse) -> None:
    www_auth = response.header("WWW-Authenticate")
    if www_auth:
        log.debug(
            f"{strategy}: 401 from server, it offers {sorted(extract_auth_types(www_auth))}"
        )
    else:
        log.debug(f"{strategy}: 401 from server without WWW-Authenticate")


class NoAuth:
    """Requests are sent as they are.  A 401 is final."""

    def apply(self, request: DAVRequest) -> DAVRequest:
        return request

    def on_unauthorized(self, response: DAVResponse) -> AuthDecision:
        _log_unauthorized("no auth", response)
        return AuthDecision.GIVE_UP


class BasicAuth:
    """
    HTTP Basic authentication.

    The password is resolved the first time a request is sent, and
    the encoded header is kept for the lifetime of the object.
    Retrying with the same password is pointless, so a 401 is final.
    """

    def __init__(
        self,
        username: str,
        password: SecretSource,
        resolve: SecretResolver = resolve_secret,
    ) -> None:
        self.username = username
        self.password = password
        self._resolve = resolve
        self._header: Optional[str] = None

    def _authorization(self) -> str:
        if self._header is None:
            password = self._resolve(self.password)
            ## I had problems with passwords with non-ascii letters in it,
            ## utf-8 is what most servers expect these days
            credentials = f"{self.username}:{password}".encode("utf-8")
            self._header = "Basic " + base64.b64encode(credentials).decode("ascii")
        return self._header

    def apply(self, request: DAVRequest) -> DAVRequest:
        return request.with_header("Authorization", self._authorization())

    def on_unauthorized(self, response: DAVResponse) -> AuthDecision:
        _log_unauthorized("basic auth", response)
        return AuthDecision.GIVE_UP


class BearerAuth:
    """
    Bearer token authentication.

    The token is fetched lazily and cached.  Tokens expire, so on a
    401 the cached token is dropped and the request may be retried
    with a freshly resolved one.
    """

    def __init__(
        self,
        token: SecretSource,
        resolve: SecretResolver = resolve_secret,
    ) -> None:
        self.token = token
        self._resolve = resolve
        self._cached: Optional[str] = None

    def apply(self, request: DAVRequest) -> DAVRequest:
        if self._cached is None:
            self._cached = self._resolve(self.token)
        return request.with_header("Authorization", f"Bearer {self._cached}")

    def on_unauthorized(self, response: DAVResponse) -> AuthDecision:
        _log_unauthorized("bearer auth", response)
        self._cached = None
        return AuthDecision.RETRY


AuthStrategy = NoAuth | BasicAuth | BearerAuth
