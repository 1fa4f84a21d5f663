#!/usr/bin/env python
import sys
from typing import Any
from typing import Union
from urllib.parse import quote
from urllib.parse import SplitResult
from urllib.parse import unquote
from urllib.parse import urlsplit
from urllib.parse import urlunsplit

from calendula.lib.python_utilities import to_unicode

if sys.version_info < (3, 11):
    from typing_extensions import Self
else:
    from typing import Self

_DEFAULT_PORTS = {"https": 443, "http": 80}


class URL:
    """
    Wraps the addresses handed around between the client, the
    discovery and the CalDAV backend.  An address may be one out of
    three:

    1) a path relative to some collection, i.e. "work/" may refer to
    "https://dav.example.com/calendars/someuser/work/" when joined with
    the calendar home.

    2) an absolute path, i.e. "/calendars/someuser/work/"

    3) a fully qualified URL, i.e.
    "https://dav.example.com/calendars/someuser/work/".

    Servers are free to hand out any of those in href elements, so
    everything passing through the backends is run through this class.
    The attributes of :class:`urllib.parse.SplitResult` (scheme,
    netloc, hostname, port, path ...) are available directly.
    """

    def __init__(self, url: Union[str, bytes, SplitResult]) -> None:
        if isinstance(url, SplitResult):
            self.parts = url
        else:
            self.parts = urlsplit(to_unicode(url) or "")

    @classmethod
    def objectify(cls, url: Union[Self, str, bytes, SplitResult, None]) -> "URL":
        if url is None or isinstance(url, URL):
            return url
        return cls(url)

    def __getattr__(self, attr: str) -> Any:
        if attr == "parts":
            raise AttributeError(attr)
        return getattr(self.parts, attr)

    def __str__(self) -> str:
        return urlunsplit(self.parts)

    def __repr__(self) -> str:
        return "URL(%s)" % str(self)

    def __bool__(self) -> bool:
        return bool(str(self))

    def __eq__(self, other: object) -> bool:
        if other is None:
            return False
        ## the URLs could have insignificant differences
        return str(self.canonical()) == str(URL.objectify(other).canonical())

    def __hash__(self) -> int:
        return hash(str(self.canonical()))

    def with_trailing_slash(self) -> "URL":
        if self.parts.path.endswith("/"):
            return self
        return URL(self.parts._replace(path=self.parts.path + "/"))

    def canonical(self) -> "URL":
        """
        a canonical URL ... lower case scheme and host, an explicit
        port, no double slashes, and a path that is properly quoted
        """
        scheme = (self.parts.scheme or "https").lower()
        netloc = self.parts.netloc.lower()
        if netloc and self.parts.port is None and scheme in _DEFAULT_PORTS:
            netloc += ":%i" % _DEFAULT_PORTS[scheme]
        path = quote(unquote(self.parts.path.replace("//", "/")))
        return URL(SplitResult(scheme, netloc, path, self.parts.query, ""))

    def join(self, path: Any) -> "URL":
        """
        assumes this object is the base URL or base path.  If the path
        is relative, it should be appended to the base.  If the path
        is absolute, it should be added to the connection details of
        self.  If the path already contains connection details, the
        path wins, as servers may legitimately point to another host
        for the principal or the calendar home.
        """
        if not path or not str(path):
            return self
        path = URL.objectify(path)
        if path.scheme and path.netloc:
            return path

        if path.path.startswith("/"):
            ret_path = path.path
        else:
            sep = "" if self.path.endswith("/") else "/"
            ret_path = "%s%s%s" % (self.path, sep, path.path)
        return URL(
            SplitResult(
                self.scheme or path.scheme,
                self.netloc or path.netloc,
                ret_path,
                path.query,
                path.fragment,
            )
        )
