"""
The requests based I/O shell, with a mocked session.
"""
from unittest.mock import Mock

import pytest
import requests

from calendula.io import SyncIO
from calendula.lib import error
from calendula.protocol.types import DAVMethod
from calendula.protocol.types import DAVRequest

REQUEST = DAVRequest(
    method=DAVMethod.PROPFIND,
    url="https://dav.example.com/",
    headers={"Depth": "0"},
    body=b"<propfind/>",
)


def session_returning(status=207, headers=None, content=b""):
    session = Mock()
    session.request.return_value = Mock(
        status_code=status, headers=headers or {}, content=content
    )
    return session


class TestSyncIO:
    def test_execute(self):
        session = session_returning(207, {"Content-Type": "application/xml"}, b"<x/>")
        io = SyncIO(session=session, timeout=5, verify="/etc/ca.pem")
        response = io.execute(REQUEST)
        assert response.status == 207
        assert response.body == b"<x/>"
        assert response.header("content-type") == "application/xml"
        assert response.url == REQUEST.url
        kwargs = session.request.call_args.kwargs
        assert kwargs["method"] == "PROPFIND"
        assert kwargs["data"] == b"<propfind/>"
        assert kwargs["timeout"] == 5
        assert kwargs["verify"] == "/etc/ca.pem"
        assert kwargs["allow_redirects"] is False

    @pytest.mark.parametrize(
        "exception, expected",
        [
            (requests.exceptions.ConnectTimeout(), error.TransportTimeout),
            (requests.exceptions.ReadTimeout(), error.TransportTimeout),
            (requests.exceptions.SSLError(), error.TlsError),
            (requests.exceptions.ConnectionError(), error.ConnectionFailed),
            (requests.exceptions.InvalidURL(), error.TransportError),
        ],
    )
    def test_exception_mapping(self, exception, expected):
        session = Mock()
        session.request.side_effect = exception
        with pytest.raises(expected) as excinfo:
            SyncIO(session=session).execute(REQUEST)
        assert excinfo.value.url == REQUEST.url
        assert isinstance(excinfo.value, error.TransportError)

    def test_given_session_is_not_closed(self):
        session = Mock()
        SyncIO(session=session).close()
        session.close.assert_not_called()

    def test_own_session_is_closed(self):
        io = SyncIO()
        io.session = Mock()
        io.close()
        io.session.close.assert_called_once_with()
