"""
Pure functions turning multistatus response bodies into the result
types of :mod:`calendula.protocol.types`.

Elements are always matched on namespace URI plus local name (lxml's
"{namespace}local" Clark notation), never on the prefix the server
happened to choose.
"""

import logging
from typing import Any, Callable, Optional
from urllib.parse import unquote

from lxml import etree
from lxml.etree import _Element

from calendula.elements import cdav, dav
from calendula.lib import error
from calendula.lib.url import URL

from .types import CalendarQueryResult, MultistatusResponse, PropfindResult, SyncCollectionResult

log = logging.getLogger(__name__)


def parse_xml(body: bytes, huge_tree: bool = False) -> _Element:
    """
    Parse an XML document.

    Raises:
        MalformedResponse: If body is not valid XML
    """
    parser = etree.XMLParser(remove_blank_text=True, huge_tree=huge_tree)
    try:
        return etree.fromstring(body, parser)
    except etree.XMLSyntaxError as e:
        raise error.MalformedResponse(reason=f"invalid XML in response: {e}")


def parse_multistatus(body: bytes, huge_tree: bool = False) -> MultistatusResponse:
    """
    Parse a 207 Multi-Status response body.  An empty body is an empty
    multistatus, a sync-token element on the top level is picked up.

    Raises:
        MalformedResponse: If body is not valid XML, or a response
            element carries no href
    """
    if not body or not body.strip():
        return MultistatusResponse()

    result = MultistatusResponse()
    for elem in _multistatus_children(parse_xml(body, huge_tree=huge_tree)):
        if elem.tag == dav.Response.tag:
            result.responses.append(_parse_response(elem))
        elif elem.tag == dav.SyncToken.tag:
            result.sync_token = elem.text
        else:
            error.weirdness("unexpected element in multistatus", elem.tag)
    return result


def parse_propfind_response(body: bytes, huge_tree: bool = False) -> list[PropfindResult]:
    return parse_multistatus(body, huge_tree=huge_tree).responses


def parse_calendar_query_response(
    body: bytes,
    huge_tree: bool = False,
) -> list[CalendarQueryResult]:
    """Parse a calendar-query or calendar-multiget REPORT response."""
    multistatus = parse_multistatus(body, huge_tree=huge_tree)
    return [_to_calendar_query_result(x) for x in multistatus.responses]


def parse_sync_collection_response(
    body: bytes,
    huge_tree: bool = False,
) -> SyncCollectionResult:
    """
    Parse a sync-collection REPORT response.  Members reported with a
    404 status are gone since the given token, all others have changed.
    """
    multistatus = parse_multistatus(body, huge_tree=huge_tree)
    result = SyncCollectionResult(sync_token=multistatus.sync_token)
    for response in multistatus.responses:
        if response.status == 404:
            result.deleted.append(response.href)
        else:
            result.changed.append(_to_calendar_query_result(response))
    return result


def has_precondition(body: bytes, tag: str) -> bool:
    """
    Check if an error response body carries the given precondition
    element, i.e. {DAV:}valid-sync-token.  Never raises.
    """
    if not body:
        return False
    try:
        tree = etree.fromstring(body)
    except etree.XMLSyntaxError:
        return False
    return tree.tag == tag or tree.find(".//" + tag) is not None


## Helpers


def _multistatus_children(tree: _Element) -> list[_Element]:
    """
    The response elements normally sit directly below multistatus.
    Some servers wrap it in an <xml> element, some leave it out.
    """
    if tree.tag == "xml" and len(tree) and tree[0].tag == dav.MultiStatus.tag:
        tree = tree[0]
    if tree.tag == dav.MultiStatus.tag:
        return list(tree)
    return [tree]


def _parse_response(response: _Element) -> PropfindResult:
    """
    One DAV:response holds one href, zero or one status and zero or
    more propstats.
    """
    href: Optional[str] = None
    status: Optional[str] = None
    properties: dict[str, Any] = {}

    for elem in response:
        if elem.tag == dav.Href.tag:
            href = _href_path(elem.text)
        elif elem.tag == dav.Status.tag:
            status = elem.text
        elif elem.tag == dav.PropStat.tag:
            properties.update(_propstat_properties(elem))
        elif elem.tag == dav.Error.tag:
            ## Some servers (purelymail) add an error element on 404
            continue
        else:
            error.weirdness("unexpected element found in response", elem.tag)

    if not href:
        raise error.MalformedResponse(reason="response element without href")
    return PropfindResult(href=href, properties=properties, status=_status_to_code(status))


def _href_path(text: Optional[str]) -> str:
    """hrefs are reduced to an unquoted path, whatever form the server used"""
    text = (text or "").strip()
    ## double-encoded @ (Confluence)
    text = text.replace("%2540", "%40")
    href = unquote(text)
    if ":" in href:
        href = unquote(URL(href).path)
    return href


def _propstat_properties(propstat: _Element) -> dict[str, Any]:
    """
    Properties may come in one propstat or spread over several.  The
    ones in a propstat with a non-2xx status (typically 404) are left
    out.
    """
    status = propstat.find(dav.Status.tag)
    if status is not None and status.text:
        if not 200 <= _status_to_code(status.text) < 300:
            return {}
    prop = propstat.find(dav.Prop.tag)
    if prop is None:
        return {}
    return {child.tag: _element_to_value(child) for child in prop}


def _to_calendar_query_result(response: PropfindResult) -> CalendarQueryResult:
    calendar_data = response.properties.get(cdav.CalendarData.tag)
    if isinstance(calendar_data, str):
        calendar_data = calendar_data.encode("utf-8")
    return CalendarQueryResult(
        href=response.href,
        etag=response.properties.get(dav.GetEtag.tag),
        calendar_data=calendar_data,
        status=response.status,
    )


def _child_hrefs(elem: _Element) -> list[str]:
    return [c.text.strip() for c in elem if c.tag == dav.Href.tag and c.text]


def _home_set(elem: _Element) -> Any:
    hrefs = _child_hrefs(elem)
    return hrefs[0] if len(hrefs) == 1 else hrefs


def _principal(elem: _Element) -> Optional[str]:
    hrefs = _child_hrefs(elem)
    return hrefs[0] if hrefs else None


def _component_names(elem: _Element) -> list[str]:
    return [c.get("name") for c in elem if c.get("name")]


## property tag -> converter, for properties with child elements
_VALUE_PARSERS: dict[str, Callable[[_Element], Any]] = {
    cdav.SupportedCalendarComponentSet.tag: _component_names,
    cdav.CalendarHomeSet.tag: _home_set,
    dav.CurrentUserPrincipal.tag: _principal,
}


def _element_to_value(elem: _Element) -> Any:
    """
    Convert a property element to a Python value.  resourcetype gives
    the list of child tags (even when empty), leaf elements give
    their text, a few known properties have their own converter, and
    anything else gives the texts (or names, or tags) of its children.
    """
    if elem.tag == dav.ResourceType.tag:
        return [child.tag for child in elem]
    if len(elem) == 0:
        return elem.text
    if elem.tag in _VALUE_PARSERS:
        return _VALUE_PARSERS[elem.tag](elem)

    values = []
    for child in elem:
        if child.text:
            values.append(child.text)
        elif child.get("name"):
            values.append(child.get("name"))
        elif len(child) == 0:
            values.append(child.tag)
    if len(values) == 1:
        return values[0]
    ## fall back to the element itself
    return values or elem


def _status_to_code(status: Optional[str]) -> int:
    """
    "HTTP/1.1 404 Not Found" -> 404.  A missing or unparseable
    status counts as 200.
    """
    if not status:
        return 200
    parts = status.split()
    if len(parts) >= 2:
        try:
            return int(parts[1])
        except ValueError:
            error.weirdness("cannot parse status", status)
    return 200
