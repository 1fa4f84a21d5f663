"""
Pure functions for building CalDAV XML request bodies.

All functions in this module are pure - they take data in and return XML out,
with no side effects or I/O.
"""
from datetime import datetime
from typing import Any
from typing import Dict
from typing import List
from typing import Optional

from calendula.elements import cdav
from calendula.elements import dav
from calendula.elements import ical
from calendula.elements.base import BaseElement


def build_propfind_body(props: Optional[List[str]] = None) -> bytes:
    """
    Build PROPFIND request body XML.

    Args:
        props: List of property names to retrieve.  Unknown names are
               skipped.  If None, returns a minimal propfind.

    Returns:
        UTF-8 encoded XML bytes
    """
    prop_elements = []
    for prop_name in props or []:
        prop_element = _prop_name_to_element(prop_name)
        if prop_element is not None:
            prop_elements.append(prop_element)
    propfind = dav.Propfind() + (dav.Prop() + prop_elements)
    return propfind.tobytes()


def build_proppatch_body(
    set_props: Optional[Dict[str, Any]] = None,
    remove_props: Optional[List[str]] = None,
) -> bytes:
    """
    Build PROPPATCH request body for setting and removing properties.

    Args:
        set_props: Properties to set (name -> value)
        remove_props: Property names to remove
    """
    propertyupdate = dav.PropertyUpdate()

    if set_props:
        set_elements = []
        for name, value in set_props.items():
            prop_element = _prop_name_to_element(name, value)
            if prop_element is not None:
                set_elements.append(prop_element)
        if set_elements:
            propertyupdate += dav.Set() + (dav.Prop() + set_elements)

    if remove_props:
        remove_elements = []
        for name in remove_props:
            prop_element = _prop_name_to_element(name)
            if prop_element is not None:
                remove_elements.append(prop_element)
        if remove_elements:
            propertyupdate += dav.Remove() + (dav.Prop() + remove_elements)

    return propertyupdate.tobytes()


def build_calendar_query_body(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    comp_filter: Optional[str] = None,
    uid: Optional[str] = None,
    include_data: bool = True,
) -> bytes:
    """
    Build calendar-query REPORT request body.

    This is the core CalDAV search operation for retrieving calendar objects
    matching specified criteria.  Without any criteria every object in the
    collection matches.

    Args:
        start: Start of time range filter
        end: End of time range filter
        comp_filter: Component type filter name (VEVENT, VTODO, VJOURNAL).
            Required for a time range, defaults to VEVENT then.
        uid: Only match objects with this UID
        include_data: Include calendar-data in response
    """
    props_list: List[BaseElement] = [dav.GetEtag()]
    if include_data:
        props_list.append(cdav.CalendarData())
    prop = dav.Prop() + props_list

    vcalendar = cdav.CompFilter("VCALENDAR")

    filter_list: List[BaseElement] = []
    if start or end:
        filter_list.append(cdav.TimeRange(start, end))
    if uid is not None:
        filter_list.append(cdav.PropFilter("UID") + cdav.TextMatch(uid))

    ## Neither a time-range nor a UID can be put directly below the
    ## VCALENDAR filter, and sibling comp-filters are AND-ed, so the
    ## caller has to do one query per component type.
    if filter_list and not comp_filter:
        comp_filter = "VEVENT"

    if comp_filter:
        comp_filter_elem = cdav.CompFilter(comp_filter)
        if filter_list:
            comp_filter_elem += filter_list
        vcalendar += comp_filter_elem

    root = cdav.CalendarQuery() + [prop, cdav.Filter() + vcalendar]
    return root.tobytes()


def build_calendar_multiget_body(
    hrefs: List[str],
    include_data: bool = True,
) -> bytes:
    """
    Build calendar-multiget REPORT request body.

    Used to retrieve multiple calendar objects by their URLs in a single request.

    Args:
        hrefs: List of calendar object URLs to retrieve
        include_data: Include calendar-data in response
    """
    props: List[BaseElement] = [dav.GetEtag()]
    if include_data:
        props.append(cdav.CalendarData())

    elements: List[BaseElement] = [dav.Prop() + props]
    for href in hrefs:
        elements.append(dav.Href(href))

    return (cdav.CalendarMultiGet() + elements).tobytes()


def build_sync_collection_body(
    sync_token: Optional[str] = None,
    include_data: bool = True,
    sync_level: str = "1",
) -> bytes:
    """
    Build sync-collection REPORT request body (RFC 6578).

    Used for efficient synchronization - only returns changed items since
    the given sync token.

    Args:
        sync_token: Previous sync token (empty for initial sync)
        include_data: Ask for calendar-data in addition to getetag.
            Servers are not obliged to honor this.
        sync_level: Sync level (always "1" for calendars)
    """
    props: List[BaseElement] = [dav.GetEtag()]
    if include_data:
        props.append(cdav.CalendarData())

    sync_collection = dav.SyncCollection() + [
        dav.SyncToken(sync_token or ""),
        dav.SyncLevel(sync_level),
        dav.Prop() + props,
    ]
    return sync_collection.tobytes()


def build_mkcalendar_body(
    displayname: Optional[str] = None,
    description: Optional[str] = None,
    color: Optional[str] = None,
    supported_components: Optional[List[str]] = None,
) -> bytes:
    """
    Build MKCALENDAR request body.

    Args:
        displayname: Calendar display name
        description: Calendar description
        color: Calendar color (Apple calendar-color property)
        supported_components: List of supported component types (VEVENT, VTODO, etc.)
    """
    prop = dav.Prop()

    if displayname:
        prop += dav.DisplayName(displayname)

    if description:
        prop += cdav.CalendarDescription(description)

    if color:
        prop += ical.CalendarColor(color)

    if supported_components:
        sccs = cdav.SupportedCalendarComponentSet()
        for comp in supported_components:
            sccs += cdav.Comp(comp)
        prop += sccs

    mkcalendar = cdav.Mkcalendar() + (dav.Set() + prop)
    return mkcalendar.tobytes()


# Property name to element mapping


_DAV_PROPS: Dict[str, Any] = {
    "displayname": dav.DisplayName,
    "resourcetype": dav.ResourceType,
    "getetag": dav.GetEtag,
    "current-user-principal": dav.CurrentUserPrincipal,
    "sync-token": dav.SyncToken,
}

_CALDAV_PROPS: Dict[str, Any] = {
    "calendar-data": cdav.CalendarData,
    "calendar-home-set": cdav.CalendarHomeSet,
    "calendar-description": cdav.CalendarDescription,
    "supported-calendar-component-set": cdav.SupportedCalendarComponentSet,
}

_OTHER_PROPS: Dict[str, Any] = {
    "calendar-color": ical.CalendarColor,
    "getctag": ical.GetCTag,
}


def _prop_name_to_element(
    name: str, value: Optional[Any] = None
) -> Optional[BaseElement]:
    """
    Convert property name string to element object.

    Args:
        name: Property name (case-insensitive, "_" is accepted for "-")
        value: Optional value for valued elements

    Returns:
        BaseElement instance or None if unknown property
    """
    name_lower = name.lower().replace("_", "-")

    for props in (_DAV_PROPS, _CALDAV_PROPS, _OTHER_PROPS):
        if name_lower in props:
            cls = props[name_lower]
            if value is not None:
                try:
                    return cls(value)
                except TypeError:
                    return cls()
            return cls()

    return None
