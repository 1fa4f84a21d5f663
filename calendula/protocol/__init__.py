"""
Sans-I/O CalDAV protocol implementation.

This module provides protocol-level operations without any I/O.
It builds requests and parses responses as pure data transformations.

The protocol layer is organized into:
- types: Core data structures (DAVRequest, DAVResponse, result types)
- xml_builders: Pure functions to build XML request bodies
- xml_parsers: Pure functions to parse XML response bodies
- operations: High-level CalDAVProtocol class combining builders and parsers

Example usage:

    from calendula.protocol import CalDAVProtocol

    protocol = CalDAVProtocol(base_url="https://cal.example.com")

    # Build a request (no I/O)
    request = protocol.propfind_request(
        path="/calendars/user/",
        props=["displayname", "resourcetype"],
        depth=1
    )

    # Execute via your preferred I/O (real or fake)
    response = io.execute(request)

    # Parse response (no I/O)
    results = protocol.parse_propfind(response)
"""

from .types import (
    # Enums
    DAVMethod,
    # Request/Response
    DAVRequest,
    DAVResponse,
    # Result types
    CalendarQueryResult,
    MultistatusResponse,
    PropfindResult,
    SyncCollectionResult,
)
from .xml_builders import (
    build_calendar_multiget_body,
    build_calendar_query_body,
    build_mkcalendar_body,
    build_propfind_body,
    build_proppatch_body,
    build_sync_collection_body,
)
from .xml_parsers import (
    has_precondition,
    parse_calendar_query_response,
    parse_multistatus,
    parse_propfind_response,
    parse_sync_collection_response,
)
from .operations import CalDAVProtocol

__all__ = [
    # Enums
    "DAVMethod",
    # Request/Response
    "DAVRequest",
    "DAVResponse",
    # Result types
    "CalendarQueryResult",
    "MultistatusResponse",
    "PropfindResult",
    "SyncCollectionResult",
    # XML Builders
    "build_calendar_multiget_body",
    "build_calendar_query_body",
    "build_mkcalendar_body",
    "build_propfind_body",
    "build_proppatch_body",
    "build_sync_collection_body",
    # XML Parsers
    "has_precondition",
    "parse_calendar_query_response",
    "parse_multistatus",
    "parse_propfind_response",
    "parse_sync_collection_response",
    # Protocol
    "CalDAVProtocol",
]
