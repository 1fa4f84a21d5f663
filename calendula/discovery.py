#!/usr/bin/env python
"""
Locating the CalDAV service, the principal and the calendar home.

Discovery runs in up to three steps, each one skipped when the
corresponding URI is already configured:

1. The server URI, through DNS SRV/TXT records (RFC 6764, optional)
   and the well-known URI ``/.well-known/caldav``.
2. The principal URI, from the {DAV:}current-user-principal property
   of the server URI.
3. The calendar home URI, from the calendar-home-set property of the
   principal.

With the calendar home configured nothing is sent over the wire at all.

SECURITY CONSIDERATIONS:
    DNS-based discovery is vulnerable to spoofing if DNS is not secured
    with DNSSEC.  SRV targets outside of the queried domain are rejected
    (RFC 6764 section 8), and DNS lookups are off unless enabled in the
    configuration.

See: https://datatracker.ietf.org/doc/html/rfc6764
"""
import logging
from typing import List
from typing import Optional
from typing import Tuple
from urllib.parse import urlparse

import dns.exception
import dns.resolver

from calendula.config import DiscoverConfig
from calendula.davclient import DAVClient
from calendula.elements import cdav
from calendula.elements import dav
from calendula.lib import error
from calendula.lib.url import URL
from calendula.objects import ServerLocation
from calendula.protocol.types import DAVMethod
from calendula.protocol.types import DAVRequest

log = logging.getLogger(__name__)

WELL_KNOWN_PATH = "/.well-known/caldav"


def _is_subdomain_or_same(discovered_domain: str, original_domain: str) -> bool:
    """
    Check if discovered domain is the same as or a subdomain of the original domain.

    Examples:
        >>> _is_subdomain_or_same('calendar.example.com', 'example.com')
        True
        >>> _is_subdomain_or_same('exampleXcom.evil.com', 'example.com')
        False
    """
    discovered = discovered_domain.lower().strip(".")
    original = original_domain.lower().strip(".")
    return discovered == original or discovered.endswith("." + original)


def _extract_domain(identifier: str) -> Tuple[str, Optional[int]]:
    """
    Extract host and optional port from an email address, a URL or a
    bare host name.

    Examples:
        >>> _extract_domain('user@example.com')
        ('example.com', None)
        >>> _extract_domain('https://caldav.example.com:8443/path')
        ('caldav.example.com', 8443)
    """
    if "://" in identifier:
        parsed = urlparse(identifier)
        return (parsed.hostname or identifier, parsed.port)

    if "@" in identifier:
        identifier = identifier.split("@")[-1]

    identifier = identifier.strip()
    if identifier.count(":") == 1:
        host, port = identifier.split(":")
        if port.isdigit():
            return (host, int(port))
    return (identifier, None)


def _parse_txt_record(txt_data: str) -> Optional[str]:
    """
    TXT records are attribute=value pairs, we're looking for the
    'path' attribute.

        >>> _parse_txt_record('path=/caldav/ other=value')
        '/caldav/'
    """
    for pair in txt_data.split():
        if "=" in pair:
            key, value = pair.split("=", 1)
            if key.strip().lower() == "path":
                return value.strip()
    return None


def _srv_lookup(domain: str, use_tls: bool = True) -> List[Tuple[str, int, int, int]]:
    """
    DNS SRV lookup for _caldavs._tcp (or _caldav._tcp without TLS).

    Returns:
        List of tuples: (hostname, port, priority, weight), sorted by
        priority (lower is better), then weight
    """
    srv_name = f"_caldav{'s' if use_tls else ''}._tcp.{domain}"
    log.debug(f"Performing SRV lookup for {srv_name}")

    try:
        answers = dns.resolver.resolve(srv_name, "SRV")
    except dns.exception.DNSException as e:
        log.debug(f"SRV lookup failed for {srv_name}: {e}")
        return []

    results = []
    for rdata in answers:
        hostname = str(rdata.target).rstrip(".")
        ## RFC 2782: a target of "." means the service is not available
        if not hostname:
            continue
        results.append((hostname, int(rdata.port), int(rdata.priority), int(rdata.weight)))
        log.debug(f"Found SRV record: {results[-1]}")

    results.sort(key=lambda x: (x[2], -x[3]))
    return results


def _txt_lookup(domain: str, use_tls: bool = True) -> Optional[str]:
    """
    DNS TXT lookup for the context path of the service.
    """
    txt_name = f"_caldav{'s' if use_tls else ''}._tcp.{domain}"
    log.debug(f"Performing TXT lookup for {txt_name}")

    try:
        answers = dns.resolver.resolve(txt_name, "TXT")
    except dns.exception.DNSException as e:
        log.debug(f"TXT lookup failed for {txt_name}: {e}")
        return None

    for rdata in answers:
        # TXT records can have multiple strings; join them
        txt_data = "".join(
            s.decode("utf-8") if isinstance(s, bytes) else s for s in rdata.strings
        )
        log.debug(f"Found TXT record: {txt_data}")
        path = _parse_txt_record(txt_data)
        if path:
            return path
    return None


def _url(scheme: str, host: str, port: Optional[int], path: str) -> str:
    default_port = 443 if scheme == "https" else 80
    if port and port != default_port:
        return f"{scheme}://{host}:{port}{path}"
    return f"{scheme}://{host}{path}"


def _well_known(
    client: DAVClient,
    scheme: str,
    host: str,
    port: Optional[int],
    method: str,
    max_redirects: int,
) -> str:
    url = _url(scheme, host, port, WELL_KNOWN_PATH)
    log.debug(f"Trying well-known URI: {url}")
    try:
        dav_method = DAVMethod(method.upper())
    except ValueError:
        raise error.ConfigurationError(reason=f"unsupported discovery method {method}")

    if dav_method == DAVMethod.PROPFIND:
        request = client.protocol.propfind_request(url, ["current-user-principal"], depth=0)
    else:
        request = DAVRequest(method=dav_method, url=url, headers=dict(client.headers))

    response = client.request(request, max_redirects=max_redirects)
    if not response.ok:
        raise error.DiscoveryError(
            url=response.url,
            reason=f"well-known lookup answered {response.status} {response.reason}",
        )
    log.info(f"Discovered CalDAV service via well-known URI: {response.url}")
    return response.url


def discover_server(
    client: DAVClient, hint: DiscoverConfig, max_redirects: int = 5
) -> str:
    """
    Find the CalDAV server URI for a host.

    DNS SRV/TXT records are consulted first when enabled in the hint.
    An SRV record without a TXT path gives the host and port to send
    the well-known request to.

    Raises:
      DiscoveryError, TooManyRedirects
    """
    host, port = _extract_domain(hint.host)
    if hint.port:
        port = hint.port
    scheme = hint.scheme or "https"
    log.info(f"Discovering CalDAV service for {host}")

    if hint.dns:
        use_tls = scheme == "https"
        for srv_host, srv_port, priority, weight in _srv_lookup(host, use_tls):
            if not _is_subdomain_or_same(srv_host, host):
                log.warning(
                    f"RFC 6764 Security: Rejecting SRV record pointing to different domain. "
                    f"Queried domain: {host}, Target FQDN: {srv_host}."
                )
                continue
            path = _txt_lookup(host, use_tls)
            if path:
                url = _url(scheme, srv_host, srv_port, path)
                log.info(f"Discovered CalDAV service via SRV/TXT: {url}")
                return url
            host, port = srv_host, srv_port
            break

    return _well_known(client, scheme, host, port, hint.method, max_redirects)


def _find_href(client: DAVClient, url: str, prop: str, tag: str, max_redirects: int) -> Optional[str]:
    request = client.protocol.propfind_request(url, [prop], depth=0)
    response = client.request(request, max_redirects=max_redirects)
    try:
        multistatus = client.multistatus(response)
    except error.NotFoundError:
        return None
    for result in multistatus.responses:
        value = result.properties.get(tag)
        if isinstance(value, list):
            value = value[0] if value else None
        if isinstance(value, str) and value.strip():
            ## hrefs are relative to the URL that actually answered
            return str(URL.objectify(response.url).join(value.strip()))
    return None


def find_principal(client: DAVClient, server_uri: str, max_redirects: int = 5) -> str:
    """
    Raises:
      PrincipalNotFound
    """
    href = _find_href(
        client, server_uri, "current-user-principal", dav.CurrentUserPrincipal.tag, max_redirects
    )
    if not href:
        raise error.PrincipalNotFound(url=server_uri, reason="no current-user-principal")
    log.debug(f"current user principal: {href}")
    return href


def find_home(client: DAVClient, principal_uri: str, max_redirects: int = 5) -> str:
    """
    Raises:
      HomeSetNotFound
    """
    href = _find_href(
        client, principal_uri, "calendar-home-set", cdav.CalendarHomeSet.tag, max_redirects
    )
    if not href:
        raise error.HomeSetNotFound(url=principal_uri, reason="no calendar-home-set")
    log.debug(f"calendar home: {href}")
    return href


def discover(
    client: DAVClient,
    location: ServerLocation,
    hint: Optional[DiscoverConfig] = None,
    max_redirects: int = 5,
) -> ServerLocation:
    """
    Fills in whatever is missing in the location.

    Args:
      client: used for all requests, carries the auth strategy
      location: what's known from the configuration
      hint: where to start when not even the server URI is known
      max_redirects: per request

    Returns:
      A ServerLocation with the home URI set

    Raises:
      ConfigurationError: nothing to start from
      DiscoveryError and subclasses
    """
    if location.home_uri:
        return location

    server_uri = location.server_uri
    principal_uri = location.principal_uri

    if not principal_uri and not server_uri:
        if hint is None:
            raise error.ConfigurationError(
                reason="missing one of `discover`, `server-uri` or `home-uri`"
            )
        server_uri = discover_server(client, hint, max_redirects)

    if not principal_uri:
        principal_uri = find_principal(client, server_uri, max_redirects)

    home_uri = find_home(client, principal_uri, max_redirects)
    return ServerLocation(server_uri=server_uri, principal_uri=principal_uri, home_uri=home_uri)
