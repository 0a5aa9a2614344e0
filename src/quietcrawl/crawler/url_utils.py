"""
URL utilities - Canonicalization and scope predicates for the crawl frontier.

Every URL that enters the frontier goes through canonicalize_url() so that
trivially different spellings of the same page (case, default ports,
fragments, tracking parameters, query order, trailing slashes) collapse into
one representative string.

Scope checks come in two flavours:
1. same_hostname(): exact host match (subdomains are out of scope)
2. same_registrable_domain(): heuristic "same site" match (subdomains allowed)
"""

import ipaddress
import re
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit


TRACKING_PARAMS = frozenset({
    'utm_source', 'utm_medium', 'utm_campaign', 'utm_term', 'utm_content',
    'gclid', 'fbclid', 'mc_cid', 'mc_eid', 'ref', 'referrer', 'yclid', 'dclid',
})

DEFAULT_PORTS = {'http': 80, 'https': 443}

# Second-level labels that usually sit under a country TLD (example.co.uk)
MULTI_LABEL_SUFFIXES = frozenset({'co', 'com', 'org', 'gov', 'ac', 'net', 'edu'})

_LEADING_SLASHES = re.compile(r'^/+')


def _is_tracking_param(key: str) -> bool:
    return key in TRACKING_PARAMS or key.startswith('utm_')


def canonicalize_url(value: str) -> str:
    """
    Return the canonical form of a URL used for frontier deduplication.

    Strings that cannot be parsed as an absolute URL with a host are
    returned unchanged; this function never raises.

    Args:
        value: Any string

    Returns:
        Canonical URL string (or the input itself if unparseable)
    """
    try:
        parsed = urlsplit(value)
        hostname = parsed.hostname
        port = parsed.port
    except (ValueError, TypeError, AttributeError):
        return value

    if not parsed.scheme or not hostname:
        return value

    scheme = parsed.scheme.lower()

    # Rebuild netloc: userinfo is preserved, host lowercased, default port dropped
    host = f'[{hostname}]' if ':' in hostname else hostname
    netloc = host
    if port is not None and DEFAULT_PORTS.get(scheme) != port:
        netloc = f'{host}:{port}'
    if parsed.username is not None:
        userinfo = parsed.username
        if parsed.password is not None:
            userinfo = f'{userinfo}:{parsed.password}'
        netloc = f'{userinfo}@{netloc}'

    path = _LEADING_SLASHES.sub('/', parsed.path) or '/'
    if len(path) > 1:
        path = path.rstrip('/') or '/'

    query_pairs = [
        (key, val)
        for key, val in parse_qsl(parsed.query, keep_blank_values=True)
        if not _is_tracking_param(key)
    ]
    # sort() is stable: repeated keys keep their relative order
    query_pairs.sort(key=lambda pair: pair[0])
    query = urlencode(query_pairs)

    return urlunsplit((scheme, netloc, path, query, ''))


def _hostname(url: str) -> Optional[str]:
    try:
        hostname = urlsplit(url).hostname
    except (ValueError, TypeError, AttributeError):
        return None
    return hostname.lower() if hostname else None


def get_registrable_domain(hostname: str) -> str:
    """
    Approximate the registrable domain of a hostname.

    This is a short heuristic, not a public-suffix lookup: it keeps the last
    two labels, or three when the second-to-last label is a common
    second-level suffix (example.co.uk, example.com.au). IP literals are
    returned whole so two addresses only match when identical.
    """
    try:
        ipaddress.ip_address(hostname)
        return hostname.lower()
    except ValueError:
        pass

    parts = hostname.lower().split('.')
    if len(parts) <= 2:
        return hostname.lower()
    if parts[-2] in MULTI_LABEL_SUFFIXES:
        return '.'.join(parts[-3:])
    return '.'.join(parts[-2:])


def same_hostname(a: str, b: str) -> bool:
    """True if both URLs have exactly the same host (case-insensitive)."""
    host_a = _hostname(a)
    host_b = _hostname(b)
    if not host_a or not host_b:
        return False
    return host_a == host_b


def same_registrable_domain(a: str, b: str) -> bool:
    """True if both URLs share the same registrable domain (subdomains included)."""
    host_a = _hostname(a)
    host_b = _hostname(b)
    if not host_a or not host_b:
        return False
    return get_registrable_domain(host_a) == get_registrable_domain(host_b)


def in_scope(start_url: str, candidate: str, include_subdomains: bool) -> bool:
    """
    Check whether a candidate URL belongs to the crawled site.

    Args:
        start_url: Canonical start URL of the crawl
        candidate: URL to check
        include_subdomains: Use registrable-domain matching instead of exact host

    Returns:
        True if the candidate is in scope
    """
    if include_subdomains:
        return same_registrable_domain(start_url, candidate)
    return same_hostname(start_url, candidate)


def origin_of(url: str) -> Optional[str]:
    """Return scheme://netloc for a URL, or None if it has no host."""
    try:
        parsed = urlsplit(url)
    except (ValueError, TypeError, AttributeError):
        return None
    if not parsed.scheme or not parsed.netloc:
        return None
    return f'{parsed.scheme}://{parsed.netloc}'
