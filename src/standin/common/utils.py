"""
Standin Common Utilities

Shared helpers for content types, headers and URLs used across the mock
engine, the HTTP transport and the proxy forwarder.
"""

from typing import List, Dict, Optional, Tuple, Iterable
from urllib.parse import urlparse, parse_qs, urlencode

# Content types whose bodies are safe to render as text in logs and reports
TEXT_CONTENT_HINTS = ('text/', '/json', '+json', '/xml', '+xml', '/javascript', 'application/x-www-form-urlencoded')

# Hop-by-hop headers never copied between a client and an upstream
HOP_BY_HOP_HEADERS = frozenset([
    'connection',
    'keep-alive',
    'proxy-authenticate',
    'proxy-authorization',
    'te',
    'trailers',
    'transfer-encoding',
    'upgrade',
    'host',
    'content-length',
])


def normalize_content_type(content_type: Optional[str]) -> Optional[str]:
    """
    Strip parameters from a content type and lower-case it.

    ``"Application/JSON; charset=utf-8"`` becomes ``"application/json"``.
    """
    if not content_type:
        return None
    return content_type.split(';', 1)[0].strip().lower() or None


def content_type_charset(content_type: Optional[str], default: str = 'utf-8') -> str:
    """Return the ``charset`` parameter of a content type, or the default."""
    if not content_type:
        return default
    for param in content_type.split(';')[1:]:
        name, _, value = param.partition('=')
        if name.strip().lower() == 'charset' and value.strip():
            return value.strip().strip('"')
    return default


def is_text_content(content_type: Optional[str]) -> bool:
    """True if bodies of this content type can be rendered as text."""
    if not content_type:
        return False
    lowered = content_type.lower()
    return any(hint in lowered for hint in TEXT_CONTENT_HINTS)


def filter_hop_by_hop_headers(headers: Iterable[Tuple[str, str]]) -> List[Tuple[str, str]]:
    """
    Drop hop-by-hop headers from a header list, preserving order.

    Args:
        headers: Header (name, value) pairs

    Returns:
        Filtered list of header pairs
    """
    return [(name, value) for name, value in headers if name.lower() not in HOP_BY_HOP_HEADERS]


def split_url(url: str) -> Tuple[str, str, Dict[str, List[str]]]:
    """
    Split a URL into scheme, path and multi-valued query parameters.

    Args:
        url: Absolute URL or bare path (``/users?id=1``)

    Returns:
        Tuple of (scheme, path, query dict)
    """
    parsed = urlparse(url)
    scheme = parsed.scheme or 'http'
    path = parsed.path or '/'
    query = parse_qs(parsed.query, keep_blank_values=True)
    return scheme, path, query


def join_url(base_url: str, path: str, query: Dict[str, List[str]]) -> str:
    """
    Build a URL from a base, a path and multi-valued query parameters.

    The base URL's own path is kept as a prefix.
    """
    url = base_url.rstrip('/') + (path if path.startswith('/') else '/' + path)
    if query:
        url += '?' + urlencode([(k, v) for k, values in query.items() for v in values])
    return url


def render_body(body: Optional[bytes], content_type: Optional[str], limit: int = 500) -> str:
    """
    Render a body for logs and diagnostic reports.

    Text-like content is decoded and truncated, anything else is summarised.
    """
    if not body:
        return '<empty>'
    if is_text_content(content_type):
        text = body.decode(content_type_charset(content_type), errors='replace')
        return text if len(text) <= limit else text[:limit] + '...'
    return f"<{len(body)} bytes of {content_type or 'unknown'} content>"
