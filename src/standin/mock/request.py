"""
Standin Request View

Read-only snapshot of an inbound request, as supplied by the transport to
the expectation engine.
"""

from __future__ import annotations

from typing import List, Dict, Any, Optional, Tuple, TYPE_CHECKING
from dataclasses import dataclass, field

from ..common import split_url, render_body, normalize_content_type
from .errors import CodecError, CodecNotFoundError

if TYPE_CHECKING:
    from .codecs import CodecRegistry

# Marks a body that could not be decoded, so the failure is memoised too
_UNDECODABLE = object()


@dataclass(frozen=True)
class RequestCookie:
    """A cookie carried by a request."""

    name: str
    value: str
    domain: Optional[str] = None
    path: Optional[str] = None
    max_age: Optional[int] = None
    http_only: Optional[bool] = None
    secure: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'value': self.value,
            'domain': self.domain,
            'path': self.path,
            'max_age': self.max_age,
            'http_only': self.http_only,
            'secure': self.secure,
        }


@dataclass
class RequestView:
    """
    Inbound request as seen by matchers and response functions.

    Header names are compared case-insensitively. Query parameters and
    headers keep every value in arrival order.

    Example:
        view = RequestView.from_url(
            'POST', 'http://localhost/users?active=true',
            headers=[('Content-Type', 'application/json')],
            body=b'{"name": "Jane"}'
        )
        view.header('content-type')   # 'application/json'
        view.query_values('active')   # ['true']
    """

    method: str
    path: str
    query: Dict[str, List[str]] = field(default_factory=dict)
    headers: List[Tuple[str, str]] = field(default_factory=list)
    cookies: Dict[str, RequestCookie] = field(default_factory=dict)
    body: bytes = b''
    content_type: Optional[str] = None
    scheme: str = 'http'
    codecs: Optional['CodecRegistry'] = field(default=None, repr=False, compare=False)
    _decoded: Dict[Optional[str], Any] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self):
        self.method = self.method.upper()
        if self.content_type is None:
            self.content_type = self.header('Content-Type')

    @classmethod
    def from_url(
        cls,
        method: str,
        url: str,
        headers: Optional[List[Tuple[str, str]]] = None,
        cookies: Optional[Dict[str, Any]] = None,
        body: bytes = b'',
        content_type: Optional[str] = None,
        codecs: Optional['CodecRegistry'] = None
    ) -> 'RequestView':
        """
        Build a view from a URL.

        Args:
            method: HTTP method
            url: Absolute URL or path with optional query string
            headers: Header (name, value) pairs
            cookies: Mapping of name to value string or RequestCookie
            body: Raw body bytes
            content_type: Declared content type (defaults to Content-Type header)
            codecs: Codec registry used to decode the body for body matchers

        Returns:
            RequestView instance
        """
        scheme, path, query = split_url(url)
        return cls(
            method=method,
            path=path,
            query=query,
            headers=list(headers or []),
            cookies={
                name: c if isinstance(c, RequestCookie) else RequestCookie(name, str(c))
                for name, c in (cookies or {}).items()
            },
            body=body or b'',
            content_type=content_type,
            scheme=scheme,
            codecs=codecs
        )

    @property
    def secure(self) -> bool:
        return self.scheme.lower() == 'https'

    def header(self, name: str) -> Optional[str]:
        """First value of a header, or None if absent."""
        values = self.header_values(name)
        return values[0] if values else None

    def header_values(self, name: str) -> List[str]:
        """All values of a header in arrival order."""
        lowered = name.lower()
        return [value for header_name, value in self.headers if header_name.lower() == lowered]

    def query_values(self, name: str) -> List[str]:
        return list(self.query.get(name, []))

    def query_param(self, name: str) -> Optional[str]:
        values = self.query.get(name)
        return values[0] if values else None

    def cookie(self, name: str) -> Optional[RequestCookie]:
        return self.cookies.get(name)

    def text(self) -> str:
        return self.body.decode('utf-8', errors='replace')

    def decoded_body(self, default: Any = None) -> Any:
        """
        Body decoded with the attached codec registry, memoised per view.

        Returns the default when no registry is attached, no decoder is
        registered for the content type, or decoding fails.
        """
        key = normalize_content_type(self.content_type)
        if key not in self._decoded:
            self._decoded[key] = self._decode()
        value = self._decoded[key]
        return default if value is _UNDECODABLE else value

    def _decode(self) -> Any:
        if self.codecs is None:
            return _UNDECODABLE
        try:
            return self.codecs.decode(self.content_type, self.body)
        except (CodecNotFoundError, CodecError):
            return _UNDECODABLE

    def has_decoded_body(self) -> bool:
        """True if the body can be decoded with the attached codecs."""
        return self.decoded_body(default=_UNDECODABLE) is not _UNDECODABLE

    def summary(self) -> str:
        """One-line description: ``http GET /path ? a=1, b=2``."""
        query = ', '.join(f"{k}={v}" for k, v in self.query.items())
        line = f"{self.scheme} {self.method} {self.path}"
        return f"{line} ? {query}" if query else line

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for the admin API and reports."""
        return {
            'method': self.method,
            'path': self.path,
            'scheme': self.scheme,
            'query': {k: list(v) for k, v in self.query.items()},
            'headers': [[k, v] for k, v in self.headers],
            'cookies': {name: c.value for name, c in self.cookies.items()},
            'content_type': self.content_type,
            'body': render_body(self.body, self.content_type),
        }
