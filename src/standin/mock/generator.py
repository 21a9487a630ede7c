"""
Standin Response Resolver

Turns the response descriptor chosen by an expectation into concrete bytes
and headers ready for the transport.

Body resolution:
- bytes pass through unchanged
- str is already serialized text and is encoded with the declared charset
  (UTF-8 by default)
- any other object is encoded with the codec registry encoder for the
  descriptor's content type
- a missing encoder is a ConfigurationError raised here, at build time
"""

import logging
from typing import List, Dict, Any, Optional, Tuple, Union
from dataclasses import dataclass, field

from .codecs import CodecRegistry
from .errors import ConfigurationError, CodecNotFoundError, EncodeError
from .expectation import ResponseDescriptor, ResponseCookie, RequestExpectation
from .request import RequestView
from ..common import render_body, content_type_charset

logger = logging.getLogger("standin.mock.generator")

DEFAULT_TEXT_TYPE = 'text/plain; charset=utf-8'


@dataclass
class ResolvedResponse:
    """A fully resolved response: status, header pairs, cookies and body bytes."""

    status: int = 200
    headers: List[Tuple[str, str]] = field(default_factory=list)
    cookies: Dict[str, Union[str, ResponseCookie]] = field(default_factory=dict)
    body: bytes = b''
    content_type: Optional[str] = None
    delay_ms: int = 0

    def header(self, name: str) -> Optional[str]:
        lowered = name.lower()
        for k, v in self.headers:
            if k.lower() == lowered:
                return v
        return None

    def text(self) -> str:
        return self.body.decode('utf-8', errors='replace')

    def render(self) -> str:
        """Summary used in debug logging."""
        return f"{self.status} {self.content_type or '-'} {render_body(self.body, self.content_type)}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status,
            'headers': [[k, v] for k, v in self.headers],
            'content_type': self.content_type,
            'body': render_body(self.body, self.content_type),
        }


class ResponseResolver:
    """
    Builds resolved responses through a codec registry.

    Example:
        resolver = ResponseResolver(registry.codecs)
        ordinal = expectation.record_match(view)
        response = resolver.resolve(expectation, view, ordinal)
    """

    def __init__(self, codecs: CodecRegistry):
        self.codecs = codecs

    def resolve(
        self,
        expectation: RequestExpectation,
        request: RequestView,
        ordinal: Optional[int] = None
    ) -> ResolvedResponse:
        """
        Select and resolve the response for a matched call.

        Raises:
            UserResponseError: If the expectation's response function fails
            ConfigurationError: If the body cannot be encoded
        """
        descriptor = expectation.build_response(request, ordinal)
        return self.resolve_descriptor(descriptor)

    def resolve_descriptor(self, descriptor: ResponseDescriptor) -> ResolvedResponse:
        """Encode a descriptor's body and assemble the final header list."""
        content_type = descriptor.effective_content_type()
        body = self._encode_body(descriptor.body, content_type)

        if content_type is None and isinstance(descriptor.body, str):
            content_type = DEFAULT_TEXT_TYPE

        headers = list(descriptor.headers)
        if content_type and not descriptor.header_values('Content-Type'):
            headers.append(('Content-Type', content_type))

        return ResolvedResponse(
            status=descriptor.status,
            headers=headers,
            cookies=dict(descriptor.cookies),
            body=body,
            content_type=content_type,
            delay_ms=descriptor.delay_ms
        )

    def _encode_body(self, body: Any, content_type: Optional[str]) -> bytes:
        if body is None:
            return b''
        if isinstance(body, (bytes, bytearray, memoryview)):
            return bytes(body)

        if isinstance(body, str):
            return body.encode(content_type_charset(content_type))

        try:
            return self.codecs.encode(content_type, body)
        except CodecNotFoundError as e:
            raise ConfigurationError(
                f"No encoder registered for response content type {content_type!r} "
                f"(body type {type(body).__name__})"
            ) from e
        except EncodeError as e:
            raise ConfigurationError(f"Encoding response body as {content_type!r} failed: {e.cause}") from e
