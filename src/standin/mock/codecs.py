"""
Standin Codec Registry

Maps content types to the functions that decode request bodies and encode
response bodies.

Decoders take ``(body_bytes, content_type)`` and return any object. Encoders
take ``(obj, content_type)`` and return bytes. The full content type (with
parameters such as ``charset``) is passed through so codecs can honour it.

Lookup order for a content type such as ``application/vnd.api+json``:

1. the exact base type (``application/vnd.api+json``)
2. the structured syntax suffix (``+json``)
3. the major type wildcard (``application/*``)
4. the catch-all (``*/*``)
"""

import json
from typing import Dict, Any, Optional, Callable, List
from urllib.parse import parse_qs, urlencode

from ..common import normalize_content_type, content_type_charset
from .errors import CodecNotFoundError, DecodeError, EncodeError

Decoder = Callable[[bytes, Optional[str]], Any]
Encoder = Callable[[Any, Optional[str]], bytes]


def _lookup_keys(content_type: Optional[str]) -> List[str]:
    base = normalize_content_type(content_type)
    if base is None:
        return ['*/*']

    keys = [base]
    major, _, minor = base.partition('/')
    if '+' in minor:
        keys.append('+' + minor.rsplit('+', 1)[1])
    keys.append(f"{major}/*")
    keys.append('*/*')
    return keys


def decode_json(body: bytes, content_type: Optional[str] = None) -> Any:
    """Decode a JSON body."""
    if not body:
        return None
    return json.loads(body.decode(content_type_charset(content_type)))


def encode_json(obj: Any, content_type: Optional[str] = None) -> bytes:
    """Encode an object as JSON."""
    return json.dumps(obj).encode(content_type_charset(content_type))


def decode_text(body: bytes, content_type: Optional[str] = None) -> str:
    """Decode a text body using the declared charset (UTF-8 by default)."""
    return body.decode(content_type_charset(content_type)) if body else ''


def encode_text(obj: Any, content_type: Optional[str] = None) -> bytes:
    """Encode any object through ``str()`` using the declared charset."""
    return ('' if obj is None else str(obj)).encode(content_type_charset(content_type))


def decode_urlencoded(body: bytes, content_type: Optional[str] = None) -> Dict[str, Any]:
    """
    Decode a form body.

    Single-valued fields map to a string, repeated fields to a list. Mappings
    in this shape round-trip through ``encode_urlencoded`` unchanged; a
    one-element list comes back as its single value.
    """
    if not body:
        return {}
    parsed = parse_qs(body.decode(content_type_charset(content_type)), keep_blank_values=True, strict_parsing=True)
    return {k: v[0] if len(v) == 1 else v for k, v in parsed.items()}


def encode_urlencoded(obj: Any, content_type: Optional[str] = None) -> bytes:
    """Encode a mapping as a form body; list values become repeated fields."""
    return urlencode(obj, doseq=True).encode(content_type_charset(content_type))


def passthrough_decoder(body: bytes, content_type: Optional[str] = None) -> bytes:
    return body


def passthrough_encoder(obj: Any, content_type: Optional[str] = None) -> bytes:
    if isinstance(obj, (bytes, bytearray, memoryview)):
        return bytes(obj)
    raise TypeError(f"Expected bytes for raw content, got {type(obj).__name__}")


class CodecRegistry:
    """
    Content-type keyed encoder and decoder tables.

    Example:
        codecs = CodecRegistry.with_defaults()
        codecs.register_decoder('application/yaml', lambda body, ct: yaml.safe_load(body))

        data = codecs.decode('application/json; charset=utf-8', b'{"a": 1}')
        body = codecs.encode('application/json', {'a': 1})
    """

    def __init__(self):
        self._decoders: Dict[str, Decoder] = {}
        self._encoders: Dict[str, Encoder] = {}

    @classmethod
    def with_defaults(cls) -> 'CodecRegistry':
        """Create a registry with JSON, text, form and octet-stream codecs."""
        registry = cls()
        for content_type in ('application/json', 'text/json', '+json'):
            registry.register_decoder(content_type, decode_json)
            registry.register_encoder(content_type, encode_json)

        registry.register_decoder('text/*', decode_text)
        registry.register_encoder('text/*', encode_text)

        registry.register_decoder('application/x-www-form-urlencoded', decode_urlencoded)
        registry.register_encoder('application/x-www-form-urlencoded', encode_urlencoded)

        registry.register_decoder('application/octet-stream', passthrough_decoder)
        registry.register_encoder('application/octet-stream', passthrough_encoder)
        return registry

    def register_decoder(self, content_type: str, decoder: Decoder) -> 'CodecRegistry':
        """Register (or replace) the decoder for a content type key."""
        self._decoders[self._key(content_type)] = decoder
        return self

    def register_encoder(self, content_type: str, encoder: Encoder) -> 'CodecRegistry':
        """Register (or replace) the encoder for a content type key."""
        self._encoders[self._key(content_type)] = encoder
        return self

    def decoder_for(self, content_type: Optional[str]) -> Optional[Decoder]:
        for key in _lookup_keys(content_type):
            if key in self._decoders:
                return self._decoders[key]
        return None

    def encoder_for(self, content_type: Optional[str]) -> Optional[Encoder]:
        for key in _lookup_keys(content_type):
            if key in self._encoders:
                return self._encoders[key]
        return None

    def decode(self, content_type: Optional[str], body: bytes) -> Any:
        """
        Decode a body with the decoder registered for its content type.

        Raises:
            CodecNotFoundError: If no decoder is registered
            DecodeError: If the decoder fails
        """
        decoder = self.decoder_for(content_type)
        if decoder is None:
            raise CodecNotFoundError('decoder', content_type)
        try:
            return decoder(body, content_type)
        except Exception as e:
            raise DecodeError(content_type or '', e) from e

    def encode(self, content_type: Optional[str], obj: Any) -> bytes:
        """
        Encode an object with the encoder registered for the content type.

        Raises:
            CodecNotFoundError: If no encoder is registered
            EncodeError: If the encoder fails or does not return bytes
        """
        encoder = self.encoder_for(content_type)
        if encoder is None:
            raise CodecNotFoundError('encoder', content_type)
        try:
            encoded = encoder(obj, content_type)
        except Exception as e:
            raise EncodeError(content_type or '', e) from e

        if not isinstance(encoded, (bytes, bytearray)):
            raise EncodeError(content_type or '', TypeError(f"encoder returned {type(encoded).__name__}, not bytes"))
        return bytes(encoded)

    def merge(self, other: 'CodecRegistry') -> 'CodecRegistry':
        """Copy all codecs from another registry into this one (other wins)."""
        self._decoders.update(other._decoders)
        self._encoders.update(other._encoders)
        return self

    def copy(self) -> 'CodecRegistry':
        return CodecRegistry().merge(self)

    def content_types(self) -> Dict[str, List[str]]:
        """Registered keys, for the admin API."""
        return {
            'decoders': sorted(self._decoders),
            'encoders': sorted(self._encoders),
        }

    @staticmethod
    def _key(content_type: str) -> str:
        if content_type.startswith('+'):
            return content_type.strip().lower()
        return normalize_content_type(content_type) or '*/*'
