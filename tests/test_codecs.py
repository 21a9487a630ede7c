"""
Tests for Standin Codec Registry

Tests content-type keyed codecs including:
- Lookup order (exact, structured suffix, wildcard, catch-all)
- Default JSON, text, form and octet-stream codecs
- Error kinds for missing and failing codecs
"""

import pytest

from standin.mock.codecs import CodecRegistry, decode_json, encode_text
from standin.mock.errors import CodecNotFoundError, DecodeError, EncodeError, ConfigurationError


@pytest.fixture
def codecs():
    """Default codec registry."""
    return CodecRegistry.with_defaults()


class TestLookup:
    """Test codec lookup order."""

    def test_parameters_ignored(self, codecs):
        """Test content type parameters and case are ignored for lookup."""
        assert codecs.decoder_for('Application/JSON; charset=utf-8') is decode_json

    def test_structured_suffix(self, codecs):
        """Test +json types use the JSON codec."""
        assert codecs.decoder_for('application/vnd.api+json') is decode_json

    def test_major_wildcard(self, codecs):
        """Test text/* covers any text subtype."""
        assert codecs.encoder_for('text/csv') is encode_text

    def test_exact_beats_wildcard(self, codecs):
        """Test an exact registration wins over the wildcard."""
        def csv_encoder(obj, content_type):
            return b'csv'

        codecs.register_encoder('text/csv', csv_encoder)
        assert codecs.encoder_for('text/csv') is csv_encoder
        assert codecs.encoder_for('text/html') is encode_text

    def test_catch_all(self):
        """Test */* is used when nothing else matches."""
        def anything(body, content_type):
            return 'any'

        codecs = CodecRegistry().register_decoder('*/*', anything)
        assert codecs.decode('application/xml', b'<a/>') == 'any'
        assert codecs.decode(None, b'x') == 'any'

    def test_missing(self, codecs):
        """Test lookups without a registration."""
        assert codecs.decoder_for('application/xml') is None
        assert codecs.decoder_for(None) is None


class TestDefaults:
    """Test default codecs."""

    def test_json(self, codecs):
        """Test JSON decoding and encoding."""
        assert codecs.decode('application/json', b'{"a": [1, 2]}') == {'a': [1, 2]}
        assert codecs.decode('application/json', codecs.encode('application/json', {'a': 1})) == {'a': 1}

    def test_text_charset(self, codecs):
        """Test text codec honours the charset parameter."""
        body = codecs.encode('text/plain; charset=latin-1', 'café')
        assert body == 'café'.encode('latin-1')
        assert codecs.decode('text/plain; charset=latin-1', body) == 'café'

    def test_form(self, codecs):
        """Test form decoding of single and repeated fields."""
        decoded = codecs.decode('application/x-www-form-urlencoded', b'a=1&b=2&b=3')
        assert decoded == {'a': '1', 'b': ['2', '3']}
        assert codecs.encode('application/x-www-form-urlencoded', {'a': '1'}) == b'a=1'

    def test_form_shape_after_encoding(self, codecs):
        """Test decoded-shape mappings survive encoding and a one-element list collapses."""
        form = 'application/x-www-form-urlencoded'
        canonical = {'a': '1', 'b': ['2', '3']}

        assert codecs.decode(form, codecs.encode(form, canonical)) == canonical
        assert codecs.decode(form, codecs.encode(form, {'b': ['2']})) == {'b': '2'}

    def test_octet_stream(self, codecs):
        """Test raw bytes pass through."""
        assert codecs.decode('application/octet-stream', b'\x00\x01') == b'\x00\x01'
        with pytest.raises(EncodeError):
            codecs.encode('application/octet-stream', 'not bytes')


class TestErrors:
    """Test codec error kinds."""

    def test_no_decoder(self, codecs):
        """Test decoding without a decoder raises CodecNotFoundError."""
        with pytest.raises(CodecNotFoundError) as exc_info:
            codecs.decode('application/xml', b'<a/>')
        assert exc_info.value.kind == 'decoder'
        assert isinstance(exc_info.value, ConfigurationError)

    def test_no_encoder(self, codecs):
        """Test encoding without an encoder raises CodecNotFoundError."""
        with pytest.raises(CodecNotFoundError):
            codecs.encode('application/xml', {'a': 1})

    def test_decoder_failure(self, codecs):
        """Test a failing decoder raises DecodeError with the cause."""
        with pytest.raises(DecodeError) as exc_info:
            codecs.decode('application/json', b'{broken')
        assert isinstance(exc_info.value.cause, ValueError)

    def test_encoder_must_return_bytes(self, codecs):
        """Test an encoder returning str is an EncodeError."""
        codecs.register_encoder('application/xml', lambda obj, ct: '<a/>')
        with pytest.raises(EncodeError):
            codecs.encode('application/xml', {})


class TestComposition:
    """Test merge and copy."""

    def test_copy_is_independent(self, codecs):
        """Test registering on a copy does not affect the original."""
        copy = codecs.copy()
        copy.register_decoder('application/xml', lambda body, ct: 'xml')
        assert codecs.decoder_for('application/xml') is None
        assert copy.decode('application/xml', b'') == 'xml'

    def test_content_types(self, codecs):
        """Test listing registered keys."""
        listed = codecs.content_types()
        assert '+json' in listed['decoders']
        assert 'text/*' in listed['encoders']
