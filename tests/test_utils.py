"""
Tests for common utility functions.

Tests content type helpers, header filtering, URL handling and body
rendering used by reports and the proxy forwarder.
"""

import pytest

from standin.common import (
    normalize_content_type,
    content_type_charset,
    is_text_content,
    filter_hop_by_hop_headers,
    split_url,
    join_url,
    render_body,
)


class TestContentType:
    """Test suite for content type helpers."""

    def test_normalize(self):
        """Test parameters and case are stripped."""
        assert normalize_content_type('Application/JSON; charset=utf-8') == 'application/json'
        assert normalize_content_type(None) is None
        assert normalize_content_type('') is None

    def test_charset(self):
        """Test charset extraction."""
        assert content_type_charset('text/plain; charset="ISO-8859-1"') == 'ISO-8859-1'
        assert content_type_charset('text/plain') == 'utf-8'
        assert content_type_charset(None, default='ascii') == 'ascii'

    @pytest.mark.parametrize('content_type,expected', [
        ('text/html', True),
        ('application/json', True),
        ('application/problem+json', True),
        ('application/xml', True),
        ('application/x-www-form-urlencoded', True),
        ('image/png', False),
        (None, False),
    ])
    def test_is_text_content(self, content_type, expected):
        """Test text detection."""
        assert is_text_content(content_type) is expected


class TestHeaders:
    """Test suite for header filtering."""

    def test_hop_by_hop_removed(self):
        """Test hop-by-hop headers are dropped and order kept."""
        headers = [
            ('Host', 'a'),
            ('Accept', 'x'),
            ('Connection', 'close'),
            ('X-Id', '1'),
            ('Content-Length', '3'),
        ]
        assert filter_hop_by_hop_headers(headers) == [('Accept', 'x'), ('X-Id', '1')]


class TestUrls:
    """Test suite for URL helpers."""

    def test_split_absolute(self):
        """Test splitting an absolute URL."""
        scheme, path, query = split_url('https://example.com/a/b?x=1&x=2&y=')
        assert scheme == 'https'
        assert path == '/a/b'
        assert query == {'x': ['1', '2'], 'y': ['']}

    def test_split_bare_path(self):
        """Test splitting a path without scheme."""
        assert split_url('/only') == ('http', '/only', {})
        assert split_url('') == ('http', '/', {})

    def test_join(self):
        """Test joining keeps the base path and repeated params."""
        url = join_url('http://backend/api/', '/users', {'x': ['1', '2']})
        assert url == 'http://backend/api/users?x=1&x=2'

    def test_join_relative_path(self):
        """Test a path without a leading slash."""
        assert join_url('http://backend', 'ping', {}) == 'http://backend/ping'


class TestRenderBody:
    """Test suite for render_body()."""

    def test_empty(self):
        """Test empty bodies."""
        assert render_body(b'', 'text/plain') == '<empty>'
        assert render_body(None, None) == '<empty>'

    def test_text(self):
        """Test text bodies are decoded."""
        assert render_body(b'{"a": 1}', 'application/json') == '{"a": 1}'

    def test_truncated(self):
        """Test long text is truncated."""
        rendered = render_body(b'x' * 20, 'text/plain', limit=5)
        assert rendered == 'xxxxx...'

    def test_binary(self):
        """Test binary bodies are summarised."""
        assert render_body(b'\x89PNG', 'image/png') == '<4 bytes of image/png content>'
