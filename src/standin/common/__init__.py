"""
Standin Common Utilities

Shared utilities and helpers used across Standin modules.
"""

from .utils import (
    normalize_content_type,
    content_type_charset,
    is_text_content,
    filter_hop_by_hop_headers,
    split_url,
    join_url,
    render_body,
    HOP_BY_HOP_HEADERS,
)

__all__ = [
    'normalize_content_type',
    'content_type_charset',
    'is_text_content',
    'filter_hop_by_hop_headers',
    'split_url',
    'join_url',
    'render_body',
    'HOP_BY_HOP_HEADERS',
]
