# core/proxy/__init__.py
"""
Proxy modules package.

Link rewriting (HTML/CSS), target URL normalization and the outbound
forwarder used by the relay handler.
"""

from core.proxy.content_rewriter import ContentRewriter, rewrite_css, rewrite_html
from core.proxy.exceptions import InvalidTargetError, RelayError, UpstreamFetchError
from core.proxy.url_normalizer import normalize_target_url, origin_of, validate_target_url

__all__ = [
    'ContentRewriter',
    'rewrite_html',
    'rewrite_css',
    'RelayError',
    'InvalidTargetError',
    'UpstreamFetchError',
    'normalize_target_url',
    'validate_target_url',
    'origin_of',
]
