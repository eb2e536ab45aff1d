# core/proxy/content_rewriter.py
"""Модуль для перезаписи URL в HTML/CSS контенте"""

import re
import logging
from typing import Callable, List, Tuple

from core.proxy.url_normalizer import (
    classify_reference,
    origin_of,
    proxied,
    resolve_reference,
)

logger = logging.getLogger(__name__)

# Атрибуты со ссылками. Граница (?<![\w-]) не даёт "src" совпасть внутри
# "data-src", поэтому проходы не пересекаются.
ABSOLUTE_ATTRIBUTES = (
    'href', 'src', 'action', 'poster', 'background', 'content', 'data-src', 'data-href',
)
RELATIVE_ATTRIBUTES = tuple(attr for attr in ABSOLUTE_ATTRIBUTES if attr != 'content')


def _attribute_pattern(names, value: str) -> re.Pattern:
    alternatives = '|'.join(re.escape(name) for name in names)
    return re.compile(
        rf'(?<![\w-])(?P<attr>{alternatives})\s*=\s*(?P<q>["\'])(?P<value>{value})(?P=q)',
        re.IGNORECASE,
    )


_ABSOLUTE_ATTR_PATTERN = _attribute_pattern(ABSOLUTE_ATTRIBUTES, r'https?://[^"\']+')
_RELATIVE_ATTR_PATTERN = _attribute_pattern(RELATIVE_ATTRIBUTES, r'[^"\']+')
_SRCSET_PATTERN = _attribute_pattern(('srcset', 'data-srcset'), r'[^"\']+')
_STYLE_ATTR_PATTERN = _attribute_pattern(('style',), r'[\s\S]*?')

_STYLE_BLOCK_PATTERN = re.compile(
    r'(?P<open><style\b[^>]*>)(?P<body>[\s\S]*?)(?P<close></style\s*>)',
    re.IGNORECASE,
)

_CSS_URL_PATTERN = re.compile(
    r'url\(\s*(?P<q>["\']?)(?P<value>[^"\')]+)(?P=q)\s*\)',
    re.IGNORECASE,
)
_CSS_IMPORT_PATTERN = re.compile(
    r'@import\s+(?:url\(\s*(?P<q1>["\']?)(?P<url_value>[^"\')]+)(?P=q1)\s*\)'
    r'|(?P<q2>["\'])(?P<string_value>[^"\']+)(?P=q2))',
    re.IGNORECASE,
)


# ---------------------------------------------------------------------------
# CSS
# ---------------------------------------------------------------------------

def _import_target(match: re.Match) -> str:
    return match.group('url_value') or match.group('string_value')


def rewrite_css_absolute_imports(css: str, proxy_base: str, target_origin: str) -> str:
    """@import "http://..." и @import url(http://...) → @import "{proxy}/{url}" """
    def replace(match):
        url = _import_target(match)
        if classify_reference(url) != 'absolute':
            return match.group(0)
        return f'@import "{proxied(url, proxy_base)}"'

    return _CSS_IMPORT_PATTERN.sub(replace, css)


def rewrite_css_relative_imports(css: str, proxy_base: str, target_origin: str) -> str:
    def replace(match):
        url = _import_target(match)
        if classify_reference(url) != 'relative':
            return match.group(0)
        return f'@import "{proxied(resolve_reference(url, target_origin), proxy_base)}"'

    return _CSS_IMPORT_PATTERN.sub(replace, css)


def rewrite_css_absolute_urls(css: str, proxy_base: str, target_origin: str,
                              quote: str = '"') -> str:
    def replace(match):
        url = match.group('value')
        if classify_reference(url) != 'absolute':
            return match.group(0)
        return f'url({quote}{proxied(url, proxy_base)}{quote})'

    return _CSS_URL_PATTERN.sub(replace, css)


def rewrite_css_relative_urls(css: str, proxy_base: str, target_origin: str,
                              quote: str = '"') -> str:
    """url(/a.png), url(img.png), url(//cdn/x.png); data: и url(#id) не трогаем"""
    def replace(match):
        url = match.group('value')
        if classify_reference(url) != 'relative':
            return match.group(0)
        return f'url({quote}{proxied(resolve_reference(url, target_origin), proxy_base)}{quote})'

    return _CSS_URL_PATTERN.sub(replace, css)


def rewrite_css_urls(css: str, proxy_base: str, target_origin: str, quote: str = '"') -> str:
    """Только url(): абсолютные, затем относительные"""
    css = rewrite_css_absolute_urls(css, proxy_base, target_origin, quote)
    return rewrite_css_relative_urls(css, proxy_base, target_origin, quote)


# Порядок важен: абсолютные правила раньше относительных, иначе
# уже проксированная ссылка (абсолютная) была бы проксирована второй раз.
CSS_PASSES: Tuple[Tuple[str, Callable[[str, str, str], str]], ...] = (
    ('absolute_imports', rewrite_css_absolute_imports),
    ('relative_imports', rewrite_css_relative_imports),
    ('absolute_urls', rewrite_css_absolute_urls),
    ('relative_urls', rewrite_css_relative_urls),
)


def _run_css_passes(css: str, proxy_base: str, target_origin: str) -> str:
    for _name, rewrite_pass in CSS_PASSES:
        css = rewrite_pass(css, proxy_base, target_origin)
    return css


def rewrite_css(css: str, proxy_base: str, target_url: str) -> str:
    """
    Перезаписывает @import и url() в CSS

    Args:
        css: CSS текст
        proxy_base: Origin самого прокси
        target_url: Проверенный URL проксируемого ресурса

    Returns:
        str: CSS, в котором все ссылки ведут через прокси
    """
    return _run_css_passes(css, proxy_base, origin_of(target_url))


# ---------------------------------------------------------------------------
# HTML
# ---------------------------------------------------------------------------

def rewrite_absolute_attributes(html: str, proxy_base: str, target_origin: str) -> str:
    def replace(match):
        return f'{match.group("attr")}="{proxied(match.group("value"), proxy_base)}"'

    return _ABSOLUTE_ATTR_PATTERN.sub(replace, html)


def rewrite_relative_attributes(html: str, proxy_base: str, target_origin: str) -> str:
    def replace(match):
        value = match.group('value')
        if classify_reference(value) != 'relative':
            return match.group(0)
        resolved = resolve_reference(value, target_origin)
        return f'{match.group("attr")}="{proxied(resolved, proxy_base)}"'

    return _RELATIVE_ATTR_PATTERN.sub(replace, html)


def split_srcset(value: str) -> List[Tuple[str, str]]:
    """
    Разбивает srcset на пары (url, дескриптор)

    URL - это непрерывная последовательность непробельных символов, поэтому
    запятые внутри data: URI не разделяют кандидатов. Запятые внутри
    скобок в дескрипторе тоже не считаются разделителями.
    """
    candidates = []
    length = len(value)
    pos = 0

    while pos < length:
        while pos < length and (value[pos].isspace() or value[pos] == ','):
            pos += 1
        if pos >= length:
            break

        start = pos
        while pos < length and not value[pos].isspace():
            pos += 1
        url = value[start:pos]

        if url.endswith(','):
            candidates.append((url.rstrip(','), ''))
            continue

        descriptor_start = pos
        depth = 0
        while pos < length:
            char = value[pos]
            if char == '(':
                depth += 1
            elif char == ')' and depth:
                depth -= 1
            elif char == ',' and not depth:
                break
            pos += 1

        candidates.append((url, value[descriptor_start:pos].strip()))

    return candidates


def rewrite_srcset(value: str, proxy_base: str, target_origin: str) -> str:
    """Перезаписывает значение srcset, сохраняя дескрипторы (1x, 200w)"""
    parts = []
    for url, descriptor in split_srcset(value):
        kind = classify_reference(url)
        if kind == 'absolute':
            url = proxied(url, proxy_base)
        elif kind == 'relative':
            url = proxied(resolve_reference(url, target_origin), proxy_base)
        parts.append(f'{url} {descriptor}'.strip())
    return ', '.join(parts)


def rewrite_srcset_attributes(html: str, proxy_base: str, target_origin: str) -> str:
    def replace(match):
        if not split_srcset(match.group('value')):
            return match.group(0)
        value = rewrite_srcset(match.group('value'), proxy_base, target_origin)
        return f'{match.group("attr")}="{value}"'

    return _SRCSET_PATTERN.sub(replace, html)


def rewrite_style_blocks(html: str, proxy_base: str, target_origin: str) -> str:
    def replace(match):
        body = _run_css_passes(match.group('body'), proxy_base, target_origin)
        return f'{match.group("open")}{body}{match.group("close")}'

    return _STYLE_BLOCK_PATTERN.sub(replace, html)


def rewrite_style_attributes(html: str, proxy_base: str, target_origin: str) -> str:
    def replace(match):
        attr_quote = match.group('q')
        # Внутри url() нужна другая кавычка, чем у самого атрибута
        url_quote = "'" if attr_quote == '"' else '"'
        value = rewrite_css_urls(match.group('value'), proxy_base, target_origin, url_quote)
        return f'{match.group("attr")}={attr_quote}{value}{attr_quote}'

    return _STYLE_ATTR_PATTERN.sub(replace, html)


HTML_PASSES: Tuple[Tuple[str, Callable[[str, str, str], str]], ...] = (
    ('absolute_attributes', rewrite_absolute_attributes),
    ('relative_attributes', rewrite_relative_attributes),
    ('srcset', rewrite_srcset_attributes),
    ('style_blocks', rewrite_style_blocks),
    ('style_attributes', rewrite_style_attributes),
)


def rewrite_html(html: str, proxy_base: str, target_url: str) -> str:
    """
    Перезаписывает ссылки в HTML, чтобы навигация шла через прокси

    Args:
        html: HTML контент
        proxy_base: Origin самого прокси (например, https://proxy.example)
        target_url: Проверенный URL проксируемой страницы

    Returns:
        str: Обработанный HTML
    """
    target_origin = origin_of(target_url)
    for _name, rewrite_pass in HTML_PASSES:
        html = rewrite_pass(html, proxy_base, target_origin)
    return html


class ContentRewriter:
    """Перезапись ссылок в ответе одного запроса"""

    REWRITABLE_TYPES = ('text/html', 'text/css')

    def __init__(self, proxy_base: str, target_url: str):
        """
        Args:
            proxy_base: Origin прокси (например, https://proxy.example)
            target_url: Проверенный URL, запрошенный через прокси
        """
        self.proxy_base = proxy_base.rstrip('/')
        self.target_url = target_url
        self.target_origin = origin_of(target_url)

        logger.debug(f"ContentRewriter: {self.target_origin} → {self.proxy_base}")

    @classmethod
    def should_rewrite(cls, method: str, content_type: str) -> bool:
        """Переписываем только GET ответы с HTML или CSS"""
        if method.upper() != 'GET' or not content_type:
            return False
        content_type = content_type.lower()
        return any(t in content_type for t in cls.REWRITABLE_TYPES)

    def rewrite(self, content: str, content_type: str) -> str:
        """
        Перезаписывает URL в контенте

        Args:
            content: Контент для обработки
            content_type: MIME type контента

        Returns:
            str: Обработанный контент (не HTML/CSS возвращается как есть)
        """
        content_type = (content_type or '').lower()

        if 'text/html' in content_type:
            result = self._rewrite_html(content)
        elif 'text/css' in content_type:
            result = self._rewrite_css(content)
        else:
            return content

        logger.debug(
            f"Rewrote {content_type.split(';')[0]} from {self.target_url}: "
            f"{len(content)} → {len(result)} chars"
        )
        return result

    def _rewrite_html(self, content: str) -> str:
        for _name, rewrite_pass in HTML_PASSES:
            content = rewrite_pass(content, self.proxy_base, self.target_origin)
        return content

    def _rewrite_css(self, content: str) -> str:
        return _run_css_passes(content, self.proxy_base, self.target_origin)
