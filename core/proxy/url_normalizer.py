# core/proxy/url_normalizer.py
"""Нормализация целевого URL и вычисление origin"""

import re
import logging
from urllib.parse import unquote, urljoin

from yarl import URL

from core.proxy.exceptions import InvalidTargetError

logger = logging.getLogger(__name__)

_VALID_PROTOCOL = re.compile(r'^https?://', re.IGNORECASE)

# "ht:/", "htt://", "ttps//", ":/", "//". Голый хост ("example.com/x",
# "localhost:8080/x") не совпадает.
_MALFORMED_SCHEME = re.compile(r'^(?:[a-z]*:/+|[a-z]*/{2,}|/+)', re.IGNORECASE)

# Запрещённые символы хоста (WHATWG forbidden host code points)
_FORBIDDEN_HOST_CHARS = re.compile(r'[\x00-\x20#%/:<>?@\[\\\]^|\x7f]')

_ANY_SCHEME = re.compile(r'^\s*[a-z][a-z0-9+.\-]*:', re.IGNORECASE)

IGNORED_PREFIXES = ('data:', 'javascript:', 'mailto:', 'tel:', '#')

DEFAULT_PORTS = {'http': 80, 'https': 443}


def normalize_target_url(raw: str) -> str:
    """
    Гарантирует наличие протокола у URL, извлечённого из пути

    Args:
        raw: Строка после ведущего "/" в пути запроса

    Returns:
        str: URL с http(s):// (пустая строка возвращается как есть)
    """
    if not raw:
        return raw

    if _VALID_PROTOCOL.match(raw):
        return raw

    clean_url = _MALFORMED_SCHEME.sub('', raw, count=1)
    return f"https://{clean_url}"


def validate_target_url(url: str) -> str:
    """
    Проверяет, что строка является абсолютным http(s) URL

    Percent-encoded хост (IDN из адресной строки) декодируется и
    возвращается в punycode, остальной URL не меняется

    Raises:
        InvalidTargetError: если URL не разбирается
    """
    if not url:
        raise InvalidTargetError(url, "empty")

    try:
        parsed = URL(url, encoded=True)
        scheme = parsed.scheme.lower()
        host = parsed.raw_host
        port = parsed.port
    except (ValueError, TypeError) as e:
        raise InvalidTargetError(url, str(e)) from e

    if scheme not in DEFAULT_PORTS:
        raise InvalidTargetError(url, f"unsupported scheme {scheme!r}")

    if not host:
        raise InvalidTargetError(url, "missing host")

    # IPv6 литералы yarl отдаёт без скобок
    decoded_host = unquote(host)
    if ':' not in host and _FORBIDDEN_HOST_CHARS.search(decoded_host):
        raise InvalidTargetError(url, f"forbidden character in host {decoded_host!r}")

    if port is not None and not 0 <= port <= 65535:
        raise InvalidTargetError(url, f"port out of range: {port}")

    if ':' not in host and decoded_host != host:
        # b%C3%BCcher.de → xn--bcher-kva.de
        try:
            url = str(parsed.with_host(decoded_host))
        except ValueError as e:
            raise InvalidTargetError(url, str(e)) from e

    return url


def origin_of(url: str) -> str:
    """Возвращает scheme://host[:port] для проверенного URL"""
    try:
        origin = URL(url, encoded=True).origin()
        scheme = origin.scheme.lower()
        host = origin.raw_host or ''
        port = origin.explicit_port
    except ValueError as e:
        raise InvalidTargetError(url, str(e)) from e

    if ':' in host:
        host = f"[{host}]"

    if port is None or port == DEFAULT_PORTS.get(scheme):
        return f"{scheme}://{host.lower()}"
    return f"{scheme}://{host.lower()}:{port}"


def is_absolute(value: str) -> bool:
    return bool(_VALID_PROTOCOL.match(value.strip()))


def is_ignored(value: str) -> bool:
    """
    Ссылки, которые не переписываются: data:, якоря, javascript:, mailto:,
    tel: и любые другие не-http схемы
    """
    stripped = value.strip()
    if stripped.lower().startswith(IGNORED_PREFIXES):
        return True
    return bool(_ANY_SCHEME.match(stripped)) and not is_absolute(stripped)


def classify_reference(value: str) -> str:
    """Возвращает 'absolute', 'relative' или 'ignored'"""
    if is_absolute(value):
        return 'absolute'
    if not value.strip() or is_ignored(value):
        return 'ignored'
    return 'relative'


def resolve_reference(value: str, target_origin: str) -> str:
    """
    Превращает относительную ссылку в абсолютную относительно origin

    Args:
        value: "//cdn.test/a.js", "/a/b" или "img.png"
        target_origin: Origin проксируемого сайта

    Returns:
        str: Абсолютный URL
    """
    path = value.strip()
    if path.startswith('//'):
        scheme = target_origin.split(':', 1)[0]
        return f"{scheme}:{path}"
    # urljoin схлопывает ./ и ../
    return urljoin(f"{target_origin}/", path)


def proxied(url: str, proxy_base: str) -> str:
    return f"{proxy_base}/{url.strip()}"
