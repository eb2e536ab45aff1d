# core/proxy/forwarder.py
"""Исходящие запросы к проксируемому сайту"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Mapping, Optional, Union

from aiohttp import (
    ClientConnectorError,
    ClientError,
    ClientResponse,
    ClientSession,
    ClientTimeout,
    DummyCookieJar,
    ServerTimeoutError,
    StreamReader,
    TCPConnector,
)
from multidict import CIMultiDict
from yarl import URL

from core.proxy.exceptions import UpstreamFetchError

logger = logging.getLogger(__name__)

# Заголовки запроса, которые не уходят на origin
REQUEST_HEADERS_TO_DROP = frozenset({
    'cookie', 'host', 'connection', 'content-length', 'transfer-encoding',
    'accept-encoding', 'keep-alive',
})

# Заголовки ответа, которые не возвращаются клиенту. Тело уже распаковано
# aiohttp, поэтому content-encoding и content-length неверны.
RESPONSE_HEADERS_TO_DROP = frozenset({
    'set-cookie', 'content-encoding', 'content-length', 'transfer-encoding',
    'connection', 'keep-alive',
})


def prepare_request_headers(headers: Mapping[str, str]) -> CIMultiDict:
    """Копирует заголовки входящего запроса без cookie и hop-by-hop"""
    result = CIMultiDict()
    for key, value in headers.items():
        if key.lower() not in REQUEST_HEADERS_TO_DROP:
            result.add(key, value)
    return result


def prepare_response_headers(headers: Mapping[str, str]) -> CIMultiDict:
    """Копирует заголовки ответа origin без set-cookie и hop-by-hop"""
    result = CIMultiDict()
    for key, value in headers.items():
        if key.lower() not in RESPONSE_HEADERS_TO_DROP:
            result.add(key, value)
    return result


class RequestForwarder:
    def __init__(self, timeout_total: float = 90, timeout_connect: float = 10,
                 limit: int = 100, limit_per_host: int = 50, ttl_dns_cache: int = 300):
        """
        Args:
            timeout_total: Общий таймаут запроса к origin, секунды
            timeout_connect: Таймаут установки соединения, секунды
            limit: Максимум одновременных соединений
            limit_per_host: Максимум соединений на один хост
            ttl_dns_cache: Время жизни DNS кэша, секунды
        """
        self.timeout_total = timeout_total
        self.timeout_connect = timeout_connect
        self.limit = limit
        self.limit_per_host = limit_per_host
        self.ttl_dns_cache = ttl_dns_cache

        # Connection pool для переиспользования соединений
        self.connector = None
        self.session = None

    async def initialize(self):
        """Инициализация connection pool"""
        if self.connector is None:
            self.connector = TCPConnector(
                limit=self.limit,
                limit_per_host=self.limit_per_host,
                ttl_dns_cache=self.ttl_dns_cache,
                force_close=False,
                enable_cleanup_closed=True,
            )

        if self.session is None:
            self.session = ClientSession(
                connector=self.connector,
                timeout=ClientTimeout(total=self.timeout_total, connect=self.timeout_connect),
                # Cookies origin не сохраняются между запросами
                cookie_jar=DummyCookieJar(),
            )

    async def cleanup(self):
        """Очистка ресурсов"""
        if self.session:
            await self.session.close()
            self.session = None
        if self.connector:
            await self.connector.close()
            self.connector = None

    @asynccontextmanager
    async def forward(self, method: str, url: str, headers: Mapping[str, str],
                      body: Optional[Union[bytes, StreamReader]] = None
                      ) -> AsyncIterator[ClientResponse]:
        """
        Выполняет запрос к origin и отдаёт ответ внутри контекста

        Редиректы выполняются автоматически. URL передаётся как есть
        (уже percent-encoded), без повторного кодирования. Тело может быть
        StreamReader входящего запроса.

        Raises:
            UpstreamFetchError: запрос не удалось выполнить
        """
        await self.initialize()

        logger.debug(f"→ {method} {url}")
        try:
            response = await self.session.request(
                method=method,
                url=URL(url, encoded=True),
                headers=headers,
                data=body,
                allow_redirects=True,
            )
        except ClientConnectorError as e:
            logger.error(f"❌ Origin unreachable: {url}: {e}")
            raise UpstreamFetchError(url, e) from e
        except (ServerTimeoutError, asyncio.TimeoutError) as e:
            logger.error(f"❌ Origin timeout: {url}: {e!r}")
            raise UpstreamFetchError(url, e) from e
        except (ClientError, ValueError) as e:
            logger.error(f"❌ Error fetching {url}: {e!r}")
            raise UpstreamFetchError(url, e) from e

        try:
            logger.debug(f"← {response.status} {url}")
            yield response
        finally:
            response.release()
