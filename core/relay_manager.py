# relay_manager.py
import asyncio
import logging
from typing import Optional

from aiohttp import ClientError, web

from core.proxy.content_rewriter import ContentRewriter
from core.proxy.exceptions import InvalidTargetError, UpstreamFetchError
from core.proxy.forwarder import (
    RequestForwarder,
    prepare_request_headers,
    prepare_response_headers,
)
from core.proxy.url_normalizer import normalize_target_url, validate_target_url
from utils.port_utils import check_port_availability, get_process_using_port

logger = logging.getLogger(__name__)

INVALID_TARGET_MESSAGE = 'Provide Valid URL.'
FETCH_ERROR_MESSAGE = 'Error fetching the target URL.'


class RelayHandler:
    def __init__(self, forwarder: RequestForwarder, chunk_size: int = 64 * 1024):
        """
        Args:
            forwarder: Клиент для запросов к проксируемым сайтам
            chunk_size: Размер чанка при потоковой передаче тела ответа
        """
        self.forwarder = forwarder
        self.chunk_size = chunk_size

        # Статистика
        self.stats = {
            'total_requests': 0,
            'total_responses': 0,
            'rewritten': 0,
            'active_connections': 0,
            'errors': 0
        }

    async def handle(self, request: web.Request) -> web.StreamResponse:
        """Обработка одного входящего запроса"""
        self.stats['total_requests'] += 1
        self.stats['active_connections'] += 1

        try:
            return await self._relay(request)

        except UpstreamFetchError as e:
            self.stats['errors'] += 1
            logger.debug(f"Fetch failed for {request.method} {request.rel_url}: {e}")
            return web.Response(text=FETCH_ERROR_MESSAGE, status=500)

        finally:
            self.stats['active_connections'] -= 1

    async def _relay(self, request: web.Request) -> web.StreamResponse:
        """
        Извлекает целевой URL из пути, проксирует запрос и при необходимости
        переписывает ссылки в ответе

        Путь берётся в исходном (percent-encoded) виде:
        /https://site.test/a%20b?x=1 → https://site.test/a%20b + ?x=1
        """
        proxy_base = f"{request.scheme}://{request.host}"
        target_url = request.rel_url.raw_path[1:]
        formatted_url = normalize_target_url(target_url)

        try:
            formatted_url = validate_target_url(formatted_url)
        except InvalidTargetError as e:
            logger.debug(f"Rejected target: {e}")
            return web.Response(text=INVALID_TARGET_MESSAGE, status=400)

        upstream_url = formatted_url
        query_string = request.rel_url.raw_query_string
        if query_string:
            upstream_url = f"{upstream_url}?{query_string}"

        headers = prepare_request_headers(request.headers)

        # Тело передаётся потоком, без буферизации и лимита client_max_size
        body = None
        if request.body_exists:
            body = request.content
            if request.content_length is not None:
                headers['Content-Length'] = str(request.content_length)

        async with self.forwarder.forward(request.method, upstream_url, headers, body) as upstream:
            content_type = upstream.headers.get('Content-Type', '')
            response_headers = prepare_response_headers(upstream.headers)

            if ContentRewriter.should_rewrite(request.method, content_type):
                response = await self._rewritten_response(
                    upstream, response_headers, proxy_base, formatted_url, content_type
                )
            else:
                response = await self._streamed_response(request, upstream, response_headers)

        self.stats['total_responses'] += 1
        logger.debug(f"{request.method} {upstream_url} → {upstream.status}")
        return response

    async def _rewritten_response(self, upstream, headers, proxy_base: str,
                                  target_url: str, content_type: str) -> web.Response:
        """Буферизует HTML/CSS, переписывает ссылки и кодирует обратно в исходной кодировке"""
        try:
            content = await upstream.read()
        except (ClientError, asyncio.TimeoutError) as e:
            raise UpstreamFetchError(target_url, e) from e

        charset = upstream.get_encoding()
        text = content.decode(charset, errors='surrogateescape')

        rewriter = ContentRewriter(proxy_base, target_url)
        text = rewriter.rewrite(text, content_type)
        self.stats['rewritten'] += 1

        return web.Response(
            body=text.encode(charset, errors='surrogateescape'),
            status=upstream.status,
            reason=upstream.reason,
            headers=headers,
        )

    async def _streamed_response(self, request: web.Request, upstream,
                                 headers) -> web.StreamResponse:
        """Передаёт тело ответа без буферизации"""
        response = web.StreamResponse(
            status=upstream.status,
            reason=upstream.reason,
            headers=headers,
        )
        await response.prepare(request)

        try:
            async for chunk in upstream.content.iter_chunked(self.chunk_size):
                await response.write(chunk)
        except (ClientError, asyncio.TimeoutError) as e:
            # Заголовки уже отправлены: статус не изменить, соединение будет оборвано
            self.stats['errors'] += 1
            logger.error(f"❌ Upstream body interrupted for {upstream.url}: {e!r}")
            raise

        await response.write_eof()
        return response

    def get_full_stats(self):
        """Получить полную статистику прокси"""
        return {
            'requests': self.stats['total_requests'],
            'responses': self.stats['total_responses'],
            'rewritten': self.stats['rewritten'],
            'active': self.stats['active_connections'],
            'errors': self.stats['errors']
        }


def create_app(handler: RelayHandler) -> web.Application:
    """Создает aiohttp приложение с единственным catch-all маршрутом"""
    app = web.Application()
    app.router.add_route('*', '/{path:.*}', handler.handle)

    async def on_cleanup(_app):
        await handler.forwarder.cleanup()

    app.on_cleanup.append(on_cleanup)
    return app


class RelayManager:
    def __init__(self, config=None):
        """
        Args:
            config: ConfigManager; без него используются значения по умолчанию
        """
        self.config = config
        self.is_running = False
        self.host = '127.0.0.1'
        self.port = 8080
        self.handler = None
        self.runner = None
        self.site = None

        # Error tracking
        self.last_error_type = None  # 'port' | 'startup'
        self.last_error_details = None

    def _build_handler(self) -> RelayHandler:
        upstream = self.config.get_upstream_config() if self.config else {}
        forwarder = RequestForwarder(
            timeout_total=upstream.get('timeout_total', 90),
            timeout_connect=upstream.get('timeout_connect', 10),
            limit=upstream.get('limit', 100),
            limit_per_host=upstream.get('limit_per_host', 50),
            ttl_dns_cache=upstream.get('ttl_dns_cache', 300),
        )
        return RelayHandler(forwarder, chunk_size=upstream.get('chunk_size', 64 * 1024))

    async def start(self, host: Optional[str] = None, port: Optional[int] = None) -> bool:
        """
        Запуск relay сервера

        Returns:
            bool: True если успешно запущен
        """
        if self.is_running:
            logger.warning("⚠️ Relay is already running")
            return False

        server = self.config.get_server_config() if self.config else {}
        self.host = host or server.get('host', '127.0.0.1')
        self.port = port if port is not None else server.get('port', 8080)

        # Проверка порта
        port_available, port_message = check_port_availability(self.port, self.host)
        if not port_available:
            logger.error(f"❌ {port_message}")
            process_info = get_process_using_port(self.port)
            if process_info:
                logger.info(
                    f"📌 Process on port {self.port}:\n"
                    f"   PID: {process_info.get('pid')}\n"
                    f"   Name: {process_info.get('name')}\n"
                    f"   User: {process_info.get('username', 'N/A')}"
                )
            self.last_error_type = 'port'
            self.last_error_details = port_message
            return False

        try:
            self.handler = self._build_handler()
            await self.handler.forwarder.initialize()

            app = create_app(self.handler)
            self.runner = web.AppRunner(app, access_log=None)
            await self.runner.setup()

            self.site = web.TCPSite(self.runner, host=self.host, port=self.port)
            await self.site.start()

        except OSError as e:
            logger.error(f"❌ Failed to start relay: {e}")
            self.last_error_type = 'startup'
            self.last_error_details = str(e)
            await self.stop()
            return False

        self.is_running = True
        logger.info(f"✅ Relay listening on http://{self.host}:{self.port}")
        logger.info(f"   Usage: http://{self.host}:{self.port}/https://example.com")
        return True

    async def stop(self):
        """Остановка relay сервера"""
        logger.info("🛑 Stopping relay...")
        self.is_running = False

        if self.site:
            await self.site.stop()
            self.site = None
        if self.runner:
            # on_cleanup закрывает пул соединений forwarder
            await self.runner.cleanup()
            self.runner = None
        elif self.handler:
            await self.handler.forwarder.cleanup()

        if self.handler:
            stats = self.handler.get_full_stats()
            logger.info(
                f"📊 Session statistics:\n"
                f"   Total requests: {stats['requests']}\n"
                f"   Total responses: {stats['responses']}\n"
                f"   Rewritten: {stats['rewritten']}\n"
                f"   Errors: {stats['errors']}"
            )

        logger.info("✅ Relay stopped")

    async def serve_forever(self, host: Optional[str] = None, port: Optional[int] = None) -> bool:
        """Запускает сервер и ждёт отмены (Ctrl+C)"""
        if not await self.start(host, port):
            return False

        try:
            await asyncio.Event().wait()
        finally:
            await self.stop()
        return True

    def get_status(self):
        """Возвращает статус relay"""
        status = {
            'running': self.is_running,
            'host': self.host,
            'port': self.port,
        }

        if self.last_error_type:
            status['last_error'] = {
                'type': self.last_error_type,
                'details': self.last_error_details,
            }

        if self.handler and self.is_running:
            status['relay_stats'] = self.handler.get_full_stats()

        return status
