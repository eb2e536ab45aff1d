import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer, unused_port
from multidict import CIMultiDict

from core.proxy.exceptions import UpstreamFetchError
from core.proxy.forwarder import (
    RequestForwarder,
    prepare_request_headers,
    prepare_response_headers,
)


def test_request_headers_drop_cookie_and_hop_by_hop():
    headers = CIMultiDict([
        ('Host', 'proxy.example'),
        ('Cookie', 'a=b'),
        ('Connection', 'keep-alive'),
        ('Content-Length', '10'),
        ('Accept-Encoding', 'br'),
        ('Accept', 'text/html'),
        ('X-Multi', '1'),
        ('X-Multi', '2'),
    ])

    result = prepare_request_headers(headers)

    assert list(result.items()) == [('Accept', 'text/html'), ('X-Multi', '1'), ('X-Multi', '2')]


def test_response_headers_drop_set_cookie_and_encoding():
    headers = CIMultiDict([
        ('Content-Type', 'text/html'),
        ('Set-Cookie', 'a=b'),
        ('set-cookie', 'c=d'),
        ('Content-Encoding', 'gzip'),
        ('Content-Length', '42'),
        ('Cache-Control', 'no-cache'),
    ])

    result = prepare_response_headers(headers)

    assert list(result.items()) == [('Content-Type', 'text/html'), ('Cache-Control', 'no-cache')]


@pytest.mark.asyncio
async def test_forward_returns_upstream_response():
    async def hello(request):
        return web.Response(text=f"{request.method} {request.rel_url.raw_query_string}")

    app = web.Application()
    app.router.add_route('*', '/hello', hello)
    server = TestServer(app)
    await server.start_server()

    forwarder = RequestForwarder(timeout_total=5, timeout_connect=2)
    try:
        url = str(server.make_url('/hello')) + '?a=%20b'
        async with forwarder.forward('PUT', url, {}, b'') as response:
            assert response.status == 200
            assert await response.text() == 'PUT a=%20b'
    finally:
        await forwarder.cleanup()
        await server.close()

    assert forwarder.session is None
    assert forwarder.connector is None


@pytest.mark.asyncio
async def test_forward_raises_fetch_error_when_unreachable():
    forwarder = RequestForwarder(timeout_total=5, timeout_connect=2)
    url = f"http://127.0.0.1:{unused_port()}/"

    try:
        with pytest.raises(UpstreamFetchError) as exc_info:
            async with forwarder.forward('GET', url, {}):
                pass
    finally:
        await forwarder.cleanup()

    assert exc_info.value.url == url
    assert exc_info.value.cause is not None
