import asyncio
import threading

import pytest

from remoteaccess.server.connections import (
    ConnectionInterceptorMiddleware,
    ConnectionRegistry,
    RemoteAccessConnection,
)


def test_addresses_are_unique_in_first_seen_order():
    registry = ConnectionRegistry()

    for peer in ("10.0.0.2", "10.0.0.3", "10.0.0.2", None, ""):
        registry.on_request(peer)

    assert registry.connections.value == [RemoteAccessConnection("10.0.0.2"), RemoteAccessConnection("10.0.0.3")]


def test_observers_see_every_change():
    registry = ConnectionRegistry()
    seen = []
    registry.connections.observe(lambda value: seen.append(len(value)))

    registry.on_request("10.0.0.2")
    registry.on_request("10.0.0.2")
    registry.on_request("10.0.0.3")
    registry.reset()

    assert seen == [0, 1, 2, 0]
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_requests_from_other_threads_are_marshaled():
    registry = ConnectionRegistry()
    registry.bind_loop(asyncio.get_running_loop())
    seen_on = []
    registry.connections.changed.connect(lambda _: seen_on.append(threading.get_ident()))

    workers = [threading.Thread(target=registry.on_request, args=(f"10.0.0.{i % 5}",)) for i in range(20)]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join()
    await asyncio.sleep(0.01)

    assert len(registry) == 5
    assert set(seen_on) == {threading.get_ident()}


@pytest.mark.asyncio
async def test_interceptor_records_http_and_websocket_peers():
    registry = ConnectionRegistry()
    calls = []

    async def app(scope, receive, send):
        calls.append(scope["type"])

    middleware = ConnectionInterceptorMiddleware(app, registry)
    await middleware({"type": "http", "client": ("192.168.1.20", 50000)}, None, None)
    await middleware({"type": "websocket", "client": ("192.168.1.21", 50001)}, None, None)
    await middleware({"type": "lifespan"}, None, None)
    await middleware({"type": "http", "client": None}, None, None)

    assert calls == ["http", "websocket", "lifespan", "http"]
    assert [c.ip for c in registry.connections.value] == ["192.168.1.20", "192.168.1.21"]
