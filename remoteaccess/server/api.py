# ============================================================================
# remoteaccess/server/api.py
# FastAPI application factory
# ============================================================================
#
# PURPOSE:
# Builds the ASGI app served by both listeners (plaintext and TLS): routes,
# push channel endpoints, static web client, middleware and error mapping.
#
# PUSH CHANNEL:
#   WS /ws    main endpoint
#   WS /echo  legacy alias, same behavior (subprotocol `player` honoured)
#
#   1. Session cookie checked before accept (close 4001 when missing/invalid)
#   2. Channel attached to the hub, `auth` frame sent
#   3. Inbound frames dispatched as commands until the client leaves
#   4. Channel detached from the hub whatever the exit path
#
# ============================================================================

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, WebSocket
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from remoteaccess.errors import RemoteAccessError
from remoteaccess.server.auth import validate_websocket_connection
from remoteaccess.server.context import ServerContext
from remoteaccess.server.hub import PushChannel
from remoteaccess.server.messages import WebSocketAuthorization
from remoteaccess.server.middleware import setup_middleware
from remoteaccess.server.routes import public_router, router

logger = logging.getLogger(__name__)

PLAYER_SUBPROTOCOL = "player"


async def remote_access_error_handler(request: Request, exc: RemoteAccessError):
    logger.warning(f"[API] {exc.code.value}: {exc.message} ({request.url.path})")
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


async def run_push_channel(websocket: WebSocket, endpoint_name: str) -> None:
    ctx: ServerContext = websocket.app.state.context

    if not await validate_websocket_connection(websocket, ctx.auth, endpoint_name):
        return  # Connection was closed by validator

    requested = websocket.scope.get("subprotocols") or []
    await websocket.accept(subprotocol=PLAYER_SUBPROTOCOL if PLAYER_SUBPROTOCOL in requested else None)

    peer = f"{websocket.client.host}:{websocket.client.port}" if websocket.client else "unknown"
    channel = PushChannel(websocket, peer=peer, max_pending=ctx.config.push.channel_queue_size)
    ctx.hub.add_channel(channel)
    logger.info(f"[WebSocket] {endpoint_name} channel opened for {peer}")
    await ctx.hub.send(channel, WebSocketAuthorization(status="authorized"))

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            text = message.get("text")
            if text is None and message.get("bytes"):
                text = message["bytes"].decode("utf-8", errors="replace")
            if text:
                await ctx.commands.handle(channel, text)
    finally:
        await ctx.hub.remove_channel(channel)
        logger.info(f"[WebSocket] {endpoint_name} channel closed for {peer}")


def create_app(context: ServerContext) -> FastAPI:
    app = FastAPI(
        title="Remote Access Server",
        description="Remote control and media sharing for the host player",
        version="1.0.0",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.context = context

    app.add_exception_handler(RemoteAccessError, remote_access_error_handler)

    app.include_router(public_router)
    app.include_router(router)

    @app.websocket("/ws")
    async def ws_endpoint(websocket: WebSocket):
        await run_push_channel(websocket, "/ws")

    @app.websocket("/echo")
    async def echo_endpoint(websocket: WebSocket):
        await run_push_channel(websocket, "/echo")

    # Last: everything not routed above is a file of the web client
    app.mount(
        "/",
        StaticFiles(directory=context.config.storage.static_path, check_dir=False),
        name="static",
    )

    setup_middleware(app, context.registry, debug=context.config.debug)
    return app
