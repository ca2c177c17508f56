# ============================================================================
# remoteaccess/server/middleware.py
# HTTP pipeline: compression, cache policy, CORS, connection tracking
# ============================================================================
#
# Order (outermost first):
#   ConnectionInterceptorMiddleware  every http/websocket scope, before routing
#   RequestLoggingMiddleware         debug only
#   CORSMiddleware                   any origin; GET, POST, OPTIONS
#   CacheControlMiddleware           Cache-Control by content type
#   GZipMiddleware
#
# ============================================================================

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.gzip import GZipMiddleware

from remoteaccess.server.connections import ConnectionInterceptorMiddleware, ConnectionRegistry

logger = logging.getLogger(__name__)

NO_STORE = "no-store, private"
ONE_DAY = "max-age=86400, private"

_NO_STORE_TYPES = ("text/plain", "application/json")
_CACHED_TYPES = (
    "image/",
    "text/css",
    "text/html",
    "text/javascript",
    "application/javascript",
    "text/xml",
    "application/xml",
)


def cache_policy(content_type: str) -> str:
    """Cache-Control value for a response content type, or "" to leave it unset."""
    media_type = content_type.split(";", 1)[0].strip().lower()
    if media_type in _NO_STORE_TYPES:
        return NO_STORE
    if any(media_type.startswith(t) for t in _CACHED_TYPES):
        return ONE_DAY
    return ""


class CacheControlMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        if "cache-control" not in response.headers:
            policy = cache_policy(response.headers.get("content-type", ""))
            if policy:
                response.headers["Cache-Control"] = policy
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        client = request.client.host if request.client else "unknown"
        logger.debug(f"[HTTP] {request.method} {request.url.path} from {client} headers={dict(request.headers)}")
        response = await call_next(request)
        logger.debug(f"[HTTP] {request.method} {request.url.path} -> {response.status_code}")
        return response


def setup_middleware(app: FastAPI, registry: ConnectionRegistry, debug: bool = False) -> None:
    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(CacheControlMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Access-Control-Allow-Origin", "Content-Type"],
    )
    if debug:
        app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(ConnectionInterceptorMiddleware, registry=registry)
