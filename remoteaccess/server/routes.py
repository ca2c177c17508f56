# remoteaccess/server/routes.py
"""
HTTP routes.

Public: `/`, `/code`, `/verify-code` (and the static files mounted by the app
factory). Everything else requires a valid session cookie and answers 401 JSON
without one.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict

from fastapi import APIRouter, Depends, File, Query, Request, Response, UploadFile
from fastapi.responses import FileResponse, JSONResponse, RedirectResponse
from pydantic import BaseModel, Field

from remoteaccess.errors import ErrorCode, RemoteAccessError
from remoteaccess.server.auth import require_session
from remoteaccess.server.context import ServerContext
from remoteaccess.server.messages import (
    BrowsingResult,
    LoginNeeded,
    SearchResults,
    encode_message,
)
from remoteaccess.server.playback import build_now_playing, build_play_queue, media_to_queue_item

logger = logging.getLogger(__name__)

public_router = APIRouter()
router = APIRouter(dependencies=[Depends(require_session)])


def get_context(request: Request) -> ServerContext:
    return request.app.state.context


def _json(text: str) -> Response:
    return Response(content=text, media_type="application/json")


class VerifyCodeRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=16)


# --- Login ---

@public_router.get("/")
async def index():
    return RedirectResponse("/index.html", status_code=301)


@public_router.post("/code")
async def request_code(ctx: ServerContext = Depends(get_context)):
    code = ctx.auth.issue_code()
    ctx.login_prompt(code)
    await ctx.hub.broadcast(LoginNeeded(dialog_opened=True))
    return {"status": "code-sent", "expires_in": ctx.config.security.login_code_ttl}


@public_router.post("/verify-code")
async def verify_code(
    payload: VerifyCodeRequest,
    response: Response,
    ctx: ServerContext = Depends(get_context),
):
    if not ctx.auth.verify_code(payload.code.strip()):
        raise RemoteAccessError(ErrorCode.AUTH_CODE_INVALID, "Invalid or expired code")
    session, cookie = ctx.auth.create_session()
    ctx.auth.set_cookie(response, cookie)
    await ctx.hub.broadcast(LoginNeeded(dialog_opened=False))
    logger.info(f"[Auth] Session {session.id[:8]} created")
    return {"status": "ok"}


@router.post("/logout")
async def logout(request: Request, response: Response, ctx: ServerContext = Depends(get_context)):
    ctx.auth.revoke(request.cookies.get(ctx.auth.cookie_name))
    ctx.auth.clear_cookie(response)
    return {"status": "ok"}


# --- Player & library ---

@router.get("/api/now-playing")
async def now_playing(ctx: ServerContext = Depends(get_context)):
    snapshot = build_now_playing(ctx.engine)
    if snapshot is None:
        raise RemoteAccessError(ErrorCode.SERVER_NOTHING_PLAYING, "Nothing is playing")
    return _json(encode_message(snapshot))


@router.get("/api/play-queue")
async def play_queue(ctx: ServerContext = Depends(get_context)):
    return _json(encode_message(build_play_queue(ctx.engine)))


@router.get("/api/search")
async def search(query: str = Query(..., min_length=1, max_length=256), ctx: ServerContext = Depends(get_context)):
    grouped = ctx.catalog.search(query)
    fields: Dict[str, Any] = {
        name: [media_to_queue_item(m) for m in grouped.get(name, [])]
        for name in SearchResults.model_fields
    }
    return _json(SearchResults(**fields).model_dump_json(by_alias=True))


@router.get("/api/browse/{category}")
async def browse(category: str, ctx: ServerContext = Depends(get_context)):
    items = [media_to_queue_item(m) for m in ctx.catalog.browse(category)]
    return _json(BrowsingResult(content=items).model_dump_json(by_alias=True))


@router.get("/api/secure-url")
async def secure_url(request: Request, ctx: ServerContext = Depends(get_context)):
    port = ctx.secure_port()
    if port is None:
        raise RemoteAccessError(ErrorCode.SERVER_NOT_STARTED, "TLS listener is not running")
    return {"url": f"https://{request.url.hostname}:{port}"}


@router.get("/artwork")
async def artwork(ctx: ServerContext = Depends(get_context)):
    data = ctx.engine.cover_art()
    if not data:
        raise RemoteAccessError(ErrorCode.FILE_NOT_FOUND, "No artwork for the current media")
    return Response(content=data, media_type="image/jpeg")


# --- Files ---

def _safe_name(filename: str) -> str:
    name = Path(filename.replace("\\", "/")).name
    if name in ("", ".", ".."):
        raise RemoteAccessError(
            ErrorCode.FILE_INVALID_NAME,
            "Invalid file name",
            details={"filename": filename},
        )
    return name


def _store_upload(source, target: Path) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=target.parent, prefix=".upload-")
    try:
        with os.fdopen(fd, "wb") as out:
            shutil.copyfileobj(source, out)
        os.replace(tmp, target)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


@router.post("/upload.json")
async def upload(media: UploadFile = File(...), ctx: ServerContext = Depends(get_context)):
    name = _safe_name(media.filename or "")
    target = ctx.config.storage.uploads_path / name
    try:
        await asyncio.to_thread(_store_upload, media.file, target)
    except OSError as e:
        logger.error(f"[Upload] Writing {name} failed: {e}")
        raise RemoteAccessError(
            ErrorCode.FILE_UPLOAD_FAILED,
            "Upload failed",
            details={"filename": name, "error": str(e)},
        ) from e
    finally:
        await media.close()
    logger.info(f"[Upload] Stored {name} ({target.stat().st_size} bytes)")
    return {"success": True, "name": name}


@router.post("/logs")
async def gather_logs(ctx: ServerContext = Depends(get_context)):
    archive = await ctx.log_gatherer.gather()
    return {"file": archive.name, "url": f"/download?file={archive.name}"}


@router.get("/download")
async def download(file: str = Query(..., min_length=1), ctx: ServerContext = Depends(get_context)):
    downloads = ctx.config.storage.downloads_path.resolve()
    path = (downloads / _safe_name(file)).resolve()
    if path.parent != downloads or not path.is_file():
        raise RemoteAccessError(ErrorCode.FILE_NOT_FOUND, "File not found", details={"file": file})
    return FileResponse(path, filename=path.name)


# --- Network ---

@router.post("/network/discover", status_code=202)
async def network_discover(ctx: ServerContext = Depends(get_context)):
    started = await ctx.discovery.launch()
    return JSONResponse({"started": started, "shares": len(ctx.discovery.results)}, status_code=202)
