"""Mapping of service exceptions to HTTP responses."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from shelfsync.services.abs_client import (
    ConfigurationError,
    DecodingError,
    ServerError,
    TransportError,
)
from shelfsync.services.epub import EPUBError
from shelfsync.services.playback_manager import NoItemLoaded, NoPlayableAudio
from shelfsync.services.reader import EbookNotLoaded, NoEbookFile

logger = logging.getLogger(__name__)


async def configuration_error_handler(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=401, content={"code": "not_configured", "detail": str(exc)})


async def server_error_handler(request: Request, exc: ServerError) -> JSONResponse:
    logger.warning("Upstream %s returned %d: %s", exc.path, exc.status, exc.body[:200])
    return JSONResponse(
        status_code=502,
        content={"code": "upstream_error", "detail": str(exc), "upstream_status": exc.status},
    )


async def upstream_unavailable_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.warning("Upstream request failed: %s", exc)
    return JSONResponse(status_code=502, content={"code": "upstream_unavailable", "detail": str(exc)})


async def no_playable_audio_handler(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=409, content={"code": "no_playable_audio", "detail": str(exc)})


async def no_item_loaded_handler(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=409, content={"code": "no_item_loaded", "detail": str(exc)})


async def ebook_error_handler(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=422, content={"code": "corrupt_ebook", "detail": str(exc)})


async def no_ebook_handler(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=404, content={"code": "no_ebook", "detail": str(exc)})


async def ebook_not_loaded_handler(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=409, content={"code": "ebook_not_loaded", "detail": str(exc)})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ConfigurationError, configuration_error_handler)
    app.add_exception_handler(ServerError, server_error_handler)
    app.add_exception_handler(DecodingError, upstream_unavailable_handler)
    app.add_exception_handler(TransportError, upstream_unavailable_handler)
    app.add_exception_handler(NoPlayableAudio, no_playable_audio_handler)
    app.add_exception_handler(NoItemLoaded, no_item_loaded_handler)
    app.add_exception_handler(EPUBError, ebook_error_handler)
    app.add_exception_handler(NoEbookFile, no_ebook_handler)
    app.add_exception_handler(EbookNotLoaded, ebook_not_loaded_handler)
