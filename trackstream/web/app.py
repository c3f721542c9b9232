"""
FastAPI application factory: lifespan management, CORS and error mapping.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from trackstream import __version__
from trackstream.exceptions import (
    BadRequestError,
    CatalogLookupError,
    InternalError,
    RangeNotSatisfiableError,
)
from trackstream.models.config import ServerConfig

from .routes import router
from .services import StreamServices, build_services

log = logging.getLogger(__name__)


def _error_body(message: str, kind: str) -> dict[str, str]:
    return {"message": message, "error": kind}


async def _bad_request(request: Request, exc: BadRequestError) -> JSONResponse:
    return JSONResponse(status_code=400, content=_error_body(str(exc), "BadRequest"))


async def _not_satisfiable(
    request: Request, exc: RangeNotSatisfiableError
) -> JSONResponse:
    return JSONResponse(
        status_code=416,
        content=_error_body(str(exc), "RangeNotSatisfiable"),
        headers={"Content-Range": f"bytes */{exc.total_size}"},
    )


async def _internal(request: Request, exc: InternalError) -> JSONResponse:
    cause = exc.__cause__
    kind = type(cause).__name__ if cause is not None else "InternalError"
    return JSONResponse(status_code=500, content=_error_body(str(exc), kind))


async def _catalog_failure(request: Request, exc: CatalogLookupError) -> JSONResponse:
    log.error(f"Catalog request {request.url.path} failed: {exc}")
    return JSONResponse(status_code=502, content=_error_body(str(exc), type(exc).__name__))


def create_app(
    config: ServerConfig, services: Optional[StreamServices] = None
) -> FastAPI:
    """
    Builds the application.

    Args:
        config: Validated server configuration.
        services: Pre-built components. When given, the caller owns their
            lifecycle; otherwise they are built from config and started and
            stopped with the application.
    """
    owns_services = services is None
    services = services or build_services(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if owns_services:
            await services.start()
        try:
            yield
        finally:
            if owns_services:
                await services.stop()

    app = FastAPI(
        title="trackstream",
        description="Range-aware audio streaming for Spotify tracks",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.services = services
    app.state.config = config

    origins = ["*"] if config.allowed_origin == "*" else [config.allowed_origin]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Content-Type", "Authorization", "Range"],
        expose_headers=["Content-Range", "Accept-Ranges", "Content-Length"],
    )

    app.add_exception_handler(BadRequestError, _bad_request)
    app.add_exception_handler(RangeNotSatisfiableError, _not_satisfiable)
    app.add_exception_handler(InternalError, _internal)
    app.add_exception_handler(CatalogLookupError, _catalog_failure)

    app.include_router(router)
    return app
