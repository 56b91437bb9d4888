"""
FastAPI application entry point for the marketplace backend.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from workhub.config import Settings, get_settings
from workhub.dependencies import BackendSelector
from workhub.errors import BackendUnavailableError, DuplicateKeyError, InvalidValueError
from workhub.routes import router

logger = logging.getLogger(__name__)


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(DuplicateKeyError)
    async def duplicate_key(request: Request, exc: DuplicateKeyError):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(InvalidValueError)
    async def invalid_value(request: Request, exc: InvalidValueError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(BackendUnavailableError)
    async def backend_unavailable(request: Request, exc: BackendUnavailableError):
        logger.error("Storage backend unavailable: %s", exc)
        return JSONResponse(status_code=503, content={"detail": "Storage backend unavailable"})


def create_app(
    settings: Optional[Settings] = None, selector: Optional[BackendSelector] = None
) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await app.state.selector.close()

    app = FastAPI(title="Workhub Backend (FastAPI)", version="0.1.0", lifespan=lifespan)
    app.state.selector = selector or BackendSelector(settings)
    app.include_router(router, prefix=settings.api_prefix)
    _register_error_handlers(app)

    if not settings.s3_bucket and settings.upload_base_url.startswith("/"):
        app.mount(
            settings.upload_base_url,
            StaticFiles(directory=settings.upload_dir, check_dir=False),
            name="uploads",
        )
    return app


app = create_app()


def main() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run("workhub.app:app", host=settings.host, port=settings.port)
