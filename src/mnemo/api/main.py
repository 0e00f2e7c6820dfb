"""
mnemo API - memory capture and retrieval over HTTP
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from mnemo import __version__
from mnemo.config.log_config import configure_logging
from mnemo.config.settings import get_settings
from mnemo.core.di import ServiceContainer, build_container
from mnemo.core.errors import CapabilityUnavailableError, MnemoError, ValidationError

from .routes import memory, search

logger = logging.getLogger(__name__)


def _status_for(exc: MnemoError) -> int:
    if isinstance(exc, CapabilityUnavailableError):
        return 503
    if isinstance(exc, ValidationError):
        return 400
    return 500


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    settings = container.settings if container is not None else get_settings()

    app = FastAPI(
        title="mnemo API",
        description="Capture, deduplicate and search personal memories",
        version=__version__,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    if container is not None:
        app.state.container = container

    @app.exception_handler(MnemoError)
    async def _mnemo_error(request: Request, exc: MnemoError):
        status = _status_for(exc)
        if status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=status, content={"error": exc.code, "detail": exc.message})

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {"status": "healthy", "version": __version__}

    app.include_router(memory.router, prefix="/api", tags=["Memory"])
    app.include_router(search.router, prefix="/api", tags=["Search"])

    @app.on_event("startup")
    async def _startup():
        if getattr(app.state, "container", None) is None:
            configure_logging(settings.logging)
            app.state.container = await build_container(settings)
            app.state.owns_container = True

    @app.on_event("shutdown")
    async def _shutdown():
        if getattr(app.state, "owns_container", False):
            await app.state.container.background.drain()
            await app.state.container.close()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
