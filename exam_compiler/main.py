from __future__ import annotations

import os
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Final

import httpx
from fastapi import FastAPI

from exam_compiler.api.routes import SessionRegistry, router as api_router
from exam_compiler.core.config import get_settings
from exam_compiler.services.storage import KeyValueStore, open_store


def create_app(
    *,
    store: KeyValueStore | None = None,
    transport: httpx.BaseTransport | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> FastAPI:
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        app.state.sessions.close_all()

    app = FastAPI(
        title="Exam Compiler API",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.sessions = SessionRegistry(
        settings,
        store if store is not None else open_store(settings.store_path),
        transport=transport,
        clock=clock,
    )

    @app.get("/healthz")
    def healthz() -> dict[str, str]:  # sync + strictly typed
        return {"status": "ok"}

    app.include_router(api_router, prefix="/v1")
    return app


app: Final[FastAPI] = create_app()


def run() -> None:
    """Run the API using Uvicorn.

    This is for local/dev usage. Production deployments should use a process manager
    and configure workers according to their environment.
    """
    import uvicorn

    host: str = os.environ.get("HOST", "127.0.0.1")
    port_str: str | None = os.environ.get("PORT")
    port: int = int(port_str) if port_str else 8000
    uvicorn.run("exam_compiler.main:app", host=host, port=port, log_level="info")
