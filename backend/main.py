from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import backend.config as config
from backend.app_logger import get_logger, setup_logging
from backend.errors import GatepassError
from backend.routers import admin, auth, core, extensions, passes, scans
from database.db import GatepassStore

setup_logging()
logger = get_logger("api")


def create_app(db_path: Path | str | None = None, store: GatepassStore | None = None) -> FastAPI:
    """
    Build the API around one GatepassStore.

    The store is created here (or passed in), its schema is applied when the
    app starts and it is closed on shutdown.
    """
    active_store = store or GatepassStore(db_path or config.DB_PATH)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        active_store.create_tables()
        logger.info("Gatepass store ready at %s", active_store.db_path)
        try:
            yield
        finally:
            active_store.close()
            logger.info("Gatepass store closed")

    app = FastAPI(title="Hostel Gatepass API", lifespan=lifespan)
    app.state.store = active_store

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ALLOW_ORIGINS,
        allow_credentials=config.CORS_ALLOW_CREDENTIALS,
        allow_methods=config.CORS_ALLOW_METHODS,
        allow_headers=config.CORS_ALLOW_HEADERS,
    )

    @app.exception_handler(GatepassError)
    async def _gatepass_error(request: Request, exc: GatepassError):
        logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.kind, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "kind": exc.kind},
        )

    app.include_router(core.router)
    app.include_router(auth.router)
    app.include_router(admin.router)
    app.include_router(passes.router)
    app.include_router(scans.router)
    app.include_router(extensions.router)

    return app


app = create_app()
