"""Studio Mirror FastAPI backend: main application entry point."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from studio_mirror import config
from studio_mirror.routers.mirror import mirror_router
from studio_mirror.routers.sync import sync_router

from studio_mirror.db import connection, migrations
from studio_mirror.db.sync_engine import SyncEngine
from studio_mirror.observability import initialize as initialize_observability, shutdown as shutdown_observability
from studio_mirror.services.studio_client import StudioClient

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("studio_mirror")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("Studio Mirror backend starting up")
    initialize_observability(app)

    # 1. Open the store
    db = await connection.open_connection()
    app.state.db = db

    # 2. Run migrations
    await migrations.run_migrations(db)

    # 3. Upstream client + sync engine
    client = StudioClient()
    app.state.studio_client = client
    app.state.sync_engine = SyncEngine(db, client)

    yield

    logger.info("Studio Mirror backend shutting down")
    await client.close()
    shutdown_observability(app)
    await connection.close_connection(db)


app = FastAPI(
    title="Studio Mirror API",
    description="Local mirror of Cucumber Studio folders and scenarios",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        config.FRONTEND_ORIGIN,
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(mirror_router)
app.include_router(sync_router)


@app.get("/api/health")
def health(request: Request):
    """Health check endpoint."""
    return {
        "status": "ok",
        "db": "connected" if getattr(request.app.state, "db", None) is not None else "disconnected",
        "backend": config.DB_BACKEND,
    }


def run() -> None:
    """Serve the app with uvicorn on the configured host and port."""
    import uvicorn

    uvicorn.run("studio_mirror.main:app", host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    run()
