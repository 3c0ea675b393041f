"""
FastAPI app entrypoint.

Serves the dashboard's chat: questions go to the remote query service over its NDJSON stream, transcripts and
saved charts are kept in the local database (kv_entries). Run `alembic upgrade head` once before starting.
"""
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

import httpx
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load .env from backend/ before any app code
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

from querychat.api.routes import auth, chat, connection, visualizations
from querychat.config import settings
from querychat.db.session import SessionLocal
from querychat.services.auth_service import TokenStore
from querychat.services.chat_history_service import ChatHistoryStore
from querychat.services.query_api.client import QueryApiClient
from querychat.services.query_session import QuerySessionController
from querychat.services.saved_visualizations_service import SavedVisualizationStore
from querychat.services.storage import KeyValueStore, SqlKeyValueStore

logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


def create_app(
    *,
    storage: KeyValueStore | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Build the app. storage and transport are injectable so tests run without a database or network."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        kv = storage if storage is not None else SqlKeyValueStore(SessionLocal)
        client = QueryApiClient(token_store=TokenStore(kv), transport=transport)
        history = ChatHistoryStore(kv)
        app.state.client = client
        app.state.history = history
        app.state.saved_visualizations = SavedVisualizationStore(kv)
        app.state.controller = QuerySessionController(history, client)
        logger.info("Dashboard API ready; query service at %s", settings.api_base_url)
        yield
        app.state.controller.close()

    app = FastAPI(title="QueryChat", version="0.1.0", lifespan=lifespan)

    # CORS: dev origins + optional CORS_ORIGINS env (comma-separated) for a deployed frontend
    cors_origins = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]
    cors_extra = os.getenv("CORS_ORIGINS", "")
    if cors_extra:
        cors_origins.extend(o.strip() for o in cors_extra.split(",") if o.strip())
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(auth.router, prefix="/auth", tags=["auth"])
    app.include_router(connection.router, prefix="/connection", tags=["connection"])
    app.include_router(chat.router, prefix="/chat", tags=["chat"])
    app.include_router(visualizations.router, prefix="/visualizations", tags=["visualizations"])

    @app.get("/", include_in_schema=False)
    def root():
        """Root: point to API docs and health."""
        return {"message": "QueryChat API", "docs": "/docs", "health": "/health"}

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()
