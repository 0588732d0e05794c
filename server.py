"""FastAPI app exposing the research assistant chat endpoint."""

from __future__ import annotations

import logging
import os
from datetime import UTC, datetime
from json import JSONDecodeError
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.concurrency import run_in_threadpool

from chat_service import ChatService
from entries_index import EntriesIndex
from entry_source import HtmlEntrySource, fetch_page_html
from errors import AssistantError, InputError
from relevance import ScoringWeights

SITE_PAGE_URL = os.getenv("SITE_PAGE_URL", "")
SITE_PAGE_PATH = os.getenv("SITE_PAGE_PATH", "")
SITE_STATIC_DIR = os.getenv("SITE_STATIC_DIR", "public")
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

LOGGER = logging.getLogger(__name__)


def index_from_env() -> EntriesIndex | None:
    """Server-side catalog from SITE_PAGE_PATH (local file) or SITE_PAGE_URL."""
    if SITE_PAGE_PATH:
        path = Path(SITE_PAGE_PATH)
        return EntriesIndex(
            lambda: HtmlEntrySource(path.read_text(encoding="utf-8")),
            page_url=SITE_PAGE_URL,
            weights=ScoringWeights.from_env(),
        )
    if SITE_PAGE_URL:
        return EntriesIndex(
            lambda: HtmlEntrySource(fetch_page_html(SITE_PAGE_URL)),
            page_url=SITE_PAGE_URL,
            weights=ScoringWeights.from_env(),
        )
    return None


def create_app(service: ChatService | None = None, static_dir: str | None = SITE_STATIC_DIR) -> FastAPI:
    service = service or ChatService(index=index_from_env())

    app = FastAPI(title="Research Exchange Assistant", description="Grounded chat over research entries")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin.strip() for origin in CORS_ORIGINS.split(",") if origin.strip()],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AssistantError)
    async def assistant_error_handler(request: Request, exc: AssistantError) -> JSONResponse:
        headers = {}
        retry_after = getattr(exc, "retry_after_minutes", None)
        if retry_after is not None:
            headers["Retry-After"] = str(retry_after * 60)
        if exc.status_code >= 500:
            LOGGER.error("Chat request failed (%s): %s", exc.status_code, exc)
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload(), headers=headers)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        LOGGER.exception("Unexpected error handling %s: %s", request.url.path, exc)
        return JSONResponse(status_code=500, content={"error": AssistantError.public_message})

    @app.get("/api/health", tags=["health"])
    async def health() -> dict:
        index = service.index
        return {
            "status": "ok",
            "timestamp": datetime.now(UTC).isoformat(),
            "entriesIndexed": len(index.all_entries()) if index is not None and index.is_ready else None,
        }

    @app.post("/api/entries/rebuild", tags=["entries"])
    async def rebuild_entries() -> JSONResponse:
        index = service.index
        if index is None:
            return JSONResponse(status_code=404, content={"error": "No server-side entries page is configured"})
        try:
            catalog = await run_in_threadpool(index.rebuild)
        except Exception as exc:  # keep serving the previous snapshot
            LOGGER.warning("Catalog rebuild failed: %s", exc)
            return JSONResponse(status_code=503, content={"error": "Entries page could not be indexed"})
        LOGGER.info("Catalog rebuilt with %s entries", len(catalog))
        return JSONResponse(content={"entriesIndexed": len(catalog), "builtAt": catalog.built_at.isoformat()})

    @app.post("/api/chat", tags=["chat"])
    async def chat(request: Request) -> dict:
        try:
            payload = await request.json()
        except (JSONDecodeError, UnicodeDecodeError) as exc:
            raise InputError("Request body must be valid JSON") from exc
        return await run_in_threadpool(service.handle, payload)

    if static_dir and Path(static_dir).is_dir():
        app.mount("/", StaticFiles(directory=static_dir, html=True), name="site")

    return app
