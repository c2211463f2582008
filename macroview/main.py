# macroview/main.py
from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import os

from fastapi import FastAPI
from fastapi.routing import APIRoute

from macroview.providers.http_client import close_http_clients
from macroview.routes.indicators import router as indicators_router
from macroview.services.dashboard import build_default_facade

logger = logging.getLogger("macroview")
logging.basicConfig(level=os.getenv("MACROVIEW_LOG_LEVEL", "INFO").upper())


# --- keep operation_id stable (avoid FastAPI auto-dedupe renaming) ----------
def _fixed_unique_id(route: APIRoute) -> str:
    return route.operation_id or f"{route.name}_{route.path}".strip("/").replace("/", "_")


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.facade = build_default_facade()
    logger.info("[init] indicator engine ready")
    try:
        yield
    finally:
        await close_http_clients()
        app.state.facade.close()
        logger.info("[shutdown] http clients closed")


app = FastAPI(
    title="MacroView API",
    description="Country resolution and cached macroeconomic indicators",
    version="2026.10.19",
    generate_unique_id_function=_fixed_unique_id,
    lifespan=lifespan,
)

app.include_router(indicators_router)
logger.info("[init] indicators router mounted")


@app.get("/")
def root():
    return {"ok": True, "service": "macroview", "docs": "/docs"}


@app.get("/healthz")
def healthz():
    # keep this super fast
    return {"status": "ok"}
