# macroview/routes/indicators.py — resolve / indicators / streaming / news housekeeping
from __future__ import annotations

from typing import Any, AsyncIterator, Dict, List, Optional
import json
import logging

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse

from macroview.models import Unresolved
from macroview.services.dashboard import DashboardQueryFacade
from macroview.services.indicator_matrix import HISTORY_SOURCES

logger = logging.getLogger("macroview")

router = APIRouter(tags=["indicators"])


def _facade(request: Request) -> DashboardQueryFacade:
    return request.app.state.facade


def _split_ids(indicators: Optional[str]) -> Optional[List[str]]:
    if not indicators:
        return None
    ids = [s.strip() for s in indicators.split(",") if s.strip()]
    return ids or None


def _check_ids(facade: DashboardQueryFacade, ids: Optional[List[str]]) -> None:
    for i in ids or ():
        if i not in facade.catalog:
            raise HTTPException(status_code=404, detail=f"unknown indicator: {i}")


# -----------------------------------------------------------------------------
# Country resolution
# -----------------------------------------------------------------------------

@router.get("/v1/resolve", operation_id="resolve_country_get")
def resolve_country(
    request: Request,
    country: str = Query(..., description="Country name, alias or ISO code, e.g. Russia, US, GBR"),
):
    identity = _facade(request).resolve(country)
    if isinstance(identity, Unresolved):
        return JSONResponse(content={"resolved": False, "query": country, "reason": identity.reason})
    return JSONResponse(content={"resolved": True, **identity.to_dict()})


# -----------------------------------------------------------------------------
# Indicators
# -----------------------------------------------------------------------------

@router.get("/v1/indicators/catalog", operation_id="indicator_catalog_get")
def indicator_catalog(request: Request):
    facade = _facade(request)
    entries = [{**d.describe(), "history": d.id in HISTORY_SOURCES} for d in facade.catalog.values()]
    return JSONResponse(content={"indicators": entries})


@router.get("/v1/indicators", operation_id="indicators_get")
async def get_indicators(
    request: Request,
    country: str = Query(..., description="Country name, alias or ISO code"),
    indicators: Optional[str] = Query(None, description="Comma-separated ids; default = macro dashboard"),
    year: Optional[int] = Query(None, ge=1900, le=2100, description="Latest observation up to this year"),
):
    facade = _facade(request)
    ids = _split_ids(indicators)
    _check_ids(facade, ids)

    identity = facade.resolve(country)
    results = await facade.get_indicators(identity, ids, year)
    out: Dict[str, Any] = {
        "country": None if isinstance(identity, Unresolved) else identity.to_dict(),
        "query": country,
        "year": year,
        "indicators": {k: v.to_dict() for k, v in results.items()},
    }
    return JSONResponse(content=out)


@router.get("/v1/indicators/history", operation_id="indicators_history_get")
async def get_history(
    request: Request,
    country: str = Query(..., description="Country name, alias or ISO code; World for the global series"),
    indicator: str = Query(..., description="One of the ids flagged history=true in the catalog"),
    start: Optional[int] = Query(None, ge=1900, le=2100, description="First year (startPeriod)"),
    end: Optional[int] = Query(None, ge=1900, le=2100, description="Last year (endPeriod); default = current year"),
):
    facade = _facade(request)
    if indicator not in HISTORY_SOURCES:
        raise HTTPException(status_code=404, detail=f"no history for indicator: {indicator}")
    if start is not None and end is not None and start > end:
        raise HTTPException(status_code=400, detail="start must not be after end")

    identity = facade.resolve(country)
    result = await facade.get_history(identity, indicator, start, end)
    return JSONResponse(
        content={
            "country": None if isinstance(identity, Unresolved) else identity.to_dict(),
            "query": country,
            "indicator": indicator,
            "start": start,
            "end": end,
            "result": result.to_dict(),
        }
    )


@router.get("/v1/indicators/stream", operation_id="indicators_stream_get")
async def stream_indicators(
    request: Request,
    country: str = Query(..., description="Country name, alias or ISO code"),
    indicators: Optional[str] = Query(None, description="Comma-separated ids; default = macro dashboard"),
    year: Optional[int] = Query(None, ge=1900, le=2100),
):
    """NDJSON: one line per indicator, emitted as each one finishes."""
    facade = _facade(request)
    ids = _split_ids(indicators)
    _check_ids(facade, ids)

    async def lines() -> AsyncIterator[str]:
        async for indicator_id, result in facade.iter_indicators(country, ids, year):
            yield json.dumps({"indicator": indicator_id, **result.to_dict()}) + "\n"

    return StreamingResponse(lines(), media_type="application/x-ndjson")


# -----------------------------------------------------------------------------
# News quota / cache
# -----------------------------------------------------------------------------

@router.get("/v1/news/quota", operation_id="news_quota_get")
def news_quota(request: Request):
    return JSONResponse(content=_facade(request).news_status())


@router.delete("/v1/news/cache", operation_id="news_cache_delete")
def clear_news_cache(request: Request):
    removed = _facade(request).clear_news_cache()
    logger.info("news cache cleared (%d entries)", removed)
    return JSONResponse(content={"ok": True, "removed": removed})
