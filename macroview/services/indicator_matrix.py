"""
macroview/services/indicator_matrix.py

Declarative provider chains for the MacroView dashboard indicators.

Each entry says which providers to try, in what order, with which code and
transform. Nothing here calls an API; the orchestrator walks the chain.
Adding or reordering a provider is an edit to this table and nothing else.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Tuple
import os

from macroview.models import IndicatorDefinition, ProviderAttempt
from macroview.providers.http_client import ClientFactory, get_http_client
from macroview.providers.imf_provider import IMF_TIMEOUT, imf_datamapper, imf_sdmx, imf_sdmx_history
from macroview.providers.news_provider import NEWS_TIMEOUT, news_search
from macroview.providers.ninjas_provider import NINJAS_TIMEOUT, ninjas_population
from macroview.providers.wb_provider import WB_TIMEOUT, regulatory_quality_score, wb_indicator

INDICATOR_TTL = int(os.getenv("MACROVIEW_INDICATOR_TTL", "86400"))
NEWS_TTL = int(os.getenv("MACROVIEW_NEWS_TTL", "86400"))

NEWS_QUOTA = "news"


def build_indicator_matrix(client_factory: ClientFactory = get_http_client) -> Dict[str, IndicatorDefinition]:
    """
    `client_factory` is threaded through to every provider so tests can swap
    in an httpx.MockTransport-backed client.
    """
    cf = client_factory

    def dm(code: str) -> ProviderAttempt:
        return ProviderAttempt("IMF DataMapper", imf_datamapper(code, client_factory=cf), IMF_TIMEOUT)

    def sdmx(dataset: str, code: str) -> ProviderAttempt:
        return ProviderAttempt(f"IMF {dataset} (SDMX)", imf_sdmx(dataset, code, client_factory=cf), IMF_TIMEOUT)

    def wb(code: str, **kw) -> ProviderAttempt:
        return ProviderAttempt("World Bank", wb_indicator(code, client_factory=cf, **kw), WB_TIMEOUT)

    def news(topic: str) -> ProviderAttempt:
        return ProviderAttempt("NewsAPI", news_search(topic, client_factory=cf), NEWS_TIMEOUT, quota_provider=NEWS_QUOTA)

    defs: List[IndicatorDefinition] = [
        # ---------------------------------------------------------------------
        # IMF-first macro series
        # ---------------------------------------------------------------------
        IndicatorDefinition(
            id="gdp_growth",
            label="Real GDP growth",
            unit="percent",
            family="imf",
            provider_chain=(dm("NGDP_RPCH"), sdmx("WEO", "NGDP_RPCH"), wb("NY.GDP.MKTP.KD.ZG")),
            ttl_seconds=INDICATOR_TTL,
        ),
        IndicatorDefinition(
            id="gdp",
            label="GDP, current prices",
            unit="USD",
            family="imf",
            provider_chain=(dm("NGDPD"), wb("NY.GDP.MKTP.CD")),
            ttl_seconds=INDICATOR_TTL,
        ),
        IndicatorDefinition(
            id="inflation",
            label="Inflation, average consumer prices",
            unit="percent",
            family="imf",
            provider_chain=(dm("PCPIPCH"), sdmx("IFS", "PCPIPCH"), wb("FP.CPI.TOTL.ZG")),
            ttl_seconds=INDICATOR_TTL,
        ),
        IndicatorDefinition(
            id="unemployment",
            label="Unemployment rate",
            unit="percent",
            family="imf",
            provider_chain=(dm("LUR"), wb("SL.UEM.TOTL.ZS")),
            ttl_seconds=INDICATOR_TTL,
        ),
        IndicatorDefinition(
            id="population",
            label="Population",
            unit="persons",
            family="imf",
            provider_chain=(
                dm("LP"),
                wb("SP.POP.TOTL"),
                ProviderAttempt("API Ninjas", ninjas_population(client_factory=cf), NINJAS_TIMEOUT),
            ),
            ttl_seconds=INDICATOR_TTL,
        ),
        # ---------------------------------------------------------------------
        # World Bank-first comparison series
        # ---------------------------------------------------------------------
        IndicatorDefinition(
            id="interest_rate",
            label="Real interest rate",
            unit="percent",
            family="wb",
            provider_chain=(wb("FR.INR.RINR"), dm("FILR_PA")),
            ttl_seconds=INDICATOR_TTL,
        ),
        IndicatorDefinition(
            id="labor_participation",
            label="Labor force participation rate",
            unit="percent",
            family="wb",
            provider_chain=(wb("SL.TLF.CACT.ZS"),),
            ttl_seconds=INDICATOR_TTL,
        ),
        IndicatorDefinition(
            id="ease_of_doing_business",
            label="Ease of doing business rank",
            unit="rank",
            family="wb",
            provider_chain=(wb("IC.BUS.EASE.XQ"),),
            ttl_seconds=INDICATOR_TTL,
        ),
        IndicatorDefinition(
            id="regulatory_quality",
            label="Regulatory quality",
            unit="score 0-100",
            family="wb",
            provider_chain=(wb("GE.RQ.EST", transform=regulatory_quality_score),),
            ttl_seconds=INDICATOR_TTL,
        ),
        IndicatorDefinition(
            id="tariff",
            label="Tariff rate, applied",
            unit="percent",
            family="wb",
            provider_chain=(wb("TM.TAX.MRCH.SM.AR.ZS"), wb("TM.TAX.MRCH.WM.AR.ZS")),
            ttl_seconds=INDICATOR_TTL,
        ),
    ]

    # -------------------------------------------------------------------------
    # Headlines (value = headline count)
    # -------------------------------------------------------------------------
    for topic, label in (("economy", "Economy news"), ("markets", "Markets news"), ("trade", "Trade news")):
        defs.append(
            IndicatorDefinition(
                id=f"news_{topic}",
                label=label,
                unit="headlines",
                family="news",
                provider_chain=(news(topic),),
                ttl_seconds=NEWS_TTL,
            )
        )

    return {d.id: d for d in defs}


INDICATOR_MATRIX: Dict[str, IndicatorDefinition] = build_indicator_matrix()

DEFAULT_DASHBOARD: List[str] = [k for k, d in INDICATOR_MATRIX.items() if d.family != "news"]


# -----------------------------------------------------------------------------
# Range history (IMF SDMX, startPeriod/endPeriod)
# -----------------------------------------------------------------------------
# indicator id -> (dataset, series code, scale)
HISTORY_SOURCES: Dict[str, Tuple[str, str, float]] = {
    "gdp_growth": ("WEO", "NGDP_RPCH", 1.0),
    "inflation": ("WEO", "PCPIPCH", 1.0),
    "gdp": ("WEO", "NGDPD", 1e9),
}


def history_definition(
    indicator_id: str,
    start: Optional[int] = None,
    client_factory: ClientFactory = get_http_client,
) -> IndicatorDefinition:
    """
    One-off definition for the yearly rows of `indicator_id` from `start`
    onwards. The start year is part of the id so each range caches apart;
    the end year travels as the usual year cutoff.
    """
    if indicator_id not in HISTORY_SOURCES:
        raise KeyError(f"no history for indicator {indicator_id!r}")
    dataset, code, scale = HISTORY_SOURCES[indicator_id]
    base = INDICATOR_MATRIX[indicator_id]
    fetch = imf_sdmx_history(dataset, code, start=start, scale=scale, client_factory=client_factory)
    return IndicatorDefinition(
        id=indicator_id if start is None else f"{indicator_id}~{start}",
        label=base.label,
        unit=base.unit,
        family="history",
        provider_chain=(ProviderAttempt(f"IMF {dataset} (SDMX)", fetch, IMF_TIMEOUT),),
        ttl_seconds=INDICATOR_TTL,
    )


__all__ = [
    "DEFAULT_DASHBOARD",
    "HISTORY_SOURCES",
    "INDICATOR_MATRIX",
    "INDICATOR_TTL",
    "NEWS_QUOTA",
    "NEWS_TTL",
    "build_indicator_matrix",
    "history_definition",
]
