"""Prospect data collector.

Prepares and updates the per-prospect cache record used during research.
Research tools are run by an external AI agent loop, which persists each
tool's output through ``update_prospect_tool_result``. Tool calls that do
run here go through ``run_tool_with_timeout`` so a slow or failing tool
yields a failed ``ToolResult`` instead of an exception.
"""

import asyncio
import time
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog

from models import (
    CachedDataSource,
    CollectionResult,
    DataQuality,
    DataSummary,
    ProspectDataCache,
    ProspectIdentifier,
    ProspectInput,
    ToolResult,
    ensure_utc,
    utc_now,
)
from services.prospect_cache import (
    ProspectDataCacheStore,
    calculate_data_quality,
    create_prospect_cache_key,
    get_source_ttl,
)
from services.source_tracker import create_source_tracker

DEFAULT_TOOL_TIMEOUT_MS = 60000
STALE_AFTER = timedelta(days=30)

# Tool name (as called by the agent) -> cache field
TOOL_FIELD_MAP: Dict[str, str] = {
    "secInsider": "sec_insider",
    "sec_insider_search": "sec_insider",
    "fec": "fec_contributions",
    "fec_contributions": "fec_contributions",
    "propublica": "propublica_990",
    "propublica_nonprofit_search": "propublica_990",
    "property": "property_valuation",
    "property_valuation": "property_valuation",
    "countyAssessor": "county_assessor",
    "county_assessor": "county_assessor",
    "businessRegistry": "business_registry",
    "business_registry_scraper": "business_registry",
    "voter": "voter_registration",
    "voter_registration": "voter_registration",
    "family": "family_discovery",
    "family_discovery": "family_discovery",
    "wikidata": "wikidata",
    "wikidata_search": "wikidata",
    "wikidata_entity": "wikidata",
    "linkup": "linkup_searches",
    "searchWeb": "linkup_searches",
    "revenueEstimate": "revenue_estimate",
    "business_revenue_estimate": "revenue_estimate",
}

ToolFactory = Callable[[], Awaitable[Any]]


def _elapsed_ms(start_time: float) -> int:
    return int((time.monotonic() - start_time) * 1000)


async def run_tool_with_timeout(
    tool_name: str,
    tool_fn: ToolFactory,
    timeout_ms: int = DEFAULT_TOOL_TIMEOUT_MS
) -> ToolResult:
    """
    Run a tool with a timeout.

    Args:
        tool_name: Name reported in the result and in error messages
        tool_fn: Zero-argument callable returning an awaitable
        timeout_ms: Time budget in milliseconds

    Returns:
        ToolResult with ``success=True`` and the tool's data, or
        ``success=False`` and an error message on timeout or exception
    """
    start_time = time.monotonic()

    task = None
    try:
        task = asyncio.ensure_future(tool_fn())
        done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000)

        if task not in done:
            task.cancel()
            await asyncio.wait({task})
            return ToolResult(
                name=tool_name,
                success=False,
                error=f"{tool_name} timed out after {timeout_ms}ms",
                duration_ms=_elapsed_ms(start_time),
            )

        return ToolResult(
            name=tool_name,
            success=True,
            data=task.result(),
            duration_ms=_elapsed_ms(start_time),
        )
    except asyncio.CancelledError:
        if task is not None:
            task.cancel()
        raise
    except Exception as e:
        return ToolResult(
            name=tool_name,
            success=False,
            error=str(e) or type(e).__name__,
            duration_ms=_elapsed_ms(start_time),
        )


def is_cache_stale(data: ProspectDataCache, now: Optional[datetime] = None) -> bool:
    """True when the record was last updated more than 30 days ago."""
    now = ensure_utc(now) if now else utc_now()
    return now - data.updated_at > STALE_AFTER


def get_data_summary(data: ProspectDataCache) -> DataSummary:
    """Summarize which research is available for a prospect."""
    return DataSummary(
        has_sec_data=data.sec_insider is not None,
        has_fec_data=data.fec_contributions is not None,
        has_property_data=data.property_valuation is not None or data.county_assessor is not None,
        has_business_data=data.business_registry is not None,
        has_wikidata_data=data.wikidata is not None,
        has_family_data=data.family_discovery is not None,
        total_sources=len(data.sources_used),
        data_quality=data.data_quality.value,
    )


def get_prospect_search_queries(prospect: ProspectInput) -> List[str]:
    """Build the web search queries to run for a prospect."""
    name = prospect.name
    queries = [
        f'"{name}" biography career education net worth',
        f'"{name}" CEO founder company business owner',
        f'"{name}" foundation philanthropy charitable giving donations',
        f'"{name}" board director nonprofit trustee',
    ]

    if prospect.address:
        queries.append(f'"{name}" property real estate "{prospect.address}"')

    if prospect.spouse_name:
        queries.append(f'"{name}" "{prospect.spouse_name}" married family')

    return queries


class ProspectDataCollector:
    """Prepares prospect cache records and persists tool results into them."""

    def __init__(
        self,
        store: ProspectDataCacheStore,
        tool_timeout_ms: int = DEFAULT_TOOL_TIMEOUT_MS,
        record_ttl: timedelta = timedelta(days=30)
    ):
        self.store = store
        self.tool_timeout_ms = tool_timeout_ms
        self.record_ttl = record_ttl
        self.logger = structlog.get_logger(__name__).bind(component="data_collector")

    async def collect_prospect_data(
        self,
        prospect: ProspectInput,
        force_refresh: bool = False
    ) -> CollectionResult:
        """
        Return the cached record for a prospect, or initialize one.

        Tool calls are made by the agent during conversation; this only
        prepares the cache structure.

        Args:
            prospect: Prospect identification info
            force_refresh: Skip the cache and write a fresh skeleton record

        Returns:
            CollectionResult with the record and an empty source tracker
        """
        start_time = time.monotonic()
        source_tracker = create_source_tracker()

        if not force_refresh:
            cached = await self.store.get_cached_prospect_data(prospect)
            if cached:
                self.logger.info("Cache hit", prospect=prospect.name, cache_key=cached.cache_key)
                return CollectionResult(
                    data=cached,
                    source_tracker=source_tracker,
                    from_cache=True,
                    collection_duration_ms=_elapsed_ms(start_time),
                )

        self.logger.info("Initializing data structure", prospect=prospect.name, force_refresh=force_refresh)

        now = utc_now()
        skeleton = ProspectDataCache(
            cache_key=create_prospect_cache_key(prospect),
            prospect=prospect.identity(),
            data_quality=DataQuality.LIMITED,
            sources_used=[],
            created_at=now,
            updated_at=now,
            created_by=prospect.user_id,
            expires_at=now + self.record_ttl,
        )

        saved = await self.store.set_cached_prospect_data(prospect, skeleton)

        return CollectionResult(
            data=saved,
            source_tracker=source_tracker,
            from_cache=False,
            collection_duration_ms=_elapsed_ms(start_time),
        )

    async def update_prospect_tool_result(
        self,
        prospect: ProspectIdentifier,
        tool_name: str,
        result: Any,
        ttl_ms: Optional[int] = None
    ) -> bool:
        """
        Store a tool's output in the prospect's cache record.

        Returns False, leaving the record untouched, when no record exists
        or the tool name is not recognised.
        """
        cached = await self.store.get_cached_prospect_data(prospect)
        if not cached:
            self.logger.warning("No cache found for prospect", prospect=prospect.name, tool=tool_name)
            return False

        field = TOOL_FIELD_MAP.get(tool_name)
        if not field:
            self.logger.warning("Unknown tool", tool=tool_name)
            return False

        now = utc_now()
        ttl = timedelta(milliseconds=ttl_ms) if ttl_ms is not None else get_source_ttl(field)

        updated = cached.model_copy(update={
            field: CachedDataSource(result=result, cached_at=now, expires_at=now + ttl),
            "updated_at": now,
        })
        updated.data_quality = calculate_data_quality(updated)

        await self.store.set_cached_prospect_data(prospect, updated)

        self.logger.info(
            "Tool result cached",
            prospect=prospect.name,
            tool=tool_name,
            field=field,
            data_quality=updated.data_quality.value
        )
        return True

    async def run_tools(
        self,
        prospect: ProspectInput,
        tools: Dict[str, ToolFactory],
        timeout_ms: Optional[int] = None
    ) -> CollectionResult:
        """
        Run research tools in parallel and persist their successful results.

        Args:
            prospect: Prospect to research
            tools: Tool name -> zero-argument coroutine factory
            timeout_ms: Per-tool time budget (defaults to the collector's)

        Returns:
            CollectionResult with run/succeeded/failed counts; a tool counts as
            succeeded only when its result was stored
        """
        start_time = time.monotonic()
        timeout_ms = timeout_ms or self.tool_timeout_ms

        collection = await self.collect_prospect_data(prospect)

        results: List[ToolResult] = await asyncio.gather(*[
            run_tool_with_timeout(name, fn, timeout_ms)
            for name, fn in tools.items()
        ])

        succeeded = 0
        for tool_result in results:
            if not tool_result.success:
                self.logger.warning(
                    "Tool failed",
                    prospect=prospect.name,
                    tool=tool_result.name,
                    error=tool_result.error,
                    duration_ms=tool_result.duration_ms
                )
                continue

            if await self.update_prospect_tool_result(prospect, tool_result.name, tool_result.data):
                succeeded += 1

        data = await self.store.get_cached_prospect_data(prospect) or collection.data

        self.logger.info(
            "Tools run",
            prospect=prospect.name,
            tools_run=len(results),
            succeeded=succeeded,
            failed=len(results) - succeeded
        )

        return CollectionResult(
            data=data,
            source_tracker=collection.source_tracker,
            from_cache=False,
            collection_duration_ms=_elapsed_ms(start_time),
            tools_run=len(results),
            tools_succeeded=succeeded,
            tools_failed=len(results) - succeeded,
        )
