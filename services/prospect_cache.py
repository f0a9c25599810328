"""Prospect data cache.

Keeps one research document per prospect identity so the same prospect
searched twice produces the same core data. Records are stored in the
hosted database (Supabase table ``prospect_data_cache``) when it is
configured, and always in the local disk cache as a fallback.

Writes overwrite the whole document; there is no locking, so concurrent
writers to the same key resolve as last-write-wins.
"""

import asyncio
import hashlib
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Union

import structlog
from pydantic import TypeAdapter

from models import (
    CachedDataSource,
    DataQuality,
    ProspectDataCache,
    ProspectIdentifier,
    SourceReference,
    SOURCE_FIELDS,
    ensure_utc,
    utc_now,
)
from utils.cache import CacheManager
from utils.config import Config, SupabaseConfig
from utils.logging_config import get_logger, log_api_response

response_logger = get_logger(__name__ + ".responses")

PROSPECT_NAMESPACE = "prospect"

# Per-source freshness windows
CACHE_TTL: Dict[str, timedelta] = {
    # Official records
    "sec_insider": timedelta(days=30),
    "fec_contributions": timedelta(days=30),
    "propublica_990": timedelta(days=30),
    "county_assessor": timedelta(days=30),

    "business_registry": timedelta(days=14),
    "property_valuation": timedelta(days=7),
    "voter_registration": timedelta(days=14),

    # Biographical data
    "wikidata": timedelta(days=14),
    "family_discovery": timedelta(days=14),

    "linkup_searches": timedelta(hours=24),
    "revenue_estimate": timedelta(days=7),

    # Whole record
    "full_cache": timedelta(days=30),
}

# Source field -> (data column, cached_at column)
SOURCE_COLUMNS: Dict[str, tuple] = {
    "sec_insider": ("sec_insider_data", "sec_cached_at"),
    "fec_contributions": ("fec_data", "fec_cached_at"),
    "propublica_990": ("propublica_data", "propublica_cached_at"),
    "property_valuation": ("property_data", "property_cached_at"),
    "county_assessor": ("county_assessor_data", "county_assessor_cached_at"),
    "business_registry": ("business_registry_data", "business_registry_cached_at"),
    "voter_registration": ("voter_data", "voter_cached_at"),
    "family_discovery": ("family_data", "family_cached_at"),
    "wikidata": ("wikidata_data", "wikidata_cached_at"),
    "linkup_searches": ("linkup_data", "linkup_cached_at"),
    "revenue_estimate": ("revenue_estimate_data", "revenue_estimate_cached_at"),
}

COMPUTED_COLUMNS = (
    "romy_score",
    "romy_score_breakdown",
    "net_worth_low",
    "net_worth_high",
    "net_worth_methodology",
    "giving_capacity_low",
    "giving_capacity_high",
)

_datetime_adapter = TypeAdapter(datetime)


def _parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    if value is None or value == "":
        return None
    return ensure_utc(_datetime_adapter.validate_python(value))


def create_prospect_cache_key(prospect: ProspectIdentifier) -> str:
    """
    Generate a consistent cache key from a prospect identifier.

    Name, address and city are lowercased, state is uppercased, all are
    trimmed; missing fields contribute empty strings.
    """
    normalized = "|".join([
        prospect.name.lower().strip(),
        (prospect.address or "").lower().strip(),
        (prospect.city or "").lower().strip(),
        (prospect.state or "").upper().strip(),
    ])

    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:32]


def get_source_ttl(source_type: str) -> timedelta:
    return CACHE_TTL.get(source_type, CACHE_TTL["full_cache"])


def is_source_expired(
    cached_at: Union[str, datetime, None],
    source_type: str,
    now: Optional[datetime] = None
) -> bool:
    """Check whether a cached source is past its TTL."""
    cached = _parse_timestamp(cached_at)
    if cached is None:
        return True

    now = ensure_utc(now) if now else utc_now()
    return now > cached + get_source_ttl(source_type)


def calculate_data_quality(record: ProspectDataCache) -> DataQuality:
    """Tier a record by how many verified official-record sources it holds."""
    verified_sources = record.verified_source_count()

    if verified_sources >= 3:
        return DataQuality.COMPLETE
    if verified_sources >= 1:
        return DataQuality.PARTIAL
    return DataQuality.LIMITED


def merge_sources(
    existing: List[SourceReference],
    new_sources: List[SourceReference]
) -> List[SourceReference]:
    """Append sources whose URL is not already present."""
    merged = list(existing)
    for source in new_sources:
        if not any(s.url == source.url for s in merged):
            merged.append(source)
    return merged


# ============================================================================
# DATABASE MAPPERS
# ============================================================================

def map_database_to_cache(row: Dict[str, Any]) -> ProspectDataCache:
    """Convert a flat ``prospect_data_cache`` row to a cache record."""
    record: Dict[str, Any] = {
        "id": str(row["id"]) if row.get("id") is not None else None,
        "cache_key": row["cache_key"],
        "prospect": {
            "name": row["prospect_name"],
            "address": row.get("prospect_address"),
            "city": row.get("prospect_city"),
            "state": row.get("prospect_state"),
        },
        "data_quality": row.get("data_quality") or DataQuality.LIMITED,
        "sources_used": row.get("sources_used") or [],
        "created_by": row.get("created_by"),
        "expires_at": row["expires_at"],
    }

    for field, (data_column, cached_column) in SOURCE_COLUMNS.items():
        data = row.get(data_column)
        cached_at = _parse_timestamp(row.get(cached_column))
        if data is None or cached_at is None:
            continue
        record[field] = {
            "result": data,
            "cached_at": cached_at,
            "expires_at": cached_at + get_source_ttl(field),
        }

    for column in COMPUTED_COLUMNS:
        record[column] = row.get(column)

    for column in ("created_at", "updated_at"):
        if row.get(column):
            record[column] = row[column]

    return ProspectDataCache.model_validate(record)


def map_cache_to_database(cache: ProspectDataCache) -> Dict[str, Any]:
    """Flatten a cache record into ``prospect_data_cache`` columns."""
    dumped = cache.model_dump(mode="json")

    row: Dict[str, Any] = {
        "cache_key": cache.cache_key,
        "prospect_name": cache.prospect.name,
        "prospect_address": cache.prospect.address,
        "prospect_city": cache.prospect.city,
        "prospect_state": cache.prospect.state,
    }

    for field, (data_column, cached_column) in SOURCE_COLUMNS.items():
        source = dumped.get(field)
        row[data_column] = source["result"] if source else None
        row[cached_column] = source["cached_at"] if source else None

    for column in COMPUTED_COLUMNS:
        row[column] = dumped.get(column)

    row.update({
        "data_quality": dumped["data_quality"],
        "sources_used": dumped["sources_used"],
        "created_at": dumped["created_at"],
        "updated_at": dumped["updated_at"],
        "created_by": cache.created_by,
        "expires_at": dumped["expires_at"],
    })

    return row


def get_supabase_client(config: SupabaseConfig):
    """Create a Supabase client, or None when the database is not configured."""
    if not config.is_configured:
        return None

    from supabase import create_client
    return create_client(config.url, config.service_role_key)


# ============================================================================
# CACHE STORE
# ============================================================================

class ProspectDataCacheStore:
    """
    Key-value store of prospect research records.

    Reads try the hosted database first and fall back to the local cache;
    writes go to the local cache and are upserted to the database when it
    is available. Database errors are logged, never raised.
    """

    def __init__(
        self,
        cache_manager: CacheManager,
        supabase_client: Any = None,
        table: str = "prospect_data_cache",
        record_ttl: timedelta = CACHE_TTL["full_cache"]
    ):
        self.cache_manager = cache_manager
        self.supabase = supabase_client
        self.table = table
        self.record_ttl = record_ttl
        self.logger = structlog.get_logger(__name__).bind(component="prospect_cache")

        self.logger.info(
            "Prospect cache store initialized",
            supabase_available=self.is_supabase_cache_available(),
            table=table,
            record_ttl_days=record_ttl.days
        )

    @classmethod
    def from_config(cls, config: Config) -> "ProspectDataCacheStore":
        return cls(
            cache_manager=CacheManager(config.cache),
            supabase_client=get_supabase_client(config.supabase),
            table=config.supabase.table,
            record_ttl=timedelta(days=config.collector.cache_ttl_days),
        )

    def is_supabase_cache_available(self) -> bool:
        return self.supabase is not None

    async def _execute(self, query) -> Any:
        # supabase-py queries are blocking
        return await asyncio.to_thread(query.execute)

    async def get_cached_prospect_data(
        self,
        prospect: ProspectIdentifier
    ) -> Optional[ProspectDataCache]:
        """Read the latest unexpired record for a prospect, or None."""
        cache_key = create_prospect_cache_key(prospect)
        now = utc_now()

        if self.supabase is not None:
            try:
                response = await self._execute(
                    self.supabase.table(self.table)
                    .select("*")
                    .eq("cache_key", cache_key)
                    .limit(1)
                )
                rows = response.data or []
                log_api_response(response_logger, "supabase select", rows)

                if rows:
                    record = map_database_to_cache(rows[0])
                    if record.expires_at > now:
                        self.logger.debug("Database cache hit", cache_key=cache_key)
                        return record
            except Exception as e:
                self.logger.error("Supabase fetch error", cache_key=cache_key, error=str(e))

        cached = self.cache_manager.get(cache_key, PROSPECT_NAMESPACE)
        if cached:
            try:
                record = ProspectDataCache.model_validate(cached)
            except ValueError as e:
                self.logger.warning("Discarding unreadable local record", cache_key=cache_key, error=str(e))
                self.cache_manager.delete(cache_key, PROSPECT_NAMESPACE)
                return None

            if record.expires_at > now:
                self.logger.debug("Local cache hit", cache_key=cache_key)
                return record

            self.cache_manager.delete(cache_key, PROSPECT_NAMESPACE)

        return None

    async def set_cached_prospect_data(
        self,
        prospect: ProspectIdentifier,
        data: Union[ProspectDataCache, Dict[str, Any]]
    ) -> ProspectDataCache:
        """
        Overwrite the record for a prospect.

        Key, identity, data quality, ``updated_at`` and ``expires_at`` are
        always recomputed; ``created_at`` is kept when present.
        """
        cache_key = create_prospect_cache_key(prospect)
        now = utc_now()

        fields = data.model_dump() if isinstance(data, ProspectDataCache) else dict(data)
        fields.update({
            "cache_key": cache_key,
            "prospect": prospect.identity(),
            "sources_used": fields.get("sources_used") or [],
            "created_at": fields.get("created_at") or now,
            "updated_at": now,
            "expires_at": now + self.record_ttl,
        })

        record = ProspectDataCache.model_validate(fields)
        record.data_quality = calculate_data_quality(record)

        self.cache_manager.set(
            cache_key,
            record.model_dump(mode="json"),
            ttl=int(self.record_ttl.total_seconds()),
            namespace=PROSPECT_NAMESPACE
        )

        if self.supabase is not None:
            try:
                await self._execute(
                    self.supabase.table(self.table)
                    .upsert(map_cache_to_database(record), on_conflict="cache_key")
                )
            except Exception as e:
                self.logger.error("Supabase save error", cache_key=cache_key, error=str(e))

        self.logger.debug(
            "Prospect record saved",
            cache_key=cache_key,
            data_quality=record.data_quality.value,
            sources=record.present_sources()
        )
        return record

    async def update_cached_source(
        self,
        prospect: ProspectIdentifier,
        source_key: str,
        data: Any,
        sources: Optional[List[SourceReference]] = None
    ) -> ProspectDataCache:
        """Replace one source document, merging its sources into ``sources_used``."""
        if source_key not in SOURCE_FIELDS:
            raise ValueError(f"Unknown source field: {source_key}")

        existing = await self.get_cached_prospect_data(prospect)
        now = utc_now()

        fields = existing.model_dump() if existing else {}
        fields[source_key] = CachedDataSource(
            result=data,
            cached_at=now,
            expires_at=now + get_source_ttl(source_key),
            sources=sources,
        )

        if sources:
            existing_sources = existing.sources_used if existing else []
            fields["sources_used"] = merge_sources(existing_sources, sources)

        return await self.set_cached_prospect_data(prospect, fields)

    async def get_cached_source(
        self,
        prospect: ProspectIdentifier,
        source_key: str
    ) -> Optional[Any]:
        """Get one source's result if it is cached and still fresh."""
        cached = await self.get_cached_prospect_data(prospect)
        if not cached:
            return None

        source = cached.get_source(source_key)
        if source is None or is_source_expired(source.cached_at, source_key):
            return None

        return source.result

    async def clear_prospect_cache(self, prospect: ProspectIdentifier) -> None:
        """Delete a prospect's record from both stores."""
        cache_key = create_prospect_cache_key(prospect)
        self.cache_manager.delete(cache_key, PROSPECT_NAMESPACE)

        if self.supabase is not None:
            try:
                await self._execute(
                    self.supabase.table(self.table)
                    .delete()
                    .eq("cache_key", cache_key)
                )
            except Exception as e:
                self.logger.error("Supabase delete error", cache_key=cache_key, error=str(e))

        self.logger.info("Prospect cache cleared", cache_key=cache_key)

    async def get_or_create_prospect_cache(
        self,
        prospect: ProspectIdentifier,
        created_by: Optional[str] = None
    ) -> ProspectDataCache:
        existing = await self.get_cached_prospect_data(prospect)
        if existing:
            return existing

        now = utc_now()
        skeleton = ProspectDataCache(
            cache_key=create_prospect_cache_key(prospect),
            prospect=prospect.identity(),
            data_quality=DataQuality.LIMITED,
            sources_used=[],
            created_at=now,
            updated_at=now,
            created_by=created_by,
            expires_at=now + self.record_ttl,
        )
        return await self.set_cached_prospect_data(prospect, skeleton)

    async def cleanup_expired(self) -> int:
        """Delete expired records from both stores; returns how many were removed."""
        now = utc_now()
        removed = self.cache_manager.purge_expired(PROSPECT_NAMESPACE)

        for cache_key, value in list(self.cache_manager.items(PROSPECT_NAMESPACE)):
            expires_at = _parse_timestamp((value or {}).get("expires_at"))
            if expires_at is None or expires_at <= now:
                self.cache_manager.delete(cache_key, PROSPECT_NAMESPACE)
                removed += 1

        if self.supabase is not None:
            try:
                response = await self._execute(
                    self.supabase.table(self.table)
                    .delete()
                    .lt("expires_at", now.isoformat())
                )
                removed += len(response.data or [])
            except Exception as e:
                self.logger.error("Supabase cleanup error", error=str(e))

        self.logger.info("Expired prospect records removed", count=removed)
        return removed

    def get_cache_stats(self) -> Dict[str, Any]:
        return {
            "local_entries": self.cache_manager.count(PROSPECT_NAMESPACE),
            "supabase_available": self.is_supabase_cache_available(),
            "local_cache": self.cache_manager.get_stats(),
        }
