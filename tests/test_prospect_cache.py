"""Test the prospect data cache store."""

import os
import sys
import pytest
from datetime import timedelta
from unittest.mock import MagicMock

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from models import (
    CachedDataSource,
    DataQuality,
    ProspectDataCache,
    ProspectIdentifier,
    SourceReference,
    utc_now,
)
from services.prospect_cache import (
    PROSPECT_NAMESPACE,
    ProspectDataCacheStore,
    calculate_data_quality,
    create_prospect_cache_key,
    is_source_expired,
    map_cache_to_database,
    map_database_to_cache,
)
from utils.cache import CacheManager
from utils.config import CacheConfig


def _source(result="data", age: timedelta = timedelta(0)) -> CachedDataSource:
    cached_at = utc_now() - age
    return CachedDataSource(result=result, cached_at=cached_at, expires_at=cached_at + timedelta(days=30))


def _record(prospect: ProspectIdentifier, **sources) -> ProspectDataCache:
    now = utc_now()
    return ProspectDataCache(
        cache_key=create_prospect_cache_key(prospect),
        prospect=prospect,
        created_at=now,
        updated_at=now,
        expires_at=now + timedelta(days=30),
        **sources
    )


class TestCacheKey:
    """Cache key normalization."""

    def test_same_identity_same_key(self):
        a = ProspectIdentifier(name="Jane Doe", address="1 Main St", city="Austin", state="TX")
        b = ProspectIdentifier(state="TX", city="Austin", address="1 Main St", name="Jane Doe")
        assert create_prospect_cache_key(a) == create_prospect_cache_key(b)

    def test_case_and_whitespace_are_normalized(self):
        a = ProspectIdentifier(name="Jane Doe", city="Austin", state="tx")
        b = ProspectIdentifier(name="  JANE DOE ", city=" austin", state="TX ")
        assert create_prospect_cache_key(a) == create_prospect_cache_key(b)

    def test_missing_fields_match_empty_fields(self):
        a = ProspectIdentifier(name="Jane Doe")
        b = ProspectIdentifier(name="Jane Doe", address="", city="", state="")
        assert create_prospect_cache_key(a) == create_prospect_cache_key(b)

    def test_different_identity_different_key(self):
        a = ProspectIdentifier(name="Jane Doe", city="Austin")
        b = ProspectIdentifier(name="Jane Doe", city="Dallas")
        assert create_prospect_cache_key(a) != create_prospect_cache_key(b)

    def test_key_is_32_hex_chars(self):
        key = create_prospect_cache_key(ProspectIdentifier(name="Jane Doe"))
        assert len(key) == 32
        int(key, 16)

    def test_blank_name_rejected(self):
        with pytest.raises(ValueError):
            ProspectIdentifier(name="   ")


class TestSourceExpiry:
    """Per-source TTL checks."""

    def test_missing_timestamp_is_expired(self):
        assert is_source_expired(None, "sec_insider") is True

    def test_web_search_expires_after_a_day(self):
        now = utc_now()
        assert is_source_expired(now - timedelta(hours=23), "linkup_searches", now=now) is False
        assert is_source_expired(now - timedelta(hours=25), "linkup_searches", now=now) is True

    def test_unknown_source_uses_full_record_ttl(self):
        now = utc_now()
        assert is_source_expired(now - timedelta(days=29), "something_else", now=now) is False
        assert is_source_expired(now - timedelta(days=31), "something_else", now=now) is True

    def test_accepts_iso_strings(self):
        now = utc_now()
        cached_at = (now - timedelta(days=8)).isoformat()
        assert is_source_expired(cached_at, "property_valuation", now=now) is True


class TestDataQuality:
    """Data quality tiers from verified sources."""

    VERIFIED = ["sec_insider", "fec_contributions", "county_assessor", "propublica_990"]

    @pytest.mark.parametrize("count,expected", [
        (0, DataQuality.LIMITED),
        (1, DataQuality.PARTIAL),
        (2, DataQuality.PARTIAL),
        (3, DataQuality.COMPLETE),
        (4, DataQuality.COMPLETE),
    ])
    def test_verified_source_boundaries(self, count, expected):
        prospect = ProspectIdentifier(name="Jane Doe")
        sources = {field: _source() for field in self.VERIFIED[:count]}
        assert calculate_data_quality(_record(prospect, **sources)) == expected

    def test_unverified_sources_do_not_count(self):
        prospect = ProspectIdentifier(name="Jane Doe")
        record = _record(
            prospect,
            business_registry=_source(),
            voter_registration=_source(),
            wikidata=_source(),
            linkup_searches=_source(result=[]),
        )
        assert calculate_data_quality(record) == DataQuality.LIMITED


class TestProspectDataCacheStore:
    """Store behaviour with the local cache only."""

    @pytest.fixture
    def cache_manager(self, tmp_path):
        return CacheManager(CacheConfig(directory=str(tmp_path / "cache"), ttl=3600))

    @pytest.fixture
    def store(self, cache_manager):
        return ProspectDataCacheStore(cache_manager)

    @pytest.fixture
    def prospect(self):
        return ProspectIdentifier(name="Jane Doe", address="1 Main St", city="Austin", state="TX")

    @pytest.mark.asyncio
    async def test_miss_returns_none(self, store, prospect):
        assert await store.get_cached_prospect_data(prospect) is None

    @pytest.mark.asyncio
    async def test_write_then_read(self, store, prospect):
        saved = await store.set_cached_prospect_data(prospect, {"sec_insider": _source({"filings": 3})})

        loaded = await store.get_cached_prospect_data(prospect)
        assert loaded is not None
        assert loaded.cache_key == create_prospect_cache_key(prospect)
        assert loaded.sec_insider.result == {"filings": 3}
        assert loaded.data_quality == DataQuality.PARTIAL
        assert loaded.updated_at == saved.updated_at

    @pytest.mark.asyncio
    async def test_write_keeps_created_at_and_slides_expiry(self, store, prospect):
        created = utc_now() - timedelta(days=5)
        saved = await store.set_cached_prospect_data(prospect, {"created_at": created})

        assert saved.created_at == created
        assert saved.expires_at - saved.updated_at == timedelta(days=30)

    @pytest.mark.asyncio
    async def test_write_overwrites_whole_document(self, store, prospect):
        await store.set_cached_prospect_data(prospect, {"sec_insider": _source()})
        await store.set_cached_prospect_data(prospect, {"fec_contributions": _source()})

        loaded = await store.get_cached_prospect_data(prospect)
        assert loaded.sec_insider is None
        assert loaded.fec_contributions is not None

    @pytest.mark.asyncio
    async def test_expired_record_is_ignored_and_evicted(self, store, cache_manager, prospect):
        record = _record(prospect)
        record.expires_at = utc_now() - timedelta(seconds=1)
        cache_manager.set(record.cache_key, record.model_dump(mode="json"), ttl=3600, namespace=PROSPECT_NAMESPACE)

        assert await store.get_cached_prospect_data(prospect) is None
        assert cache_manager.get(record.cache_key, PROSPECT_NAMESPACE) is None

    @pytest.mark.asyncio
    async def test_update_cached_source_merges_sources_by_url(self, store, prospect):
        sec = SourceReference(name="SEC EDGAR", url="https://sec.gov/a", confidence="high")
        fec = SourceReference(name="FEC.gov", url="https://fec.gov/b", confidence="high")

        await store.update_cached_source(prospect, "sec_insider", {"filings": 1}, [sec])
        record = await store.update_cached_source(prospect, "fec_contributions", {"total": 500}, [sec, fec])

        assert [s.url for s in record.sources_used] == ["https://sec.gov/a", "https://fec.gov/b"]
        assert record.sec_insider.result == {"filings": 1}
        assert record.fec_contributions.result == {"total": 500}
        assert record.data_quality == DataQuality.PARTIAL

    @pytest.mark.asyncio
    async def test_update_cached_source_rejects_unknown_field(self, store, prospect):
        with pytest.raises(ValueError):
            await store.update_cached_source(prospect, "horoscope", {})

    @pytest.mark.asyncio
    async def test_get_cached_source_respects_source_ttl(self, store, prospect):
        await store.set_cached_prospect_data(prospect, {
            "wikidata": _source({"qid": "Q1"}),
            "linkup_searches": _source([{"title": "old"}], age=timedelta(days=2)),
        })

        assert await store.get_cached_source(prospect, "wikidata") == {"qid": "Q1"}
        assert await store.get_cached_source(prospect, "linkup_searches") is None
        assert await store.get_cached_source(prospect, "sec_insider") is None

    @pytest.mark.asyncio
    async def test_clear_prospect_cache(self, store, prospect):
        await store.set_cached_prospect_data(prospect, {})
        await store.clear_prospect_cache(prospect)
        assert await store.get_cached_prospect_data(prospect) is None

    @pytest.mark.asyncio
    async def test_get_or_create_is_stable(self, store, prospect):
        first = await store.get_or_create_prospect_cache(prospect, created_by="user-1")
        second = await store.get_or_create_prospect_cache(prospect)

        assert first.data_quality == DataQuality.LIMITED
        assert second.created_at == first.created_at
        assert second.created_by == "user-1"

    @pytest.mark.asyncio
    async def test_cleanup_removes_expired_records(self, store, cache_manager, prospect):
        await store.set_cached_prospect_data(prospect, {})

        stale = _record(ProspectIdentifier(name="John Roe"))
        stale.expires_at = utc_now() - timedelta(days=1)
        cache_manager.set(stale.cache_key, stale.model_dump(mode="json"), ttl=3600, namespace=PROSPECT_NAMESPACE)

        assert await store.cleanup_expired() == 1
        assert await store.get_cached_prospect_data(prospect) is not None

    def test_cache_stats(self, store):
        stats = store.get_cache_stats()
        assert stats["supabase_available"] is False
        assert stats["local_entries"] == 0


class TestSupabaseBackedStore:
    """Store behaviour with a mocked Supabase client."""

    @pytest.fixture
    def prospect(self):
        return ProspectIdentifier(name="Jane Doe", city="Austin", state="TX")

    @pytest.fixture
    def supabase(self):
        return MagicMock()

    @pytest.fixture
    def store(self, tmp_path, supabase):
        cache_manager = CacheManager(CacheConfig(directory=str(tmp_path / "cache")))
        return ProspectDataCacheStore(cache_manager, supabase_client=supabase)

    @pytest.mark.asyncio
    async def test_reads_database_row(self, store, supabase, prospect):
        now = utc_now()
        row = {
            "id": "7f3c",
            "cache_key": create_prospect_cache_key(prospect),
            "prospect_name": "Jane Doe",
            "prospect_city": "Austin",
            "prospect_state": "TX",
            "fec_data": {"total": 2500},
            "fec_cached_at": now.isoformat(),
            "data_quality": "partial",
            "sources_used": [],
            "created_at": now.isoformat(),
            "updated_at": now.isoformat(),
            "expires_at": (now + timedelta(days=30)).isoformat(),
        }
        query = supabase.table.return_value.select.return_value.eq.return_value.limit.return_value
        query.execute.return_value = MagicMock(data=[row])

        record = await store.get_cached_prospect_data(prospect)

        supabase.table.assert_called_with("prospect_data_cache")
        assert record.id == "7f3c"
        assert record.fec_contributions.result == {"total": 2500}
        assert record.fec_contributions.expires_at == record.fec_contributions.cached_at + timedelta(days=30)
        assert record.data_quality == DataQuality.PARTIAL

    @pytest.mark.asyncio
    async def test_write_upserts_on_cache_key(self, store, supabase, prospect):
        await store.set_cached_prospect_data(prospect, {"sec_insider": _source({"filings": 2})})

        upsert = supabase.table.return_value.upsert
        row = upsert.call_args.args[0]
        assert upsert.call_args.kwargs == {"on_conflict": "cache_key"}
        assert row["prospect_name"] == "Jane Doe"
        assert row["sec_insider_data"] == {"filings": 2}
        assert row["sec_cached_at"] is not None
        assert row["fec_data"] is None
        assert row["data_quality"] == "partial"

    @pytest.mark.asyncio
    async def test_database_errors_fall_back_to_local_cache(self, store, supabase, prospect):
        supabase.table.side_effect = Exception("connection refused")

        saved = await store.set_cached_prospect_data(prospect, {"wikidata": _source({"qid": "Q42"})})
        loaded = await store.get_cached_prospect_data(prospect)

        assert saved.wikidata.result == {"qid": "Q42"}
        assert loaded.wikidata.result == {"qid": "Q42"}

    def test_row_mapping_preserves_sources(self, prospect):
        record = _record(prospect, county_assessor=_source({"assessed": 950000}))
        record.romy_score = 31

        restored = map_database_to_cache(map_cache_to_database(record))

        assert restored.county_assessor.result == {"assessed": 950000}
        assert restored.romy_score == 31
        assert restored.prospect.city == "Austin"
