"""Test the prospect data collector."""

import os
import sys
import asyncio
import pytest
from datetime import timedelta

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from models import DataQuality, ProspectDataCache, ProspectIdentifier, ProspectInput, utc_now
from services.data_collector import (
    ProspectDataCollector,
    get_data_summary,
    get_prospect_search_queries,
    is_cache_stale,
    run_tool_with_timeout,
)
from services.prospect_cache import ProspectDataCacheStore, create_prospect_cache_key
from utils.cache import CacheManager
from utils.config import CacheConfig


class TestRunToolWithTimeout:
    """Timeout wrapper for research tools."""

    @pytest.mark.asyncio
    async def test_successful_tool(self):
        async def lookup():
            return {"filings": 4}

        result = await run_tool_with_timeout("sec_insider_search", lookup, 1000)

        assert result.success is True
        assert result.data == {"filings": 4}
        assert result.error is None
        assert result.duration_ms >= 0

    @pytest.mark.asyncio
    async def test_slow_tool_times_out(self):
        async def slow():
            await asyncio.sleep(5)
            return "never"

        result = await run_tool_with_timeout("wikidata_search", slow, 50)

        assert result.success is False
        assert result.data is None
        assert "timed out" in result.error
        assert result.error.startswith("wikidata_search")

    @pytest.mark.asyncio
    async def test_failing_tool_reports_error(self):
        async def broken():
            raise RuntimeError("upstream returned 502")

        result = await run_tool_with_timeout("fec_contributions", broken, 1000)

        assert result.success is False
        assert result.error == "upstream returned 502"

    @pytest.mark.asyncio
    async def test_tool_raising_timeout_error_keeps_its_message(self):
        async def upstream():
            raise TimeoutError("upstream read timeout")

        result = await run_tool_with_timeout("sec_insider_search", upstream, 60000)

        assert result.success is False
        assert result.error == "upstream read timeout"


class TestStaleness:
    """Thirty-day staleness check."""

    def _record(self, updated_at):
        return ProspectDataCache(
            cache_key="k",
            prospect=ProspectIdentifier(name="Jane Doe"),
            updated_at=updated_at,
            expires_at=updated_at + timedelta(days=30),
        )

    def test_just_under_thirty_days_is_fresh(self):
        now = utc_now()
        record = self._record(now - timedelta(days=30) + timedelta(seconds=1))
        assert is_cache_stale(record, now=now) is False

    def test_just_over_thirty_days_is_stale(self):
        now = utc_now()
        record = self._record(now - timedelta(days=30) - timedelta(seconds=1))
        assert is_cache_stale(record, now=now) is True


class TestSearchQueries:

    def test_base_queries(self):
        queries = get_prospect_search_queries(ProspectInput(name="Jane Doe"))
        assert len(queries) == 4
        assert all('"Jane Doe"' in q for q in queries)

    def test_address_and_spouse_add_queries(self):
        prospect = ProspectInput(name="Jane Doe", address="1 Main St", spouse_name="John Doe")
        queries = get_prospect_search_queries(prospect)

        assert len(queries) == 6
        assert any('"1 Main St"' in q for q in queries)
        assert any('"John Doe"' in q for q in queries)


class TestProspectDataCollector:
    """Collector behaviour against a local-only store."""

    @pytest.fixture
    def store(self, tmp_path):
        return ProspectDataCacheStore(CacheManager(CacheConfig(directory=str(tmp_path / "cache"))))

    @pytest.fixture
    def collector(self, store):
        return ProspectDataCollector(store, tool_timeout_ms=500)

    @pytest.fixture
    def prospect(self):
        return ProspectInput(name="Jane Doe", city="Austin", state="TX", user_id="user-42")

    @pytest.fixture
    def write_calls(self, store, monkeypatch):
        calls = []
        original = store.set_cached_prospect_data

        async def counting(*args, **kwargs):
            calls.append(args)
            return await original(*args, **kwargs)

        monkeypatch.setattr(store, "set_cached_prospect_data", counting)
        return calls

    @pytest.mark.asyncio
    async def test_first_collect_initializes_record(self, collector, prospect):
        result = await collector.collect_prospect_data(prospect)

        assert result.from_cache is False
        assert result.data.cache_key == create_prospect_cache_key(prospect)
        assert result.data.data_quality == DataQuality.LIMITED
        assert result.data.created_by == "user-42"
        assert result.data.present_sources() == []

    @pytest.mark.asyncio
    async def test_second_collect_is_served_from_cache_without_writing(self, collector, prospect, write_calls):
        first = await collector.collect_prospect_data(prospect)
        second = await collector.collect_prospect_data(prospect)

        assert len(write_calls) == 1
        assert second.from_cache is True
        assert second.data.cache_key == first.data.cache_key
        assert second.data.created_at == first.data.created_at

    @pytest.mark.asyncio
    async def test_force_refresh_writes_new_skeleton(self, collector, prospect, write_calls):
        await collector.collect_prospect_data(prospect)
        await collector.update_prospect_tool_result(prospect, "fec", {"total": 100})

        result = await collector.collect_prospect_data(prospect, force_refresh=True)

        assert result.from_cache is False
        assert result.data.fec_contributions is None
        assert len(write_calls) == 3

    @pytest.mark.asyncio
    async def test_update_without_record_returns_false(self, collector, prospect, store):
        assert await collector.update_prospect_tool_result(prospect, "fec", {"total": 100}) is False
        assert await store.get_cached_prospect_data(prospect) is None

    @pytest.mark.asyncio
    async def test_unknown_tool_leaves_record_unchanged(self, collector, prospect, store):
        await collector.collect_prospect_data(prospect)
        before = await store.get_cached_prospect_data(prospect)

        assert await collector.update_prospect_tool_result(prospect, "astrology_lookup", {"sign": "leo"}) is False

        after = await store.get_cached_prospect_data(prospect)
        assert after.model_dump() == before.model_dump()

    @pytest.mark.asyncio
    async def test_tool_aliases_map_to_same_field(self, collector, prospect, store):
        await collector.collect_prospect_data(prospect)

        assert await collector.update_prospect_tool_result(prospect, "countyAssessor", {"assessed": 1}) is True
        assert await collector.update_prospect_tool_result(prospect, "county_assessor", {"assessed": 2}) is True

        record = await store.get_cached_prospect_data(prospect)
        assert record.county_assessor.result == {"assessed": 2}

    @pytest.mark.asyncio
    async def test_custom_ttl_sets_source_expiry(self, collector, prospect, store):
        await collector.collect_prospect_data(prospect)
        await collector.update_prospect_tool_result(prospect, "searchWeb", [{"title": "profile"}], ttl_ms=3600000)

        source = (await store.get_cached_prospect_data(prospect)).linkup_searches
        assert source.expires_at - source.cached_at == timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_default_ttl_follows_source_type(self, collector, prospect, store):
        await collector.collect_prospect_data(prospect)
        await collector.update_prospect_tool_result(prospect, "property", {"estimate": 750000})

        source = (await store.get_cached_prospect_data(prospect)).property_valuation
        assert source.expires_at - source.cached_at == timedelta(days=7)

    @pytest.mark.asyncio
    async def test_zero_ttl_is_honoured(self, collector, prospect, store):
        await collector.collect_prospect_data(prospect)
        await collector.update_prospect_tool_result(prospect, "wikidata", {"qid": "Q1"}, ttl_ms=0)

        source = (await store.get_cached_prospect_data(prospect)).wikidata
        assert source.expires_at == source.cached_at


    @pytest.mark.asyncio
    async def test_data_quality_tiers_follow_verified_sources(self, collector, prospect, store):
        await collector.collect_prospect_data(prospect)

        steps = [
            ("business_registry_scraper", DataQuality.LIMITED),
            ("secInsider", DataQuality.PARTIAL),
            ("fec", DataQuality.PARTIAL),
            ("countyAssessor", DataQuality.COMPLETE),
            ("propublica", DataQuality.COMPLETE),
        ]
        for tool_name, expected in steps:
            assert await collector.update_prospect_tool_result(prospect, tool_name, {"ok": True}) is True
            record = await store.get_cached_prospect_data(prospect)
            assert record.data_quality == expected, tool_name

    @pytest.mark.asyncio
    async def test_run_tools_persists_successes(self, collector, prospect, store):
        async def sec():
            return {"filings": 2}

        async def fec():
            return {"total": 5000}

        async def broken():
            raise ValueError("bad response")

        async def slow():
            await asyncio.sleep(5)

        result = await collector.run_tools(
            prospect,
            {"sec_insider_search": sec, "fec": fec, "wikidata": broken, "voter": slow},
            timeout_ms=100
        )

        assert result.tools_run == 4
        assert result.tools_succeeded == 2
        assert result.tools_failed == 2
        assert result.data.sec_insider.result == {"filings": 2}
        assert result.data.fec_contributions.result == {"total": 5000}
        assert result.data.wikidata is None
        assert result.data.data_quality == DataQuality.PARTIAL

    @pytest.mark.asyncio
    async def test_run_tools_counts_unmapped_tool_as_failed(self, collector, prospect):
        async def sec():
            return {"filings": 1}

        async def horoscope():
            return {"sign": "leo"}

        result = await collector.run_tools(prospect, {"secInsider": sec, "horoscope": horoscope})

        assert result.tools_run == 2
        assert result.tools_succeeded == 1
        assert result.tools_failed == 1
        assert result.data.sec_insider.result == {"filings": 1}

    @pytest.mark.asyncio
    async def test_summary(self, collector, prospect):
        await collector.collect_prospect_data(prospect)
        await collector.update_prospect_tool_result(prospect, "countyAssessor", {"assessed": 1})
        await collector.update_prospect_tool_result(prospect, "family", {"spouse": "John"})

        result = await collector.collect_prospect_data(prospect)
        summary = get_data_summary(result.data)

        assert summary.has_property_data is True
        assert summary.has_family_data is True
        assert summary.has_sec_data is False
        assert summary.data_quality == "partial"
        assert result.to_dict()["from_cache"] is True
