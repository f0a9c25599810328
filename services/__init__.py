"""Prospect cache, data collection and source tracking services."""

from .prospect_cache import ProspectDataCacheStore, create_prospect_cache_key
from .data_collector import ProspectDataCollector, run_tool_with_timeout, is_cache_stale
from .source_tracker import SourceTracker, create_source_tracker

__all__ = [
    "ProspectDataCacheStore",
    "create_prospect_cache_key",
    "ProspectDataCollector",
    "run_tool_with_timeout",
    "is_cache_stale",
    "SourceTracker",
    "create_source_tracker"
]
