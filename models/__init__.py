"""Data models for the prospect data service."""

from .prospect import (
    DataQuality,
    SourceReference,
    CachedDataSource,
    ProspectIdentifier,
    ProspectInput,
    ProspectDataCache,
    SOURCE_FIELDS,
    VERIFIED_SOURCE_FIELDS,
    utc_now,
    ensure_utc,
)
from .collection import ToolResult, DataSummary, CollectionResult

__all__ = [
    "DataQuality",
    "SourceReference",
    "CachedDataSource",
    "ProspectIdentifier",
    "ProspectInput",
    "ProspectDataCache",
    "SOURCE_FIELDS",
    "VERIFIED_SOURCE_FIELDS",
    "utc_now",
    "ensure_utc",
    "ToolResult",
    "DataSummary",
    "CollectionResult",
]
