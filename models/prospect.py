"""Prospect identity and cached research data models."""

from typing import List, Optional, Any
from datetime import datetime, timezone
from enum import Enum
from pydantic import BaseModel, Field, field_validator


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes (e.g. from database rows) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class DataQuality(str, Enum):
    """Coarse quality tier of a cached prospect record."""

    LIMITED = "limited"
    PARTIAL = "partial"
    COMPLETE = "complete"


class SourceReference(BaseModel):
    """A source backing one or more research claims."""

    name: str = Field(..., description="Source name (e.g. 'SEC EDGAR')")
    url: str = Field(default="", description="Source URL")
    confidence: str = Field(default="low", description="high, medium or low")
    retrieved_at: Optional[datetime] = Field(None, description="When the source was retrieved")
    data_type: Optional[str] = Field(None, description="official_record, web_search, api_response, estimate")


class CachedDataSource(BaseModel):
    """A single tool result wrapped with its cache timestamps."""

    result: Any = Field(None, description="Raw tool output")
    cached_at: datetime = Field(..., description="When the result was cached")
    expires_at: datetime = Field(..., description="When the result goes stale")
    sources: Optional[List[SourceReference]] = Field(None, description="Sources for this result")

    @field_validator("cached_at", "expires_at")
    @classmethod
    def as_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class ProspectIdentifier(BaseModel):
    """Identity fields used to derive a prospect's cache key."""

    name: str = Field(..., description="Full name of the prospect")
    address: Optional[str] = Field(None, description="Street address")
    city: Optional[str] = Field(None, description="City")
    state: Optional[str] = Field(None, description="State (two-letter code preferred)")

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Prospect name is required")
        return v

    def identity(self) -> "ProspectIdentifier":
        """Strip any extra fields down to the identity used for caching."""
        return ProspectIdentifier(
            name=self.name,
            address=self.address,
            city=self.city,
            state=self.state,
        )


class ProspectInput(ProspectIdentifier):
    """Prospect identity plus context for a collection request."""

    spouse_name: Optional[str] = Field(None, description="Spouse or partner name")
    organization_name: Optional[str] = Field(None, description="Requesting nonprofit")
    user_id: Optional[str] = Field(None, description="User who requested the research")


# Source document fields in display order
SOURCE_FIELDS = (
    "sec_insider",
    "fec_contributions",
    "propublica_990",
    "property_valuation",
    "county_assessor",
    "business_registry",
    "voter_registration",
    "family_discovery",
    "wikidata",
    "linkup_searches",
    "revenue_estimate",
)

# Official-record fields that count towards the data quality tier
VERIFIED_SOURCE_FIELDS = (
    "sec_insider",
    "fec_contributions",
    "county_assessor",
    "propublica_990",
)


class ProspectDataCache(BaseModel):
    """One cached research document per prospect identity."""

    id: Optional[str] = None
    cache_key: str = Field(..., description="Normalized identity hash")
    prospect: ProspectIdentifier

    # Cached tool results
    sec_insider: Optional[CachedDataSource] = None
    fec_contributions: Optional[CachedDataSource] = None
    propublica_990: Optional[CachedDataSource] = None
    property_valuation: Optional[CachedDataSource] = None
    county_assessor: Optional[CachedDataSource] = None
    business_registry: Optional[CachedDataSource] = None
    voter_registration: Optional[CachedDataSource] = None
    family_discovery: Optional[CachedDataSource] = None
    wikidata: Optional[CachedDataSource] = None
    linkup_searches: Optional[CachedDataSource] = None
    revenue_estimate: Optional[CachedDataSource] = None

    # Computed data
    romy_score: Optional[int] = None
    romy_score_breakdown: Optional[Any] = None
    net_worth_low: Optional[int] = None
    net_worth_high: Optional[int] = None
    net_worth_methodology: Optional[str] = None
    giving_capacity_low: Optional[int] = None
    giving_capacity_high: Optional[int] = None
    data_quality: DataQuality = DataQuality.LIMITED

    sources_used: List[SourceReference] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    created_by: Optional[str] = None
    expires_at: datetime

    @field_validator("created_at", "updated_at", "expires_at")
    @classmethod
    def as_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    def get_source(self, field: str) -> Optional[CachedDataSource]:
        """Get a cached source document by field name."""
        if field not in SOURCE_FIELDS:
            raise ValueError(f"Unknown source field: {field}")
        return getattr(self, field)

    def present_sources(self) -> List[str]:
        """Names of the source fields that hold data."""
        return [field for field in SOURCE_FIELDS if getattr(self, field) is not None]

    def verified_source_count(self) -> int:
        return sum(1 for field in VERIFIED_SOURCE_FIELDS if getattr(self, field) is not None)
