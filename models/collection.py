"""Result models for prospect data collection."""

from dataclasses import dataclass
from typing import Optional, Any, TYPE_CHECKING
from pydantic import BaseModel, Field

from .prospect import ProspectDataCache

if TYPE_CHECKING:
    from services.source_tracker import SourceTracker


class ToolResult(BaseModel):
    """Tagged outcome of one research tool invocation."""

    name: str = Field(..., description="Tool name")
    success: bool = Field(..., description="Whether the tool returned before the timeout without raising")
    data: Any = Field(None, description="Tool output on success")
    error: Optional[str] = Field(None, description="Error message on failure")
    duration_ms: int = Field(default=0, description="Wall time spent on the tool")


class DataSummary(BaseModel):
    """What research is available for a prospect."""

    has_sec_data: bool
    has_fec_data: bool
    has_property_data: bool
    has_business_data: bool
    has_wikidata_data: bool
    has_family_data: bool
    total_sources: int
    data_quality: str


@dataclass
class CollectionResult:
    """Outcome of a collection request."""

    data: ProspectDataCache
    source_tracker: "SourceTracker"
    from_cache: bool
    collection_duration_ms: int
    tools_run: int = 0
    tools_succeeded: int = 0
    tools_failed: int = 0

    def to_dict(self) -> dict:
        return {
            "data": self.data.model_dump(mode="json"),
            "from_cache": self.from_cache,
            "collection_duration_ms": self.collection_duration_ms,
            "tools_run": self.tools_run,
            "tools_succeeded": self.tools_succeeded,
            "tools_failed": self.tools_failed,
            "sources": [s.model_dump(mode="json") for s in self.source_tracker.get_all_sources()],
        }
