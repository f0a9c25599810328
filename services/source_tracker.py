"""Source tracking for prospect research reports.

Tracks the sources behind every claim in a report so each claim can be
marked [Verified], [Estimated], [Unverified] or [Corroborated] and each
section can carry a confidence level. A tracker lives for a single
collection call and is never persisted.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

from models import SourceReference, utc_now


# Confidence ranking per source name; unknown sources rank 30
SOURCE_CONFIDENCE_RANK: Dict[str, int] = {
    # Official government records
    "SEC EDGAR": 100,
    "SEC.gov": 100,
    "FEC.gov": 100,
    "FEC": 100,
    "County Assessor": 95,
    "County Tax Records": 95,
    "State Secretary of State": 90,
    "Florida Sunbiz": 90,
    "California bizfile": 90,
    "Delaware ICIS": 90,
    "New York DOS": 90,
    "Voter Registration": 90,

    # IRS data via intermediaries
    "ProPublica 990": 85,
    "ProPublica Nonprofit Explorer": 85,
    "IRS Form 990": 85,

    # Structured data APIs
    "Wikidata": 70,
    "OpenCorporates": 75,
    "GLEIF LEI": 80,

    # Web sources
    "Zillow": 60,
    "Redfin": 60,
    "Realtor.com": 60,
    "LinkedIn": 55,
    "Company Website": 50,
    "News Article": 45,
    "Web Search": 40,
    "Linkup": 40,

    # Estimates
    "Calculated Estimate": 30,
    "Industry Benchmark": 35,
    "Inferred": 20,
}

DEFAULT_SOURCE_RANK = 30


@dataclass
class SourcedClaim:
    """A single report claim with its supporting sources."""

    claim: str
    value: Union[str, int, float]
    sources: List[SourceReference] = field(default_factory=list)
    is_estimated: bool = False
    is_verified: bool = False
    methodology: Optional[str] = None
    confidence_level: str = "very_low"


@dataclass
class SectionConfidence:
    section: str
    claim_count: int
    verified_count: int
    estimated_count: int
    unverified_count: int
    overall_confidence: str
    sources: List[SourceReference]


def get_source_rank(source_name: str) -> int:
    """Rank a source by exact name, then by case-insensitive partial match."""
    if source_name in SOURCE_CONFIDENCE_RANK:
        return SOURCE_CONFIDENCE_RANK[source_name]

    lower_name = source_name.lower()
    for key, rank in SOURCE_CONFIDENCE_RANK.items():
        if key.lower() in lower_name:
            return rank

    return DEFAULT_SOURCE_RANK


def _dedupe_by_url(sources: List[SourceReference]) -> List[SourceReference]:
    unique: List[SourceReference] = []
    for source in sources:
        if not any(s.url == source.url for s in unique):
            unique.append(source)
    return unique


class SourceTracker:
    """Accumulates sourced claims per report section."""

    def __init__(self):
        self._claims: Dict[str, List[SourcedClaim]] = {}
        self._all_sources: List[SourceReference] = []

    def add_verified_claim(
        self,
        section: str,
        claim: str,
        value: Union[str, int, float],
        source: SourceReference
    ) -> None:
        """Add a claim backed by an official source."""
        self.add_claim(section, SourcedClaim(
            claim=claim,
            value=value,
            sources=[source],
            is_verified=True,
            confidence_level=self._get_confidence_level([source]),
        ))

    def add_estimated_claim(
        self,
        section: str,
        claim: str,
        value: Union[str, int, float],
        methodology: str,
        sources: Optional[List[SourceReference]] = None
    ) -> None:
        """Add an estimated claim with its methodology."""
        self.add_claim(section, SourcedClaim(
            claim=claim,
            value=value,
            sources=sources or [],
            is_estimated=True,
            methodology=methodology,
            confidence_level="low",
        ))

    def add_unverified_claim(
        self,
        section: str,
        claim: str,
        value: Union[str, int, float],
        sources: List[SourceReference]
    ) -> None:
        """Add a claim found through web search."""
        self.add_claim(section, SourcedClaim(
            claim=claim,
            value=value,
            sources=sources,
            confidence_level=self._get_confidence_level(sources),
        ))

    def add_claim(self, section: str, claim: SourcedClaim) -> None:
        self._claims.setdefault(section, []).append(claim)
        self._all_sources = _dedupe_by_url(self._all_sources + claim.sources)

    def get_claims(self, section: str) -> List[SourcedClaim]:
        return list(self._claims.get(section, []))

    def get_sections(self) -> List[str]:
        return list(self._claims.keys())

    def get_all_sources(self) -> List[SourceReference]:
        return list(self._all_sources)

    def _all_claims(self) -> List[SourcedClaim]:
        return [claim for claims in self._claims.values() for claim in claims]

    def get_section_confidence(self, section: str) -> SectionConfidence:
        """Calculate the confidence level for a report section."""
        claims = self.get_claims(section)

        verified_count = sum(1 for c in claims if c.is_verified)
        estimated_count = sum(1 for c in claims if c.is_estimated)
        unverified_count = sum(1 for c in claims if not c.is_verified and not c.is_estimated)

        section_sources = _dedupe_by_url([s for c in claims for s in c.sources])

        if not claims:
            overall = "LOW"
        elif verified_count / len(claims) >= 0.7:
            overall = "HIGH"
        elif verified_count / len(claims) >= 0.3 or estimated_count / len(claims) <= 0.5:
            overall = "MEDIUM"
        else:
            overall = "LOW"

        return SectionConfidence(
            section=section,
            claim_count=len(claims),
            verified_count=verified_count,
            estimated_count=estimated_count,
            unverified_count=unverified_count,
            overall_confidence=overall,
            sources=section_sources,
        )

    def format_claim(self, claim: SourcedClaim) -> str:
        """Format a claim for report output."""
        if claim.is_verified:
            marker = "[Verified]"
        elif claim.is_estimated:
            marker = f"[Estimated - {claim.methodology or 'See methodology'}]"
        elif claim.confidence_level in ("low", "very_low"):
            marker = "[Unverified]"
        else:
            marker = "[Corroborated]"

        source_names = ", ".join(s.name for s in claim.sources)
        source_ref = f"[Source: {source_names}]" if source_names else ""

        return f"{claim.claim}: {claim.value} {marker} {source_ref}".strip()

    def format_sources_section(self) -> str:
        """Render the Sources and Research Methodology section as markdown."""
        lines = [
            "## Sources and Research Methodology",
            "",
            "### Primary Sources Verified",
        ]

        high = [s for s in self._all_sources if get_source_rank(s.name) >= 80]
        medium = [s for s in self._all_sources if 50 <= get_source_rank(s.name) < 80]
        low = [s for s in self._all_sources if get_source_rank(s.name) < 50]

        for source in high:
            lines.append(f"- **{source.name}**: Official government or institutional record")
            if source.url:
                lines.append(f"  - URL: {source.url}")

        if medium:
            lines.append("")
            lines.append("### Secondary Sources (Corroborated)")
            for source in medium:
                lines.append(f"- **{source.name}**")
                if source.url:
                    lines.append(f"  - URL: {source.url}")

        if low:
            lines.append("")
            lines.append("### Web Sources (Lower Confidence)")
            for source in low:
                lines.append(f"- {source.name}")

        lines.append("")
        lines.append("### Information Corroboration")
        for section in self.get_sections():
            confidence = self.get_section_confidence(section)
            if confidence.claim_count > 0:
                lines.append(
                    f"- **{section}**: {confidence.verified_count}/{confidence.claim_count} "
                    f"claims verified ({confidence.overall_confidence} confidence)"
                )

        lines.append("")
        lines.append(f"### Research Confidence Level: {self.get_overall_confidence()}")
        lines.append("")
        lines.append(self._get_confidence_explanation())

        return "\n".join(lines)

    def get_overall_confidence(self) -> str:
        """HIGH, MEDIUM or LOW for the whole report."""
        claims = self._all_claims()
        if not claims:
            return "LOW"

        ratio = sum(1 for c in claims if c.is_verified) / len(claims)
        if ratio >= 0.6:
            return "HIGH"
        if ratio >= 0.3:
            return "MEDIUM"
        return "LOW"

    def _get_confidence_explanation(self) -> str:
        confidence = self.get_overall_confidence()
        claims = self._all_claims()
        verified_count = sum(1 for c in claims if c.is_verified)
        estimated_count = sum(1 for c in claims if c.is_estimated)

        if confidence == "HIGH":
            return (
                f"This report has HIGH confidence. {verified_count} of {len(claims)} claims are verified "
                "from official sources including SEC EDGAR, FEC, and county property records."
            )
        if confidence == "MEDIUM":
            return (
                f"This report has MEDIUM confidence. {verified_count} of {len(claims)} claims are verified "
                f"from official sources. {estimated_count} claims are estimates based on available indicators."
            )
        return (
            "This report has LOW confidence. Limited official records were found. Many values are "
            "estimates or from web sources that could not be independently verified. "
            "Additional research recommended."
        )

    def _get_confidence_level(self, sources: List[SourceReference]) -> str:
        if not sources:
            return "very_low"

        max_rank = max(get_source_rank(s.name) for s in sources)
        if max_rank >= 80:
            return "high"
        if max_rank >= 50:
            return "medium"
        if max_rank >= 30:
            return "low"
        return "very_low"

    def get_data_quality_summary(self) -> Dict[str, Union[str, int]]:
        """Summarize data quality for the report header."""
        claims = self._all_claims()
        verified_claims = sum(1 for c in claims if c.is_verified)
        estimated_claims = sum(1 for c in claims if c.is_estimated)
        verified_sources = sum(1 for s in self._all_sources if get_source_rank(s.name) >= 80)

        if verified_sources >= 3 and claims and verified_claims / len(claims) >= 0.5:
            quality = "complete"
        elif verified_sources >= 1 or verified_claims > 0:
            quality = "partial"
        else:
            quality = "limited"

        return {
            "quality": quality,
            "verified_sources": verified_sources,
            "total_claims": len(claims),
            "verified_claims": verified_claims,
            "estimated_claims": estimated_claims,
        }


def create_source_tracker() -> SourceTracker:
    return SourceTracker()


def get_source_confidence(source_name: str) -> str:
    """Confidence label for an exact source name."""
    rank = SOURCE_CONFIDENCE_RANK.get(source_name, DEFAULT_SOURCE_RANK)
    if rank >= 80:
        return "high"
    if rank >= 50:
        return "medium"
    return "low"


def create_source(name: str, url: str, data_type: Optional[str] = None) -> SourceReference:
    return SourceReference(
        name=name,
        url=url,
        confidence=get_source_confidence(name),
        retrieved_at=utc_now(),
        data_type=data_type,
    )


class Sources:
    """Factories for commonly used sources."""

    @staticmethod
    def sec(url: str) -> SourceReference:
        return create_source("SEC EDGAR", url, "official_record")

    @staticmethod
    def fec(url: str) -> SourceReference:
        return create_source("FEC.gov", url, "official_record")

    @staticmethod
    def propublica(url: str) -> SourceReference:
        return create_source("ProPublica 990", url, "official_record")

    @staticmethod
    def county_assessor(county: str, url: str) -> SourceReference:
        return create_source(f"{county} County Assessor", url, "official_record")

    @staticmethod
    def voter_registration(state: str, url: str) -> SourceReference:
        return create_source(f"{state} Voter Registration", url, "official_record")

    @staticmethod
    def state_registry(state: str, url: str) -> SourceReference:
        return create_source(f"{state} Secretary of State", url, "official_record")

    @staticmethod
    def wikidata(url: str) -> SourceReference:
        return create_source("Wikidata", url, "api_response")

    @staticmethod
    def zillow(url: str) -> SourceReference:
        return create_source("Zillow", url, "web_search")

    @staticmethod
    def redfin(url: str) -> SourceReference:
        return create_source("Redfin", url, "web_search")

    @staticmethod
    def linkup(url: str) -> SourceReference:
        return create_source("Linkup", url, "web_search")

    @staticmethod
    def web_search(url: str) -> SourceReference:
        return create_source("Web Search", url, "web_search")

    @staticmethod
    def estimate() -> SourceReference:
        return create_source("Calculated Estimate", "", "estimate")
