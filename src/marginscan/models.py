"""Domain models for margin opportunity scanning.

Input records are immutable dataclasses. Derived values are built once by the
aggregator and analyzer as pydantic models, whose JSON form uses stable
camelCase field names.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, SkipValidation, computed_field
from pydantic.alias_generators import to_camel

UNSPECIFIED_OEM = "Unspecified"


class StageOutcome(str, Enum):
    WON = "Won"
    LOST = "Lost"


class SizeBucket(str, Enum):
    SMALL = "Small"
    MID_MARKET = "MidMarket"
    ENTERPRISE = "Enterprise"
    STRATEGIC = "Strategic"


class Segment(str, Enum):
    SMB = "SMB"
    MID_MARKET = "MidMarket"
    ENTERPRISE = "Enterprise"


class JobStatus(str, Enum):
    IDLE = "Idle"
    RUNNING = "Running"
    COMPLETE = "Complete"
    ERROR = "Error"


@dataclass(frozen=True, slots=True)
class LineItem:
    """Represents one product line on a deal."""

    product_family: Optional[str]
    unit_price: float
    quantity: float

    @property
    def extended_price(self) -> float:
        return self.unit_price * self.quantity


@dataclass(frozen=True, slots=True)
class DealRecord:
    """Represents one closed deal as supplied by the deal source.

    Fields the source could not supply are ``None``; see
    :func:`marginscan.classifier.validate_deal` for which ones are required.
    """

    deal_id: Optional[str]
    closed_date: Optional[datetime]
    amount: Optional[float]
    margin_percent: Optional[float]
    stage_outcome: Optional[StageOutcome]
    owner_id: Optional[str]
    owner_name: Optional[str] = None
    line_items: Tuple[LineItem, ...] = ()
    account_annual_revenue: Optional[float] = None

    @property
    def is_won(self) -> bool:
        return self.stage_outcome is StageOutcome.WON


@dataclass(frozen=True, slots=True)
class CohortKey:
    """Peer-comparison key: OEM x deal-size bucket x customer segment."""

    oem: str
    size_bucket: SizeBucket
    segment: Segment

    @property
    def label(self) -> str:
        return f"{self.oem} / {self.size_bucket.value} / {self.segment.value}"


class _Serialized(BaseModel):
    """Base for models with a persisted and published JSON form."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class Cohort(_Serialized):
    """Represents a qualifying cohort and its derived statistics."""

    oem: str
    size_bucket: SizeBucket
    segment: Segment
    deal_count: int
    won_count: int
    lost_count: int
    median_margin: Optional[float]
    p25_margin: Optional[float]
    p75_margin: Optional[float]
    avg_margin: Optional[float]
    win_rate: float
    total_revenue: float
    margin_opportunity: float
    deals: SkipValidation[Tuple[DealRecord, ...]] = Field(default=(), exclude=True, repr=False)

    @property
    def key(self) -> CohortKey:
        return CohortKey(oem=self.oem, size_bucket=self.size_bucket, segment=self.segment)

    @computed_field
    @property
    def label(self) -> str:
        return self.key.label


class RepStat(_Serialized):
    """Represents per-salesperson margin performance within qualifying cohorts."""

    owner_id: str
    owner_name: Optional[str]
    deal_count: int
    won_count: int
    avg_margin: Optional[float]
    margin_consistency: Optional[float]
    margin_left_on_table: float
    vs_team_avg: Optional[float]


class MarginBand(_Serialized):
    """Represents win rate over deals whose margin falls in one fixed-width band.

    ``upper_bound`` is ``None`` for the terminal ``100+`` band.
    """

    lower_bound: float
    upper_bound: Optional[float]
    deal_count: int
    won_count: int
    win_rate: float

    @computed_field
    @property
    def label(self) -> str:
        if self.upper_bound is None:
            return f"{self.lower_bound:g}+%"
        return f"{self.lower_bound:g}-{self.upper_bound:g}%"


class ScanResult(_Serialized):
    """Represents the complete output of one scan."""

    scan_date: datetime
    total_deals: int
    total_revenue: float
    current_avg_margin: float
    achievable_avg_margin: float
    annual_opportunity: float
    total_opportunity: float
    scan_months: int
    skipped_count: int
    cohorts: Tuple[Cohort, ...]
    rep_stats: Tuple[RepStat, ...]
    margin_bands: Tuple[MarginBand, ...]
    sweet_spot: Optional[str] = None


class ScanJob(_Serialized):
    """Lifecycle state of one scan, replaced (never mutated) on every transition."""

    status: JobStatus = JobStatus.IDLE
    processed_count: int = 0
    total_count: int = 0
    skipped_count: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    error_message: Optional[str] = None

    @property
    def status_text(self) -> str:
        """Render the status string polled by clients, e.g. ``"Running: 450/2847"``."""
        if self.status is JobStatus.RUNNING:
            return f"Running: {self.processed_count}/{self.total_count}"
        return self.status.value

    def evolve(self, **changes: Any) -> "ScanJob":
        return self.model_copy(update=changes)
