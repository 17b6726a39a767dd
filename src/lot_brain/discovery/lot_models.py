"""Shared types for lot reconciliation: records, lots, metrics, insights.

Every entity here is created fresh per analysis run and never outlives the
call that produced it. Record families and stages are plain strings so the
results serialize straight to JSON.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

# ---------------------------------------------------------------------------
# Record families and stages
# ---------------------------------------------------------------------------

PROCESS = "Process"
INTERNAL_RFT = "InternalRFT"
EXTERNAL_RFT = "ExternalRFT"
UNKNOWN = "Unknown"

RECORD_TYPES = (PROCESS, INTERNAL_RFT, EXTERNAL_RFT, UNKNOWN)

WIP = "WIP"
FG = "FG"
STAGE_UNKNOWN = "Unknown"

# Default heuristic constants (overridable through config.settings)
DEFAULT_LOT_ID_PATTERN = r"^[A-Z]{3}\d{4}$"
DEFAULT_PENDING_SENTINEL = "PENDING"
DEFAULT_PROXIMITY_WINDOW_DAYS = 30.0
DEFAULT_MIN_ORPHAN_RECORDS = 2
DEFAULT_EXCLUSION_CATEGORIES = ("Process Clarification", "Clarification", "Info Only")
DEFAULT_TOP_ISSUE_LIMIT = 5


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InsightThresholds:
    """Fixed thresholds the insight rules compare metrics against."""

    rft_high_risk_pct: float = 70.0
    rft_target_pct: float = 85.0
    rft_improvement_pct: float = 80.0
    baseline_rft_pct: float = 85.0
    critical_path_ratio: float = 1.5
    cycle_high_days: float = 90.0
    cycle_medium_days: float = 60.0
    cycle_gap_report_days: float = 2.0
    cycle_gap_high_days: float = 5.0
    cycle_gap_recommend_days: float = 3.0


@dataclass(frozen=True)
class AnalysisConfig:
    """Tunable constants for one analysis run.

    The substring and date-proximity heuristics are empirically tuned; keep
    them here rather than inline so they can be adjusted per dataset.
    """

    lot_id_pattern: str = DEFAULT_LOT_ID_PATTERN
    pending_sentinel: str = DEFAULT_PENDING_SENTINEL
    proximity_window_days: float = DEFAULT_PROXIMITY_WINDOW_DAYS
    min_orphan_records: int = DEFAULT_MIN_ORPHAN_RECORDS
    exclusion_categories: tuple[str, ...] = DEFAULT_EXCLUSION_CATEGORIES
    top_issue_limit: int = DEFAULT_TOP_ISSUE_LIMIT
    thresholds: InsightThresholds = field(default_factory=InsightThresholds)

    @classmethod
    def from_settings(cls, settings=None) -> AnalysisConfig:
        """Build a config from application settings (env / .env backed)."""
        if settings is None:
            from config.settings import settings

        return cls(
            lot_id_pattern=settings.lot_id_pattern,
            pending_sentinel=settings.pending_lot_sentinel,
            proximity_window_days=settings.proximity_window_days,
            min_orphan_records=settings.min_orphan_records,
            exclusion_categories=tuple(settings.rft_exclusion_categories),
            top_issue_limit=settings.top_issue_limit,
            thresholds=InsightThresholds(
                rft_high_risk_pct=settings.rft_high_risk_pct,
                rft_target_pct=settings.rft_target_pct,
                baseline_rft_pct=settings.baseline_rft_pct,
            ),
        )

    def is_proper_lot_id(self, value: str | None) -> bool:
        """True if *value* looks like a real lot id rather than a work order."""
        if not value:
            return False
        if value.upper() == self.pending_sentinel.upper():
            return True
        return re.match(self.lot_id_pattern, value) is not None

    def is_excluded_category(self, category: str | None) -> bool:
        """Categories that are logged as issues but never fail RFT."""
        if not category:
            return False
        lowered = category.lower()
        return any(excl.lower() in lowered for excl in self.exclusion_categories)


# ---------------------------------------------------------------------------
# Records and lots
# ---------------------------------------------------------------------------


@dataclass
class NormalizedRecord:
    """One raw record mapped onto the canonical shape."""

    id: str
    record_type: str  # Process | InternalRFT | ExternalRFT | Unknown
    lot_id: str | None = None
    work_order: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    error_count: int = 0
    issue_category: str | None = None
    is_rft: bool | None = None  # None = not evaluable
    raw: dict[str, Any] = field(default_factory=dict)
    work_orders: tuple[str, ...] = ()
    stage: str = STAGE_UNKNOWN
    form_title: str | None = None
    department: str | None = None
    index: int = 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "record_type": self.record_type,
            "lot_id": self.lot_id,
            "work_order": self.work_order,
            "work_orders": list(self.work_orders),
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "error_count": self.error_count,
            "issue_category": self.issue_category,
            "is_rft": self.is_rft,
            "stage": self.stage,
            "form_title": self.form_title,
            "department": self.department,
        }


@dataclass
class Lot:
    """A reconstructed manufacturing lot and its evaluation."""

    lot_id: str
    records: list[NormalizedRecord] = field(default_factory=list)
    is_rft: bool | None = None
    cycle_days: float | None = None
    primary_stage: str = STAGE_UNKNOWN
    start_date: datetime | None = None
    end_date: datetime | None = None

    @property
    def process_records(self) -> list[NormalizedRecord]:
        return [r for r in self.records if r.record_type == PROCESS]

    @property
    def internal_records(self) -> list[NormalizedRecord]:
        return [r for r in self.records if r.record_type == INTERNAL_RFT]

    @property
    def external_records(self) -> list[NormalizedRecord]:
        return [r for r in self.records if r.record_type == EXTERNAL_RFT]

    def source_counts(self) -> dict[str, int]:
        return {
            "process": len(self.process_records),
            "internal": len(self.internal_records),
            "external": len(self.external_records),
        }

    def to_dict(self, include_records: bool = True) -> dict:
        out = {
            "lot_id": self.lot_id,
            "is_rft": self.is_rft,
            "cycle_days": self.cycle_days,
            "primary_stage": self.primary_stage,
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "record_count": len(self.records),
            "source_counts": self.source_counts(),
        }
        if include_records:
            out["records"] = [r.to_dict() for r in self.records]
        return out


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


@dataclass
class IssueCount:
    """One row of an issue histogram."""

    category: str
    count: int


@dataclass
class MonthlyTrend:
    """Record-level RFT counts for one calendar month."""

    month: str  # YYYY-MM
    total_records: int
    rft_records: int
    non_rft_records: int
    rft_percentage: float


@dataclass
class SourceRft:
    """Record-level RFT breakdown for one record family."""

    total: int = 0
    rft: int = 0
    non_rft: int = 0
    percentage: float = 0.0


@dataclass
class LotMetrics:
    """Global aggregate over all lots of a run."""

    total_lots: int = 0
    rft_lots: int = 0
    non_rft_lots: int = 0
    indeterminate_lots: int = 0
    lot_rft_percentage: float = 0.0
    wip_lots: int = 0
    fg_lots: int = 0
    avg_cycle_time_days: float = 0.0
    issue_category_histogram: dict[str, int] = field(default_factory=dict)
    top_internal_issues: list[IssueCount] = field(default_factory=list)
    top_external_issues: list[IssueCount] = field(default_factory=list)
    wip_issue_count: int = 0
    fg_issue_count: int = 0
    lots_with_cycle_time: int = 0
    avg_cycle_time_by_rft_status: dict[str, float] = field(
        default_factory=lambda: {"passing": 0.0, "failing": 0.0}
    )
    rft_by_source: dict[str, SourceRft] = field(
        default_factory=lambda: {"internal": SourceRft(), "external": SourceRft()}
    )
    top_form_errors: list[IssueCount] = field(default_factory=list)
    monthly_trends: list[MonthlyTrend] = field(default_factory=list)
    total_records: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


# ---------------------------------------------------------------------------
# Insights and recommendations
# ---------------------------------------------------------------------------


@dataclass
class Insight:
    """A threshold-based observation about the run."""

    title: str
    description: str
    category: str
    severity: str  # high | medium | low


@dataclass
class Recommendation:
    """An action suggested by the metrics."""

    title: str
    description: str
    category: str
    impact: str  # High | Medium | Low
    difficulty: str  # High | Medium | Low
    payoff: str  # Immediate | Short-term | Medium-term
    priority: int  # 1-100, higher first


# ---------------------------------------------------------------------------
# Diagnostics and result
# ---------------------------------------------------------------------------


@dataclass
class LotDiagnostics:
    """Audit trail: where every record went, and why."""

    total_records: int = 0
    skipped_records: int = 0
    records_by_type: dict[str, int] = field(default_factory=dict)
    unknown_records: int = 0
    unassigned: dict[str, int] = field(default_factory=dict)
    discarded_lots: list[str] = field(default_factory=list)
    unmapped_work_orders: list[str] = field(default_factory=list)
    resolver_phase_counts: dict[str, int] = field(default_factory=dict)
    lot_remaps: dict[str, str] = field(default_factory=dict)
    anomalous_lots: list[dict] = field(default_factory=list)
    data_confidence_score: int = 0
    passes: list[dict] = field(default_factory=list)

    @property
    def total_unassigned(self) -> int:
        return sum(self.unassigned.values())

    def to_dict(self) -> dict:
        out = asdict(self)
        out["total_unassigned"] = self.total_unassigned
        return out


@dataclass
class LotAnalysisResult:
    """The single value returned by one analysis run."""

    lot_data: dict[str, Lot]
    lot_metrics: LotMetrics
    insights: list[Insight] = field(default_factory=list)
    recommendations: list[Recommendation] = field(default_factory=list)
    diagnostics: LotDiagnostics = field(default_factory=LotDiagnostics)

    def to_dict(self, include_records: bool = True) -> dict:
        return {
            "lot_data": {
                lot_id: lot.to_dict(include_records=include_records)
                for lot_id, lot in self.lot_data.items()
            },
            "lot_metrics": self.lot_metrics.to_dict(),
            "insights": [asdict(i) for i in self.insights],
            "recommendations": [asdict(r) for r in self.recommendations],
            "diagnostics": self.diagnostics.to_dict(),
        }


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
