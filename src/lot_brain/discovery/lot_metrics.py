"""Metrics aggregation: one pass over evaluated lots into LotMetrics."""

from __future__ import annotations

import logging
from collections import Counter
from typing import Iterable

from lot_brain.discovery.lot_models import (
    EXTERNAL_RFT,
    FG,
    INTERNAL_RFT,
    WIP,
    AnalysisConfig,
    IssueCount,
    Lot,
    LotMetrics,
    MonthlyTrend,
    NormalizedRecord,
    SourceRft,
)

logger = logging.getLogger(__name__)

UNCATEGORIZED = "Uncategorized"
UNTITLED_FORM = "Unknown Form"


def _avg(values: list[float]) -> float:
    return round(sum(values) / len(values), 1) if values else 0.0


def _pct(part: int, whole: int) -> float:
    return round(part / whole * 100, 1) if whole else 0.0


def _top(counter: Counter, limit: int) -> list[IssueCount]:
    # Counter.most_common keeps first-encountered order among equal counts
    return [IssueCount(category=k, count=v) for k, v in counter.most_common(limit)]


def is_counted_issue(rec: NormalizedRecord, config: AnalysisConfig) -> bool:
    """Internal records with errors and every external record, minus exclusions."""
    if rec.record_type == INTERNAL_RFT:
        if rec.error_count <= 0:
            return False
    elif rec.record_type != EXTERNAL_RFT:
        return False
    return not config.is_excluded_category(rec.issue_category)


def _source_rft(records: list[NormalizedRecord]) -> SourceRft:
    total = len(records)
    rft = sum(1 for r in records if r.is_rft is True)
    return SourceRft(total=total, rft=rft, non_rft=total - rft, percentage=_pct(rft, total))


def _monthly_trends(records: Iterable[NormalizedRecord]) -> list[MonthlyTrend]:
    buckets: dict[str, list[int]] = {}
    for rec in records:
        if rec.record_type not in (INTERNAL_RFT, EXTERNAL_RFT) or rec.start_date is None:
            continue
        bucket = buckets.setdefault(rec.start_date.strftime("%Y-%m"), [0, 0])
        bucket[0] += 1
        if rec.is_rft is True:
            bucket[1] += 1
    return [
        MonthlyTrend(
            month=month,
            total_records=total,
            rft_records=rft,
            non_rft_records=total - rft,
            rft_percentage=_pct(rft, total),
        )
        for month, (total, rft) in sorted(buckets.items())
    ]


def compute_lot_metrics(
    lots: dict[str, Lot],
    records: list[NormalizedRecord] | None = None,
    config: AnalysisConfig | None = None,
) -> LotMetrics:
    """Aggregate evaluated lots into global metrics.

    Args:
        lots: Lots already passed through the RFT evaluator.
        records: Every normalized record of the run, including ones that never
            reached a lot; used for record-level rates and the total count.
            Defaults to the records held by *lots*.
        config: Supplies the excluded categories and the top-N limit.
    """
    config = config or AnalysisConfig()
    limit = config.top_issue_limit
    metrics = LotMetrics()

    internal_issues: Counter = Counter()
    external_issues: Counter = Counter()
    histogram: Counter = Counter()
    form_errors: Counter = Counter()
    cycles: list[float] = []
    passing_cycles: list[float] = []
    failing_cycles: list[float] = []
    lot_records: list[NormalizedRecord] = []

    for lot in lots.values():
        metrics.total_lots += 1
        if lot.is_rft is True:
            metrics.rft_lots += 1
        elif lot.is_rft is False:
            metrics.non_rft_lots += 1
        else:
            metrics.indeterminate_lots += 1

        if lot.primary_stage == WIP:
            metrics.wip_lots += 1
        elif lot.primary_stage == FG:
            metrics.fg_lots += 1

        if lot.cycle_days is not None:
            cycles.append(lot.cycle_days)
            if lot.is_rft is True:
                passing_cycles.append(lot.cycle_days)
            elif lot.is_rft is False:
                failing_cycles.append(lot.cycle_days)

        for rec in lot.records:
            lot_records.append(rec)
            if not is_counted_issue(rec, config):
                continue
            category = rec.issue_category or UNCATEGORIZED
            histogram[category] += 1
            if rec.record_type == INTERNAL_RFT:
                internal_issues[category] += 1
                form_errors[rec.form_title or UNTITLED_FORM] += rec.error_count
            else:
                external_issues[category] += 1
            if rec.stage == WIP:
                metrics.wip_issue_count += 1
            elif rec.stage == FG:
                metrics.fg_issue_count += 1

    decided = metrics.rft_lots + metrics.non_rft_lots
    metrics.lot_rft_percentage = metrics.rft_lots / decided * 100 if decided else 0.0
    metrics.avg_cycle_time_days = _avg(cycles)
    metrics.lots_with_cycle_time = len(cycles)
    metrics.avg_cycle_time_by_rft_status = {
        "passing": _avg(passing_cycles),
        "failing": _avg(failing_cycles),
    }
    metrics.issue_category_histogram = dict(histogram.most_common())
    metrics.top_internal_issues = _top(internal_issues, limit)
    metrics.top_external_issues = _top(external_issues, limit)
    metrics.top_form_errors = _top(form_errors, limit)

    all_records = records if records is not None else lot_records
    metrics.total_records = len(all_records)
    metrics.rft_by_source = {
        "internal": _source_rft([r for r in all_records if r.record_type == INTERNAL_RFT]),
        "external": _source_rft([r for r in all_records if r.record_type == EXTERNAL_RFT]),
    }
    metrics.monthly_trends = _monthly_trends(all_records)

    logger.info(
        "Lot metrics: %d lots, %d RFT, %d non-RFT, %d indeterminate (%.1f%% RFT)",
        metrics.total_lots,
        metrics.rft_lots,
        metrics.non_rft_lots,
        metrics.indeterminate_lots,
        metrics.lot_rft_percentage,
    )
    return metrics
