"""Lot analysis engine: runs every pass in sequence over one record set."""

from __future__ import annotations

import logging
import time
from typing import Any

from lot_brain.discovery.field_normalizer import normalize_records
from lot_brain.discovery.lot_diagnostics import build_diagnostics
from lot_brain.discovery.lot_grouper import group_records
from lot_brain.discovery.lot_insights import (
    data_confidence_score,
    generate_insights,
    generate_recommendations,
)
from lot_brain.discovery.lot_metrics import compute_lot_metrics
from lot_brain.discovery.lot_models import (
    AnalysisConfig,
    Insight,
    LotAnalysisResult,
    LotDiagnostics,
    LotMetrics,
    Recommendation,
)
from lot_brain.discovery.rft_evaluator import evaluate_lots
from lot_brain.discovery.schema_classifier import classify_records
from lot_brain.discovery.work_order_resolver import resolve_work_orders

logger = logging.getLogger(__name__)


class _PassTracker:
    """Timed log of the pipeline passes, surfaced in the run diagnostics.

    Each entry is ``{"pass", "status", "records", "duration_ms"}`` plus any
    pass-specific counts (resolver phase hits, unassigned buckets).
    """

    def __init__(self) -> None:
        self._entries: list[dict] = []
        self._started: float | None = None

    def start(self) -> None:
        self._started = time.monotonic()

    def _elapsed(self) -> int:
        if self._started is None:
            return 0
        return int((time.monotonic() - self._started) * 1000)

    def done(self, name: str, records: int, **counts: Any) -> None:
        entry: dict = {"pass": name, "status": "ok", "records": records, "duration_ms": self._elapsed()}
        entry.update(counts)
        self._entries.append(entry)
        logger.debug("Pass %s: %d records in %d ms", name, records, entry["duration_ms"])

    def failed(self, name: str, exc: Exception) -> None:
        self._entries.append({
            "pass": name,
            "status": "failed",
            "duration_ms": self._elapsed(),
            "error": str(exc)[:500],
            "error_type": type(exc).__name__,
        })

    @property
    def entries(self) -> list[dict]:
        return list(self._entries)


def extract_records(data: Any) -> tuple[list[dict], int]:
    """Pull the raw record list out of *data*.

    Accepts a list of records or an object with a ``records`` list. Entries
    that are not objects are dropped and counted.

    Returns:
        (records, skipped_count)
    """
    if data is None:
        return [], 0
    if isinstance(data, dict):
        data = data.get("records")
        if data is None:
            logger.warning("Input object has no 'records' key; treating as empty")
            return [], 0
    if not isinstance(data, (list, tuple)):
        logger.warning("Unsupported input of type %s; treating as empty", type(data).__name__)
        return [], 0

    records = [r for r in data if isinstance(r, dict)]
    skipped = len(data) - len(records)
    if skipped:
        logger.warning("Skipped %d input entries that are not records", skipped)
    return records, skipped


def analyze_lots(data: Any, config: AnalysisConfig | None = None) -> LotAnalysisResult:
    """Run the full lot analysis pipeline.

    1. Classify every record into its family
    2. Normalize family fields onto NormalizedRecord
    3. Resolve work orders to lots (phase cascade)
    4. Group records into lots, dropping orphans
    5. Evaluate RFT, stage and cycle time per lot
    6. Aggregate global metrics
    7. Generate insights and recommendations
    8. Build the diagnostics summary

    Never raises on bad data: malformed fields degrade to None/0 and every
    record that misses a lot is counted in the diagnostics.
    """
    config = config or AnalysisConfig.from_settings()
    tracker = _PassTracker()

    raws, skipped = extract_records(data)
    if not raws:
        logger.info("Lot analysis: no records supplied")
        return LotAnalysisResult(
            lot_data={},
            lot_metrics=LotMetrics(),
            diagnostics=LotDiagnostics(skipped_records=skipped),
        )

    # 1. Classify
    tracker.start()
    record_types = classify_records(raws)
    tracker.done("classify", len(record_types))

    # 2. Normalize
    tracker.start()
    records = normalize_records(raws, record_types, config=config)
    tracker.done("normalize", len(records))

    # 3. Resolve work orders
    tracker.start()
    resolution = resolve_work_orders(records, config)
    tracker.done(
        "resolve_work_orders",
        len(records),
        mapped=len(resolution.work_order_to_lot),
        unmapped=len(resolution.unmapped_work_orders),
        phases=dict(resolution.phase_counts),
    )

    # 4. Group
    tracker.start()
    grouping = group_records(records, resolution, config)
    tracker.done(
        "group_lots",
        len(records),
        lots=len(grouping.lots),
        unassigned=dict(grouping.unassigned),
        discarded_lots=len(grouping.discarded_lots),
    )

    # 5. Evaluate
    tracker.start()
    lots = evaluate_lots(grouping.lots)
    tracker.done("evaluate_rft", sum(len(lot.records) for lot in lots.values()), lots=len(lots))

    # 6. Metrics
    tracker.start()
    metrics = compute_lot_metrics(lots, records, config)
    tracker.done("compute_metrics", metrics.total_records, lots=metrics.total_lots)

    # 7. Insights and recommendations (advisory; a failure here keeps the metrics)
    tracker.start()
    insights: list[Insight] = []
    recommendations: list[Recommendation] = []
    try:
        insights = generate_insights(
            metrics,
            config,
            unassigned_records=sum(grouping.unassigned.values()),
            confidence=data_confidence_score(lots),
        )
        recommendations = generate_recommendations(
            metrics,
            config,
            unmapped_work_orders=len(resolution.unmapped_work_orders),
        )
        tracker.done(
            "generate_insights",
            metrics.total_lots,
            insights=len(insights),
            recommendations=len(recommendations),
        )
    except Exception as exc:
        logger.exception("Insight generation failed, continuing")
        insights, recommendations = [], []
        tracker.failed("generate_insights", exc)

    # 8. Diagnostics
    diagnostics = build_diagnostics(
        records,
        grouping,
        resolution,
        lots,
        skipped_records=skipped,
        passes=tracker.entries,
    )

    logger.info(
        "Lot analysis complete: %d records -> %d lots, %d insights, %d unassigned",
        len(records),
        len(lots),
        len(insights),
        diagnostics.total_unassigned,
    )

    return LotAnalysisResult(
        lot_data=lots,
        lot_metrics=metrics,
        insights=insights,
        recommendations=recommendations,
        diagnostics=diagnostics,
    )
