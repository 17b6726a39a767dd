"""Diagnostics summary: account for every record of a run."""

from __future__ import annotations

import logging
from collections import Counter

from lot_brain.discovery.lot_grouper import GroupingResult
from lot_brain.discovery.lot_insights import data_confidence_score
from lot_brain.discovery.lot_models import (
    RECORD_TYPES,
    UNKNOWN,
    Lot,
    LotDiagnostics,
    NormalizedRecord,
)
from lot_brain.discovery.work_order_resolver import WorkOrderResolution

logger = logging.getLogger(__name__)

ANOMALY_RATIO = 50


def find_anomalous_lots(lots: dict[str, Lot]) -> list[dict]:
    """Lots with no Process records, or quality records far outnumbering them."""
    anomalies: list[dict] = []
    for lot_id, lot in lots.items():
        counts = lot.source_counts()
        process = counts["process"]
        if process == 0:
            reason = "no_process_records"
        elif max(counts["internal"], counts["external"]) > process * ANOMALY_RATIO:
            reason = "quality_records_exceed_process"
        else:
            continue
        anomalies.append({"lot_id": lot_id, "reason": reason, **counts})
    return anomalies


def build_diagnostics(
    records: list[NormalizedRecord],
    grouping: GroupingResult,
    resolution: WorkOrderResolution,
    lots: dict[str, Lot],
    *,
    skipped_records: int = 0,
    passes: list[dict] | None = None,
) -> LotDiagnostics:
    """Collect the audit trail for one run."""
    by_type = Counter(r.record_type for r in records)
    anomalies = find_anomalous_lots(lots)
    if anomalies:
        logger.warning("%d lots look anomalous", len(anomalies))

    return LotDiagnostics(
        total_records=len(records),
        skipped_records=skipped_records,
        records_by_type={t: by_type.get(t, 0) for t in RECORD_TYPES},
        unknown_records=by_type.get(UNKNOWN, 0),
        unassigned=dict(grouping.unassigned),
        discarded_lots=list(grouping.discarded_lots),
        unmapped_work_orders=list(resolution.unmapped_work_orders),
        resolver_phase_counts=dict(resolution.phase_counts),
        lot_remaps=dict(resolution.lot_remaps),
        anomalous_lots=anomalies,
        data_confidence_score=data_confidence_score(lots),
        passes=list(passes or []),
    )
