"""Lot grouping: collect normalized records under their lot id."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from lot_brain.discovery.lot_models import (
    EXTERNAL_RFT,
    INTERNAL_RFT,
    PROCESS,
    UNKNOWN,
    AnalysisConfig,
    Lot,
    NormalizedRecord,
)
from lot_brain.discovery.work_order_resolver import WorkOrderResolution

logger = logging.getLogger(__name__)


@dataclass
class GroupingResult:
    """Lots plus an account of every record that did not land in one."""

    lots: dict[str, Lot] = field(default_factory=dict)
    unassigned: dict[str, int] = field(
        default_factory=lambda: {PROCESS: 0, INTERNAL_RFT: 0, EXTERNAL_RFT: 0, UNKNOWN: 0}
    )
    discarded_lots: list[str] = field(default_factory=list)


def _target_lot(
    rec: NormalizedRecord,
    resolution: WorkOrderResolution,
    config: AnalysisConfig,
) -> str | None:
    if rec.record_type in (PROCESS, EXTERNAL_RFT):
        if not rec.lot_id:
            return None
        return resolution.lot_remaps.get(rec.lot_id, rec.lot_id)

    if rec.record_type == INTERNAL_RFT:
        lot_id = resolution.lookup(rec.work_order)
        if lot_id:
            return resolution.lot_remaps.get(lot_id, lot_id)
        # some feeds put the lot itself in the work-order column
        candidate = (rec.work_order or "").strip().upper()
        if config.is_proper_lot_id(candidate):
            return candidate
    return None


def group_records(
    records: list[NormalizedRecord],
    resolution: WorkOrderResolution,
    config: AnalysisConfig | None = None,
) -> GroupingResult:
    """Group records into lots.

    Process and external records attach by their own lot id (after pseudo-lot
    remaps); internal records attach through the work-order lookup. Lots with
    no Process record and fewer than ``config.min_orphan_records`` records
    are dropped and their records counted as unassigned.
    """
    config = config or AnalysisConfig()
    result = GroupingResult()

    for rec in records:
        if rec.record_type == UNKNOWN:
            result.unassigned[UNKNOWN] += 1
            continue
        lot_id = _target_lot(rec, resolution, config)
        if lot_id is None:
            result.unassigned[rec.record_type] += 1
            continue
        lot = result.lots.get(lot_id)
        if lot is None:
            lot = result.lots[lot_id] = Lot(lot_id=lot_id)
        lot.records.append(rec)

    for lot_id in list(result.lots):
        lot = result.lots[lot_id]
        if lot.process_records or len(lot.records) >= config.min_orphan_records:
            continue
        for rec in lot.records:
            result.unassigned[rec.record_type] += 1
        result.discarded_lots.append(lot_id)
        del result.lots[lot_id]

    if result.discarded_lots:
        logger.info(
            "Discarded %d orphan lots: %s",
            len(result.discarded_lots),
            ", ".join(result.discarded_lots[:10]),
        )
    logger.info(
        "Grouped %d records into %d lots (%d unassigned)",
        len(records),
        len(result.lots),
        sum(result.unassigned.values()),
    )
    return result
