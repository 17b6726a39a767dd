"""Per-lot RFT evaluation.

A lot is Right-First-Time when none of its quality records failed. Lots with
no quality records at all are indeterminate (``is_rft=None``) rather than
passing by default, so they never inflate the headline percentage.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime

from lot_brain.discovery.lot_models import (
    FG,
    STAGE_UNKNOWN,
    WIP,
    Lot,
)

logger = logging.getLogger(__name__)


def lot_rft_status(lot: Lot) -> bool | None:
    """Tri-state verdict: True / False, or None when nothing can be judged."""
    quality = lot.internal_records + lot.external_records
    if not quality:
        return None
    return not any(r.is_rft is False for r in quality)


def primary_stage(lot: Lot) -> str:
    """Majority stage of the lot's records; ties go to FG."""
    wip = sum(1 for r in lot.records if r.stage == WIP)
    fg = sum(1 for r in lot.records if r.stage == FG)
    if wip == 0 and fg == 0:
        return STAGE_UNKNOWN
    return WIP if wip > fg else FG


def lot_date_span(lot: Lot) -> tuple[datetime | None, datetime | None]:
    """Earliest and latest date over every start and end of the lot's records."""
    dates = [
        d for r in lot.records for d in (r.start_date, r.end_date) if d is not None
    ]
    if not dates:
        return None, None
    return min(dates), max(dates)


def cycle_days(start: datetime | None, end: datetime | None) -> float | None:
    """Absolute days between *start* and *end*, one decimal; None if undated."""
    if start is None or end is None:
        return None
    return round(abs((end - start).total_seconds()) / 86400.0, 1)


def evaluate_lot(lot: Lot) -> Lot:
    """Return a new Lot with verdict, stage, date span and cycle time filled."""
    start, end = lot_date_span(lot)
    return replace(
        lot,
        records=list(lot.records),
        is_rft=lot_rft_status(lot),
        primary_stage=primary_stage(lot),
        start_date=start,
        end_date=end,
        cycle_days=cycle_days(start, end),
    )


def evaluate_lots(lots: dict[str, Lot]) -> dict[str, Lot]:
    """Evaluate every lot, preserving key order."""
    evaluated = {lot_id: evaluate_lot(lot) for lot_id, lot in lots.items()}
    logger.debug(
        "Evaluated %d lots: %d RFT, %d non-RFT, %d indeterminate",
        len(evaluated),
        sum(1 for lot in evaluated.values() if lot.is_rft is True),
        sum(1 for lot in evaluated.values() if lot.is_rft is False),
        sum(1 for lot in evaluated.values() if lot.is_rft is None),
    )
    return evaluated
