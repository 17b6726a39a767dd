"""Work-order to lot resolution.

Internal RFT records reference a work order, not a lot. This module builds
the lookup that lets them join the right lot, through five ordered phases:

  1. direct          : Process records carrying both a lot and work orders
  2. substring       : work order contains / is contained in a confirmed lot id
  3. shared_field    : internal and external raw records share a field value
  4. pseudo_lot_remap: a work order that was used as a lot id moves to a real lot
  5. temporal        : numeric work order dated within N days of a lot

Each phase is a pure function ``(records, current_map, config) -> new_map``
that only looks at work orders left unmapped by the phases before it. Phase
order is part of the contract: ``RESOLVER_PHASES`` is applied left to right.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from lot_brain.discovery.field_normalizer import normalize_lot_id
from lot_brain.discovery.lot_models import (
    EXTERNAL_RFT,
    INTERNAL_RFT,
    PROCESS,
    AnalysisConfig,
    NormalizedRecord,
)

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1)
_SECONDS_PER_DAY = 86400.0

# Raw fields that identify a record or its lot/work order; never treated as
# evidence that two records belong together.
_KEY_FIELDS = frozenset({
    "batchId", "batch_id", "id", "source", "record_type", "recordType", "type",
    "lot", "lotNumber", "fg_lot", "fg_batch", "batch", "wo/lot#", "workOrder",
    "wo", "work_order", "lot#", "category", "comment",
})


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WorkOrderMap:
    """Immutable snapshot of the lookup between phases."""

    mapping: dict[str, str] = field(default_factory=dict)  # work order key -> lot id
    lot_remaps: dict[str, str] = field(default_factory=dict)  # pseudo lot -> real lot

    def extended(
        self,
        mapping: dict[str, str],
        lot_remaps: dict[str, str] | None = None,
    ) -> WorkOrderMap:
        merged = dict(self.mapping)
        for key, lot_id in mapping.items():
            merged.setdefault(key, lot_id)
        remaps = dict(self.lot_remaps)
        remaps.update(lot_remaps or {})
        return WorkOrderMap(mapping=merged, lot_remaps=remaps)


@dataclass
class WorkOrderResolution:
    """Final output of the resolver cascade."""

    work_order_to_lot: dict[str, str]
    lot_remaps: dict[str, str]
    phase_counts: dict[str, int]
    unmapped_work_orders: list[str]

    def lookup(self, work_order: str | None) -> str | None:
        if not work_order:
            return None
        return self.work_order_to_lot.get(work_order_key(work_order))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def work_order_key(work_order: str) -> str:
    """Canonical lookup key for a work order."""
    return work_order.strip().upper()


def _internal_by_work_order(records: list[NormalizedRecord]) -> dict[str, list[NormalizedRecord]]:
    """Internal RFT records grouped by work order key, in encounter order."""
    groups: dict[str, list[NormalizedRecord]] = {}
    for rec in records:
        if rec.record_type == INTERNAL_RFT and rec.work_order:
            groups.setdefault(work_order_key(rec.work_order), []).append(rec)
    return groups


def _seen_work_orders(records: list[NormalizedRecord]) -> list[str]:
    """Every work order key seen on Process or Internal records, in order."""
    seen: dict[str, None] = {}
    for rec in records:
        if rec.record_type in (PROCESS, INTERNAL_RFT):
            for wo in rec.work_orders:
                seen.setdefault(work_order_key(wo), None)
    return list(seen)


def _confirmed_lots(records: list[NormalizedRecord], config: AnalysisConfig) -> list[str]:
    """Proper lot ids carried by Process/External records, in order."""
    lots: dict[str, None] = {}
    for rec in records:
        if rec.record_type in (PROCESS, EXTERNAL_RFT) and config.is_proper_lot_id(rec.lot_id):
            lots.setdefault(rec.lot_id, None)
    return list(lots)


def _unmapped(keys: list[str], current: WorkOrderMap) -> list[str]:
    return [k for k in keys if k not in current.mapping]


def _mean_seconds(dates: list[datetime]) -> float | None:
    if not dates:
        return None
    return sum((d - _EPOCH).total_seconds() for d in dates) / len(dates)


def _record_dates(records: list[NormalizedRecord]) -> list[datetime]:
    return [r.start_date for r in records if r.start_date is not None]


def _process_dates_by_lot(
    records: list[NormalizedRecord],
    config: AnalysisConfig,
) -> dict[str, list[datetime]]:
    """Start dates of Process records, per proper lot id."""
    by_lot: dict[str, list[datetime]] = {}
    for rec in records:
        if rec.record_type != PROCESS or not config.is_proper_lot_id(rec.lot_id):
            continue
        dates = by_lot.setdefault(rec.lot_id, [])
        if rec.start_date is not None:
            dates.append(rec.start_date)
    return by_lot


def _closest_lot(
    target_seconds: float,
    lot_dates: dict[str, list[datetime]],
) -> tuple[str | None, float]:
    """Lot whose mean date is nearest *target_seconds*; ties keep the first."""
    best_lot = None
    best_gap = float("inf")
    for lot_id, dates in lot_dates.items():
        mean = _mean_seconds(dates)
        if mean is None:
            continue
        gap = abs(target_seconds - mean) / _SECONDS_PER_DAY
        if gap < best_gap:
            best_gap = gap
            best_lot = lot_id
    return best_lot, best_gap


# ---------------------------------------------------------------------------
# Phases
# ---------------------------------------------------------------------------


def resolve_direct(
    records: list[NormalizedRecord],
    current: WorkOrderMap,
    config: AnalysisConfig,
) -> WorkOrderMap:
    """Phase 1: Process records map each of their work orders to their lot."""
    found: dict[str, str] = {}
    for rec in records:
        if rec.record_type != PROCESS or not rec.lot_id:
            continue
        for wo in rec.work_orders:
            key = work_order_key(wo)
            if key in current.mapping:
                continue
            existing = found.get(key)
            if existing is None:
                found[key] = rec.lot_id
            elif existing != rec.lot_id:
                logger.debug(
                    "Work order %s appears on lots %s and %s; keeping %s",
                    wo, existing, rec.lot_id, existing,
                )
    return current.extended(found)


def resolve_substring(
    records: list[NormalizedRecord],
    current: WorkOrderMap,
    config: AnalysisConfig,
) -> WorkOrderMap:
    """Phase 2: a work order containing (or contained in) a confirmed lot id."""
    lots = _confirmed_lots(records, config)
    found: dict[str, str] = {}
    for key in _unmapped(_seen_work_orders(records), current):
        normalized = normalize_lot_id(key)
        if not normalized:
            continue
        for lot_id in lots:
            if lot_id in normalized or normalized in lot_id:
                found[key] = lot_id
                logger.debug("Work order %s matched lot %s by containment", key, lot_id)
                break
    return current.extended(found)


def resolve_shared_field(
    records: list[NormalizedRecord],
    current: WorkOrderMap,
    config: AnalysisConfig,
) -> WorkOrderMap:
    """Phase 3: adopt the lot of an external record sharing a raw field value.

    Heuristic: any identical non-key value (operator, room, date string ...)
    between an internal and an external record is taken as a link. It is a
    weak signal and produces occasional false positives, but it resolves work
    orders that nothing else can.
    """
    # (field, value) -> first external lot carrying it
    index: dict[tuple[str, object], str] = {}
    for rec in records:
        if rec.record_type != EXTERNAL_RFT or not config.is_proper_lot_id(rec.lot_id):
            continue
        for name, value in rec.raw.items():
            norm = _comparable(name, value)
            if norm is not None:
                index.setdefault(norm, rec.lot_id)

    if not index:
        return current

    found: dict[str, str] = {}
    groups = _internal_by_work_order(records)
    for key in _unmapped(list(groups), current):
        for internal in groups[key]:
            lot_id = _match_shared_field(internal, index)
            if lot_id:
                found[key] = lot_id
                logger.debug("Work order %s linked to lot %s by shared field", key, lot_id)
                break
    return current.extended(found)


def _comparable(name: str, value: object) -> tuple[str, object] | None:
    if name in _KEY_FIELDS or value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
        return (name, value)
    if isinstance(value, (int, float)):
        return (name, value)
    return None


def _match_shared_field(
    internal: NormalizedRecord,
    index: dict[tuple[str, object], str],
) -> str | None:
    for name, value in internal.raw.items():
        norm = _comparable(name, value)
        if norm is not None and norm in index:
            return index[norm]
    return None


def resolve_pseudo_lots(
    records: list[NormalizedRecord],
    current: WorkOrderMap,
    config: AnalysisConfig,
) -> WorkOrderMap:
    """Phase 4: a work order that was grouped as if it were a lot id.

    When an unmapped work order also appears as a non-pattern lot id on some
    record, the pseudo-lot is folded into a real lot that has Process records:
    the one with the nearest mean date when both sides are dated, otherwise
    the first real lot seen.
    """
    pseudo_members: dict[str, list[NormalizedRecord]] = {}
    for rec in records:
        if rec.lot_id and not config.is_proper_lot_id(rec.lot_id):
            pseudo_members.setdefault(rec.lot_id, []).append(rec)
    if not pseudo_members:
        return current

    real_lots = _process_dates_by_lot(records, config)
    if not real_lots:
        return current

    groups = _internal_by_work_order(records)
    found: dict[str, str] = {}
    remaps: dict[str, str] = {}
    for key in _unmapped(list(groups), current):
        pseudo = normalize_lot_id(key)
        if not pseudo or pseudo not in pseudo_members:
            continue
        target = remaps.get(pseudo)
        if target is None:
            mean = _mean_seconds(_record_dates(pseudo_members[pseudo] + groups[key]))
            if mean is not None:
                target, _ = _closest_lot(mean, real_lots)
            if target is None:
                target = next(iter(real_lots))
        found[key] = target
        remaps[pseudo] = target
        logger.info("Pseudo-lot %s is work order %s; remapped to lot %s", pseudo, key, target)
    return current.extended(found, remaps)


def resolve_temporal(
    records: list[NormalizedRecord],
    current: WorkOrderMap,
    config: AnalysisConfig,
) -> WorkOrderMap:
    """Phase 5: numeric work orders matched to the lot closest in time."""
    groups = _internal_by_work_order(records)
    candidates = [k for k in _unmapped(list(groups), current) if k.isdigit()]
    if not candidates:
        return current

    lot_dates = {
        lot_id: dates
        for lot_id, dates in _process_dates_by_lot(records, config).items()
        if dates
    }
    if not lot_dates:
        return current

    found: dict[str, str] = {}
    for key in candidates:
        mean = _mean_seconds(_record_dates(groups[key]))
        if mean is None:
            continue
        lot_id, gap = _closest_lot(mean, lot_dates)
        if lot_id is not None and gap <= config.proximity_window_days:
            found[key] = lot_id
            logger.debug(
                "Work order %s mapped to lot %s by date proximity (%.1f days)",
                key, lot_id, gap,
            )
    return current.extended(found)


PhaseFn = Callable[[list[NormalizedRecord], WorkOrderMap, AnalysisConfig], WorkOrderMap]

RESOLVER_PHASES: tuple[tuple[str, PhaseFn], ...] = (
    ("direct", resolve_direct),
    ("substring", resolve_substring),
    ("shared_field", resolve_shared_field),
    ("pseudo_lot_remap", resolve_pseudo_lots),
    ("temporal", resolve_temporal),
)


# ---------------------------------------------------------------------------
# Cascade
# ---------------------------------------------------------------------------


def resolve_work_orders(
    records: list[NormalizedRecord],
    config: AnalysisConfig | None = None,
    phases: tuple[tuple[str, PhaseFn], ...] = RESOLVER_PHASES,
) -> WorkOrderResolution:
    """Run the phase cascade left to right.

    Returns:
        WorkOrderResolution with the final lookup, pseudo-lot remaps, the
        number of work orders each phase resolved, and the internal work
        orders nothing could place.
    """
    config = config or AnalysisConfig()
    current = WorkOrderMap()
    phase_counts: dict[str, int] = {}

    for name, phase in phases:
        before = len(current.mapping)
        current = phase(records, current, config)
        phase_counts[name] = len(current.mapping) - before

    unmapped = [
        key for key in _internal_by_work_order(records)
        if key not in current.mapping
    ]

    logger.info(
        "Resolved %d work orders (%s); %d internal work orders unmapped",
        len(current.mapping),
        ", ".join(f"{n}={c}" for n, c in phase_counts.items()),
        len(unmapped),
    )

    return WorkOrderResolution(
        work_order_to_lot=dict(current.mapping),
        lot_remaps=dict(current.lot_remaps),
        phase_counts=phase_counts,
        unmapped_work_orders=unmapped,
    )
