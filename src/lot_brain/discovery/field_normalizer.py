"""Field normalization: map family-specific raw fields onto NormalizedRecord.

Runs once at the boundary so that downstream phases never re-inspect raw
shape. Parsing is defensive throughout: an unparsable date becomes None and
a non-numeric error count becomes 0; nothing here raises on bad data.
"""

from __future__ import annotations

import logging
import math
import re
from datetime import datetime
from typing import Any

import pandas as pd

from lot_brain.discovery.lot_models import (
    EXTERNAL_RFT,
    FG,
    INTERNAL_RFT,
    PROCESS,
    STAGE_UNKNOWN,
    UNKNOWN,
    WIP,
    AnalysisConfig,
    NormalizedRecord,
)
from lot_brain.discovery.schema_classifier import classify_record

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Field aliases per record family (first present alias wins)
# ---------------------------------------------------------------------------

_ID_FIELDS = ("batchId", "batch_id", "id")

_PROCESS_LOT_FIELDS = ("fg_batch", "lot", "lotNumber", "fgBatch")
_PROCESS_WO_FIELDS = (
    "assembly_wo", "cartoning_wo", "assemblyWo", "cartoningWo",
    "work_order", "wo", "workorder", "work_order_number",
)
_PROCESS_START_FIELDS = ("bulk_receipt_date", "assembly_start", "start_date", "startDate")
_PROCESS_END_FIELDS = ("release", "shipment", "packaging_finish", "end_date", "endDate")

_INTERNAL_WO_FIELDS = ("wo/lot#", "workOrder", "wo", "work_order", "lot#")
_INTERNAL_ERROR_FIELDS = ("#_of_errors", "error_count", "errorCount")
_INTERNAL_CATEGORY_FIELDS = ("error_type", "errorType")
_INTERNAL_FORM_FIELDS = ("form_title", "formTitle", "form")
_INTERNAL_DATE_FIELDS = ("input_date", "date")

_EXTERNAL_LOT_FIELDS = ("lot", "lotNumber", "fg_lot", "batch")
_EXTERNAL_CATEGORY_FIELDS = ("category",)
_EXTERNAL_DATE_FIELDS = ("date", "submission_date", "input_date")

_DEPARTMENT_FIELDS = ("department", "room_#", "room", "location", "area")

_WIP_STAGE_VALUES = {"WIP", "ASSEMBLY", "MANUFACTURING"}
_FG_STAGE_VALUES = {"FG", "FINAL", "PACKAGING"}
_WIP_KEYWORDS = ("assembly", "manufacturing", "wip")
_FG_KEYWORDS = ("packaging", "inspection", "finished", "fg")


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------


def _to_text(value: Any) -> str | None:
    """Render a scalar as trimmed text; None/NaN/blank -> None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float):
        if math.isnan(value):
            return None
        if value.is_integer():
            return str(int(value))
    text = str(value).strip()
    return text or None


def _first(raw: dict, keys: tuple[str, ...]) -> Any:
    """Return the first non-blank value among *keys*."""
    for key in keys:
        if _to_text(raw.get(key)) is not None:
            return raw[key]
    return None


def normalize_lot_id(value: Any) -> str | None:
    """Uppercase and strip everything but letters and digits."""
    text = _to_text(value)
    if text is None:
        return None
    normalized = re.sub(r"[^A-Z0-9]", "", text.upper())
    return normalized or None


def normalize_work_order(value: Any) -> str | None:
    return _to_text(value)


def parse_date(value: Any) -> datetime | None:
    """Parse a date-like value, returning None instead of raising.

    Numbers are read as epoch milliseconds. Timezone-aware values are
    converted to naive UTC so every date in a run compares cleanly.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        ts = pd.Timestamp(value)
    else:
        try:
            if isinstance(value, (int, float)):
                if isinstance(value, float) and math.isnan(value):
                    return None
                ts = pd.to_datetime(value, unit="ms", errors="coerce")
            else:
                text = str(value).strip()
                if not text:
                    return None
                ts = pd.to_datetime(text, errors="coerce")
        except (ValueError, TypeError, OverflowError):
            return None
    if ts is None or pd.isna(ts):
        return None
    if ts.tzinfo is not None:
        ts = ts.tz_convert("UTC").tz_localize(None)
    return ts.to_pydatetime()


def parse_error_count(value: Any) -> int:
    """Parse an error count; absent or non-numeric -> 0."""
    if value is None or isinstance(value, bool):
        return 0
    try:
        count = float(str(value).replace(",", "").strip())
    except (TypeError, ValueError):
        return 0
    if math.isnan(count) or math.isinf(count):
        return 0
    return max(int(count), 0)


def detect_stage(raw: dict, record_type: str) -> str:
    """Place a record in WIP (assembly) or FG (packaging)."""
    if record_type == UNKNOWN:
        return STAGE_UNKNOWN

    stage = _to_text(raw.get("stage"))
    if stage:
        upper = stage.upper()
        if upper in _WIP_STAGE_VALUES:
            return WIP
        if upper in _FG_STAGE_VALUES:
            return FG

    hints = " ".join(
        t.lower()
        for t in (_to_text(raw.get(k)) for k in (*_DEPARTMENT_FIELDS, "line", "form_title"))
        if t
    )
    if any(k in hints for k in _WIP_KEYWORDS):
        return WIP
    if any(k in hints for k in _FG_KEYWORDS):
        return FG

    return WIP if record_type == INTERNAL_RFT else FG


def _department(raw: dict, record_type: str) -> str | None:
    if record_type == PROCESS:
        line = _to_text(raw.get("line"))
        if line:
            return f"Line {line}"
        strength = _to_text(raw.get("strength"))
        if strength:
            return f"Strength {strength}"
    return _to_text(_first(raw, _DEPARTMENT_FIELDS))


# ---------------------------------------------------------------------------
# Per-family normalizers
# ---------------------------------------------------------------------------


def _normalize_process(rec: NormalizedRecord, raw: dict) -> None:
    rec.lot_id = normalize_lot_id(_first(raw, _PROCESS_LOT_FIELDS))
    work_orders: list[str] = []
    for key in _PROCESS_WO_FIELDS:
        wo = normalize_work_order(raw.get(key))
        if wo and wo not in work_orders:
            work_orders.append(wo)
    rec.work_orders = tuple(work_orders)
    rec.work_order = work_orders[0] if work_orders else None
    rec.start_date = parse_date(_first(raw, _PROCESS_START_FIELDS))
    rec.end_date = parse_date(_first(raw, _PROCESS_END_FIELDS))
    # no verdict of its own; provisionally passing
    rec.is_rft = True


def _normalize_internal(rec: NormalizedRecord, raw: dict) -> None:
    wo = normalize_work_order(_first(raw, _INTERNAL_WO_FIELDS))
    if wo is None:
        discriminator = _to_text(raw.get("batchId"))
        if discriminator and "_" in discriminator:
            wo = normalize_work_order(discriminator.split("_")[1])
    rec.work_order = wo
    rec.work_orders = (wo,) if wo else ()
    rec.error_count = parse_error_count(_first(raw, _INTERNAL_ERROR_FIELDS))
    rec.issue_category = _to_text(_first(raw, _INTERNAL_CATEGORY_FIELDS))
    rec.form_title = _to_text(_first(raw, _INTERNAL_FORM_FIELDS))
    rec.start_date = parse_date(_first(raw, _INTERNAL_DATE_FIELDS))
    rec.end_date = rec.start_date
    rec.is_rft = rec.error_count == 0


def _normalize_external(rec: NormalizedRecord, raw: dict, config: AnalysisConfig) -> None:
    rec.lot_id = normalize_lot_id(_first(raw, _EXTERNAL_LOT_FIELDS))
    rec.issue_category = _to_text(_first(raw, _EXTERNAL_CATEGORY_FIELDS))
    rec.start_date = parse_date(_first(raw, _EXTERNAL_DATE_FIELDS))
    rec.end_date = rec.start_date
    # every external record is a logged issue; excluded categories never fail
    rec.is_rft = config.is_excluded_category(rec.issue_category)


def normalize_record(
    raw: dict,
    record_type: str | None = None,
    index: int = 0,
    config: AnalysisConfig | None = None,
) -> NormalizedRecord:
    """Produce the canonical record for one raw record.

    Args:
        raw: The untyped source record.
        record_type: Family from the classifier; classified here if omitted.
        index: Position in the input, used for a fallback id and ordering.
        config: Heuristic constants (exclusion categories).
    """
    config = config or AnalysisConfig()
    if record_type is None:
        record_type = classify_record(raw)

    rec = NormalizedRecord(
        id=_to_text(_first(raw, _ID_FIELDS)) or f"record-{index}",
        record_type=record_type,
        raw=raw,
        index=index,
    )

    if record_type == PROCESS:
        _normalize_process(rec, raw)
    elif record_type == INTERNAL_RFT:
        _normalize_internal(rec, raw)
    elif record_type == EXTERNAL_RFT:
        _normalize_external(rec, raw, config)
    else:
        rec.start_date = parse_date(raw.get("date"))
        rec.end_date = rec.start_date
        rec.is_rft = None

    rec.stage = detect_stage(raw, record_type)
    rec.department = _department(raw, record_type)
    return rec


def normalize_records(
    raws: list[dict],
    record_types: list[str] | None = None,
    config: AnalysisConfig | None = None,
) -> list[NormalizedRecord]:
    """Normalize a batch of raw records in input order."""
    config = config or AnalysisConfig()
    if record_types is None:
        record_types = [classify_record(r) for r in raws]
    records = [
        normalize_record(raw, rtype, index=i, config=config)
        for i, (raw, rtype) in enumerate(zip(raws, record_types))
    ]
    undated = sum(1 for r in records if r.start_date is None and r.end_date is None)
    logger.debug("Normalized %d records (%d without usable dates)", len(records), undated)
    return records
