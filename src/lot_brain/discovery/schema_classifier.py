"""Schema classification: label each raw record with its record family.

Three incompatible feeds arrive mixed together. Priority order:
  1. An explicit source/category tag, when it names exactly one family
  2. The type-discriminator prefix ("Commercial Process", "Internal RFT", ...)
  3. Structural fallback on family-specific marker fields

Structural checks run last so that records carrying several type-like fields
are not misclassified.
"""

from __future__ import annotations

import logging
import re
from collections import Counter

from lot_brain.discovery.lot_models import (
    EXTERNAL_RFT,
    INTERNAL_RFT,
    PROCESS,
    UNKNOWN,
)

logger = logging.getLogger(__name__)

_TAG_FIELDS = ("source", "record_type", "recordType")
_DISCRIMINATOR_FIELDS = ("batchId", "batch_id", "id")

_PREFIXES: tuple[tuple[str, str], ...] = (
    ("commercial process", PROCESS),
    ("internal rft", INTERNAL_RFT),
    ("external rft", EXTERNAL_RFT),
)

# Tag values after stripping case and punctuation
_TAG_VALUES: dict[str, str] = {
    "process": PROCESS,
    "processmetrics": PROCESS,
    "commercialprocess": PROCESS,
    "internal": INTERNAL_RFT,
    "internalrft": INTERNAL_RFT,
    "external": EXTERNAL_RFT,
    "externalrft": EXTERNAL_RFT,
}

_PROCESS_BATCH_FIELDS = ("fg_batch", "bulk_batch", "fgBatch", "bulkBatch", "lot", "lotNumber")
_PROCESS_WO_FIELDS = ("assembly_wo", "cartoning_wo", "assemblyWo", "cartoningWo")
_INTERNAL_MARKERS = (
    "#_of_errors", "error_count", "errorCount", "form_title", "formTitle", "wo/lot#",
)
_EXTERNAL_LOT_FIELDS = ("lot", "lotNumber", "fg_lot")


def _present(raw: dict, key: str) -> bool:
    value = raw.get(key)
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True


def _from_tag(raw: dict) -> str | None:
    """Match an explicit source/category tag naming exactly one family."""
    for key in _TAG_FIELDS:
        value = raw.get(key)
        if not isinstance(value, str):
            continue
        family = _TAG_VALUES.get(re.sub(r"[^a-z]", "", value.lower()))
        if family:
            return family
    return None


def _from_prefix(raw: dict) -> str | None:
    """Match the type-discriminator string against the known prefixes."""
    for key in _DISCRIMINATOR_FIELDS:
        value = raw.get(key)
        if not isinstance(value, str):
            continue
        lowered = value.strip().lower()
        for prefix, family in _PREFIXES:
            if lowered.startswith(prefix):
                return family
    return None


def _from_structure(raw: dict) -> str | None:
    """Fall back to family-specific marker fields."""
    has_batch = any(_present(raw, f) for f in _PROCESS_BATCH_FIELDS)
    has_wo = any(_present(raw, f) for f in _PROCESS_WO_FIELDS)
    if has_batch and has_wo:
        return PROCESS
    if any(f in raw for f in _INTERNAL_MARKERS):
        return INTERNAL_RFT
    # lot + category (+ comment); the comment is often dropped by exports
    has_lot = any(_present(raw, f) for f in _EXTERNAL_LOT_FIELDS)
    if has_lot and "category" in raw:
        return EXTERNAL_RFT
    return None


def classify_record(raw: dict) -> str:
    """Return the record family for one raw record.

    Returns:
        One of "Process", "InternalRFT", "ExternalRFT" or "Unknown".
    """
    if not isinstance(raw, dict):
        return UNKNOWN
    return _from_tag(raw) or _from_prefix(raw) or _from_structure(raw) or UNKNOWN


def classify_records(raws: list[dict]) -> list[str]:
    """Classify a batch, logging the family mix."""
    types = [classify_record(r) for r in raws]
    counts = Counter(types)
    logger.info(
        "Classified %d records: %d Process, %d Internal RFT, %d External RFT, %d Unknown",
        len(types),
        counts[PROCESS],
        counts[INTERNAL_RFT],
        counts[EXTERNAL_RFT],
        counts[UNKNOWN],
    )
    return types
