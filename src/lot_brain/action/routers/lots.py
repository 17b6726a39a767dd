"""Lot analysis routes."""

import logging
from dataclasses import replace
from typing import Any, Optional

from fastapi import APIRouter, File, HTTPException, UploadFile
from pydantic import BaseModel, Field

from config.settings import settings
from lot_brain.discovery.lot_engine import analyze_lots
from lot_brain.discovery.lot_models import AnalysisConfig
from lot_brain.ingestion.record_loader import RecordLoadError, load_bytes

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/lots", tags=["lots"])


# ---------------------------------------------------------------------------
# Request Models
# ---------------------------------------------------------------------------


class AnalyzeRequest(BaseModel):
    records: list[Any] = Field(default_factory=list)
    include_records: bool = True
    proximity_window_days: Optional[float] = None


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


def _config(proximity_window_days: Optional[float] = None) -> AnalysisConfig:
    config = AnalysisConfig.from_settings(settings)
    if proximity_window_days is not None:
        config = replace(config, proximity_window_days=proximity_window_days)
    return config


@router.post("/analyze")
async def analyze(req: AnalyzeRequest) -> dict:
    """Reconcile the posted records into lots and return metrics."""
    result = analyze_lots(req.records, _config(req.proximity_window_days))
    return result.to_dict(include_records=req.include_records)


@router.post("/upload")
async def upload(file: UploadFile = File(...), include_records: bool = False) -> dict:
    """Analyze an uploaded JSON, CSV or Excel export."""
    contents = await file.read()
    if len(contents) > settings.max_upload_mb * 1024 * 1024:
        raise HTTPException(status_code=413, detail=f"File exceeds {settings.max_upload_mb} MB")

    try:
        records = load_bytes(contents, file.filename or "")
    except RecordLoadError as exc:
        logger.warning("Rejected upload %s: %s", file.filename, exc)
        raise HTTPException(status_code=400, detail=str(exc))

    result = analyze_lots(records, _config())
    out = result.to_dict(include_records=include_records)
    out["file_name"] = file.filename
    return out
