"""Record loading: JSON, CSV or Excel sources into a raw record list."""
from __future__ import annotations

import json
import logging
import zipfile
from io import BytesIO, StringIO
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

_EXCEL_EXTENSIONS = ("xlsx", "xlsm")
_LEGACY_EXCEL_EXTENSIONS = ("xls",)


class RecordLoadError(ValueError):
    """Input could not be turned into a list of records."""


def _clean_value(value: Any) -> Any:
    """Convert pandas/numpy scalars to plain JSON-compatible Python values."""
    if value is None:
        return None
    if isinstance(value, float) and np.isnan(value):
        return None
    if value is pd.NaT:
        return None
    if isinstance(value, pd.Timestamp):
        return value.isoformat()
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, np.floating):
        return None if np.isnan(value) else float(value)
    if isinstance(value, np.bool_):
        return bool(value)
    return value


def records_from_dataframe(df: pd.DataFrame) -> list[dict]:
    """One dict per row; blank cells become None."""
    if df.empty:
        return []
    df = df.rename(columns=lambda c: str(c).strip())
    return [
        {col: _clean_value(val) for col, val in row.items()}
        for row in df.to_dict(orient="records")
    ]


def parse_records(data: Any) -> list[dict]:
    """Validate decoded JSON and return its record list.

    Accepts an array of objects or ``{"records": [...]}``.

    Raises:
        RecordLoadError: for any other shape.
    """
    if isinstance(data, dict):
        if "records" not in data:
            raise RecordLoadError("Expected an object with a 'records' array")
        data = data["records"]
    if not isinstance(data, list):
        raise RecordLoadError(f"Expected a list of records, got {type(data).__name__}")
    return data


def load_json_text(text: str) -> list[dict]:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise RecordLoadError(f"Invalid JSON: {exc}") from exc
    return parse_records(data)


def load_bytes(contents: bytes, file_name: str = "") -> list[dict]:
    """Decode uploaded file contents by extension (json, csv, xlsx).

    Files without an extension are read as JSON. Legacy .xls workbooks are
    rejected; only the openpyxl engine is installed.
    """
    ext = file_name.rsplit(".", 1)[-1].lower() if "." in file_name else "json"
    if ext in _LEGACY_EXCEL_EXTENSIONS:
        raise RecordLoadError(f"Legacy .xls workbooks are not supported; save {file_name} as .xlsx")
    try:
        if ext in _EXCEL_EXTENSIONS:
            df = pd.read_excel(BytesIO(contents), engine="openpyxl")
        elif ext == "csv":
            df = pd.read_csv(StringIO(contents.decode("utf-8-sig")))
        else:
            return load_json_text(contents.decode("utf-8-sig"))
    except RecordLoadError:
        raise
    except (
        ValueError,
        UnicodeDecodeError,
        pd.errors.ParserError,
        zipfile.BadZipFile,
        KeyError,
    ) as exc:
        raise RecordLoadError(f"Could not read {file_name or 'upload'}: {exc}") from exc

    records = records_from_dataframe(df)
    logger.info("Loaded %d records from %s", len(records), file_name or ext)
    return records


def load_records(source: Any) -> list[dict]:
    """Load raw records from a path, JSON string, DataFrame or decoded JSON.

    Raises:
        RecordLoadError: when the source is unreadable or has the wrong shape.
    """
    if isinstance(source, pd.DataFrame):
        return records_from_dataframe(source)
    if isinstance(source, Path):
        return _load_path(source)
    if isinstance(source, str):
        stripped = source.lstrip()
        if stripped.startswith(("[", "{")):
            return load_json_text(source)
        return _load_path(Path(source))
    if isinstance(source, bytes):
        return load_bytes(source)
    return parse_records(source)


def _load_path(path: Path) -> list[dict]:
    if not path.is_file():
        raise RecordLoadError(f"No such file: {path}")
    try:
        contents = path.read_bytes()
    except OSError as exc:
        raise RecordLoadError(f"Could not read {path}: {exc}") from exc
    return load_bytes(contents, path.name)
