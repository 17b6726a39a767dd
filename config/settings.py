"""Application settings loaded from environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    # Lot identity
    lot_id_pattern: str = r"^[A-Z]{3}\d{4}$"
    pending_lot_sentinel: str = "PENDING"

    # Work-order resolution
    proximity_window_days: float = 30.0  # temporal phase match window
    min_orphan_records: int = 2  # lots without Process records need at least this many

    # RFT evaluation (JSON list in env, e.g. '["Process Clarification"]')
    rft_exclusion_categories: list[str] = ["Process Clarification", "Clarification", "Info Only"]

    # Insight thresholds (percent)
    rft_high_risk_pct: float = 70.0
    rft_target_pct: float = 85.0
    baseline_rft_pct: float = 85.0
    top_issue_limit: int = 5

    # Upload limits
    max_upload_mb: int = 25


settings = Settings()
