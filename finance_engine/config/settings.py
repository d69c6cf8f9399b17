"""
Engine configuration.

Every knob is read from the environment (or a local .env file) through
pydantic-settings. Most of them shape how the engine keeps its aggregates
consistent: the categories used for mirrored ledger entries, how hard a
best-effort step is retried, and which document store backs everything.
"""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path
import warnings

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GoogleSheetsSettings(BaseSettings):
    """Where the spreadsheet backend lives and how its tabs are named."""

    model_config = SettingsConfigDict(env_prefix="GOOGLE_SHEETS_", extra="ignore")

    credentials_path: str = Field(..., description="Service account key file")
    spreadsheet_id: str = Field(..., description="Spreadsheet holding every collection")

    bills_sheet_name: str = "Bills"
    transactions_sheet_name: str = "Transactions"
    budgets_sheet_name: str = "Budgets"
    goals_sheet_name: str = "Goals"
    audit_sheet_name: str = "AuditLog"

    @field_validator("credentials_path")
    @classmethod
    def credentials_file_present(cls, path: str) -> str:
        # Key files are often mounted after startup, so only warn
        if not Path(path).exists():
            warnings.warn(f"No service account key at {path}; Sheets calls will fail until it appears.")
        return path


class AppSettings(BaseSettings):
    """Engine-wide behaviour, read from the environment and .env."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_environment: str = Field(default="development", description="Deployment name")
    debug_mode: bool = False

    storage_backend: str = Field(
        default="memory",
        pattern="^(memory|google_sheets)$",
        description="Document store used for all aggregates",
    )

    # Mirrored ledger entries
    bill_category: str = Field(
        default="Bills",
        description="Category of a bill's payment transaction when the bill has none",
    )
    settlement_category: str = Field(
        default="Bill Settlement",
        description="Category of income transactions mirrored from settlements",
    )

    # Best-effort steps
    secondary_step_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Tries for a retry-safe step such as mirror cleanup",
    )
    secondary_retry_min_wait_seconds: float = Field(default=0.2, ge=0.0)
    secondary_retry_max_wait_seconds: float = Field(default=2.0, ge=0.0)

    budget_on_track_threshold: float = Field(
        default=80.0,
        ge=0.0,
        le=100.0,
        description="A budget at or under this percentage used is on track",
    )

    # Plausibility checks, warnings only
    future_date_tolerance_days: int = Field(
        default=7,
        description="Days ahead of today a date may sit before it is flagged",
    )
    max_transaction_amount: Decimal = Field(
        default=Decimal("10000000"),
        description="Amounts above this are flagged as suspicious",
    )


class Settings(BaseSettings):
    """
    Entry point for configuration.

    Sub-settings are built on access so the in-memory backend works without
    any Sheets variables set.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def app(self) -> AppSettings:
        return AppSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()


@lru_cache()
def get_settings() -> Settings:
    """Process-wide settings; tests reset them with get_settings.cache_clear()."""
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Startup check of the configuration.

    Maps each section to whether it loaded, with a ``<section>_error`` entry
    holding the message for sections that did not. The Sheets section is
    only loaded when it is the configured backend.
    """
    settings = get_settings()
    report: dict = {}

    try:
        app = settings.app
    except Exception as e:
        report.update(app=False, app_error=str(e))
        return report
    report["app"] = True

    if app.storage_backend != "google_sheets":
        return report

    try:
        settings.google_sheets
    except Exception as e:
        report.update(google_sheets=False, google_sheets_error=str(e))
    else:
        report["google_sheets"] = True
    return report
