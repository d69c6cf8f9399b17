"""
Validation Models

Results of request validation. Issues are collected rather than raised one
at a time, so a caller can show everything wrong with a request at once.
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field


class ValidationIssue(BaseModel):
    """One problem with one field of a request."""

    field: str = Field(..., description="Dotted path of the offending field")
    issue_type: str = Field(
        ...,
        description="Machine-readable kind, e.g. 'missing' or 'unknown_participant'",
    )
    message: str
    severity: Literal["error", "warning", "info"]
    suggested_fix: Optional[str] = None


class ValidationResult(BaseModel):
    """
    Outcome of checking a request.

    Schema checks (required fields, membership, shapes) run first; the
    plausibility checks only run when those pass.
    """

    subject: str = Field(..., description="Kind of request checked, e.g. 'bill'")
    checked_at: datetime = Field(default_factory=datetime.utcnow)

    schema_valid: bool
    semantic_valid: bool
    is_valid: bool

    issues: list[ValidationIssue] = Field(default_factory=list)
    # Messages of non-blocking issues
    warnings: list[str] = Field(default_factory=list)

    @property
    def errors(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.severity == "error"]

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)
