"""Validation package."""

from finance_engine.validation.validator import (
    RequestValidator,
    ensure_valid,
    parse_request,
)

__all__ = ["RequestValidator", "ensure_valid", "parse_request"]
