"""
Error taxonomy shared by every layer of the engine.

Callers (HTTP handlers, CLIs) map these onto responses using ``http_status``:
validation, not-found and conflict errors are the caller's fault, storage
errors are ours.
"""

from typing import Optional


class FinanceEngineError(Exception):
    """Base exception for all engine errors."""

    http_status = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(FinanceEngineError):
    """
    Missing or invalid input: unknown participant, bad status value,
    malformed amounts.

    Carries the individual issues so the caller can show all of them at once.
    """

    http_status = 400

    def __init__(self, message: str, issues: Optional[list] = None):
        super().__init__(message)
        self.issues = issues or []


class NotFoundError(FinanceEngineError):
    """Aggregate does not exist or is not owned by the caller."""

    http_status = 404

    def __init__(self, entity_type: str, entity_id):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type.capitalize()} not found: {entity_id}")


class ConflictError(FinanceEngineError):
    """Request is well-formed but conflicts with current state."""

    http_status = 409


class StorageError(FinanceEngineError):
    """Underlying persistence failure."""

    http_status = 500


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
