from __future__ import annotations


class AppError(Exception):
    """Base error for domain/application exceptions."""


class NotFound(AppError):
    """Raised when a requested tenant or record is missing from the source."""


class ValidationError(AppError):
    """Raised for input validation beyond schema validation (table names, CLI arguments)."""


class StoreUnavailable(AppError):
    """Raised when the relational source or the graph target cannot be reached."""
