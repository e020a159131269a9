"""
Error types for the ingestion and reporting pipeline.

Severity is encoded in the type:
- FileFormatError: the whole upload is rejected
- RowClassificationError / ValidationError: a single row is dropped
- MissingRateError: degraded to rate 1.0 by the caller
- InternalConsistencyError: the batch is aborted

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

from datetime import date
from typing import Optional


class TaxfolioError(Exception):
    """Base class for all pipeline errors."""
    pass


class FileFormatError(TaxfolioError):
    """Raised when an uploaded container (CSV/XML) cannot be parsed at all."""
    pass


class RowClassificationError(TaxfolioError):
    """Raised when a free-text description matches no known pattern."""

    def __init__(self, text: str, source: Optional[str] = None):
        self.text = text
        self.source = source
        super().__init__(f"Unrecognized transaction description: '{text}'")


class ValidationError(TaxfolioError):
    """Raised when a field is empty, oversized or malformed."""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


class MissingRateError(TaxfolioError):
    """Raised when no exchange rate exists for a (currency, date) pair."""

    def __init__(self, currency: str, day: date):
        self.currency = currency
        self.day = day
        super().__init__(f"No exchange rate for {currency} on {day.isoformat()}")


class InternalConsistencyError(TaxfolioError):
    """A pre-validated value failed to parse. Indicates a defect, not bad input."""
    pass
