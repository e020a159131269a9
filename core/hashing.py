"""
Hashing Module - Content Hashes

Canonical JSON serialization and SHA256 hashing. The content hash of a
processed transaction is the idempotency key the persistence layer uses to
reject re-uploads of the same row.

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any


def _decimal_text(value: Decimal) -> str:
    """Render a Decimal without exponent or trailing zeros (100.00 -> '100')."""
    normalized = value.normalize()
    text = format(normalized, 'f')
    return '0' if text in ('-0', '0') else text


def canonical_json_dumps(obj: Any) -> str:
    """
    Serialize object to canonical JSON string.

    Ensures deterministic serialization for hashing:
    - Keys sorted alphabetically
    - No whitespace
    - Decimals as normalized strings (no float rounding)
    - Dates as ISO 8601

    Example:
        >>> canonical_json_dumps({"amount": Decimal("123.450"), "date": date(2024, 1, 15)})
        '{"amount":"123.45","date":"2024-01-15"}'
    """
    def default_handler(o):
        if isinstance(o, Decimal):
            return _decimal_text(o)
        elif isinstance(o, (date, datetime)):
            return o.isoformat()
        else:
            raise TypeError(f"Object of type {type(o).__name__} is not JSON serializable")

    return json.dumps(
        obj,
        sort_keys=True,
        separators=(',', ':'),
        default=default_handler,
        ensure_ascii=True
    )


def calculate_sha256(data: Any) -> str:
    """
    Calculate SHA256 hash of data.

    Returns:
        SHA256 hex digest prefixed with 'sha256:'
    """
    json_str = canonical_json_dumps(data)
    hash_obj = hashlib.sha256(json_str.encode('utf-8'))
    return f"sha256:{hash_obj.hexdigest()}"


def transaction_content_hash(transaction_date: date, raw_text: str, amount: Decimal) -> str:
    """
    Content hash of a transaction: a pure function of (date, raw description, amount).

    The full timestamp is hashed when the broker supplies one, so two fills
    of the same size and price on the same day stay distinct.
    """
    return calculate_sha256({
        "date": transaction_date.isoformat(),
        "description": raw_text,
        "amount": Decimal(amount),
    })
