"""
Input Sanitization and Validation

Guards applied to broker-supplied text before it reaches persistence or a
spreadsheet export:
- non-printable characters are stripped (tab, newline, CR survive)
- required fields must be non-empty, all fields respect a maximum length
- text starting with a formula character is neutralized with a leading quote
- numeric strings are checked before they are parsed

Failures raise ValidationError naming the field; callers drop that row only.
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Optional

from core.exceptions import FileFormatError, InternalConsistencyError, ValidationError
from lib.utils.logging_config import setup_logger

logger = setup_logger(__name__)

MAX_PRODUCT_NAME_LENGTH = 255
MAX_DESCRIPTION_LENGTH = 1024
MAX_ORDER_ID_LENGTH = 64
ISIN_LENGTH = 12

FORMULA_PREFIXES = ('=', '+', '-', '@', '\t', '\r')
ALLOWED_CONTROL_CHARS = ('\t', '\n', '\r')

_ISIN_RE = re.compile(r'^[A-Z]{2}[A-Z0-9]{9}[0-9]$')
_CURRENCY_RE = re.compile(r'^[A-Z]{3}$')
_DECIMAL_RE = re.compile(r'^[+-]?(\d{1,3}(([ .,])\d{3})?(\3\d{3})*|\d+)([.,]\d+)?$')


def strip_unprintable(value: str) -> str:
    """Remove non-printable characters, keeping tab, newline and carriage return."""
    return ''.join(ch for ch in value if ch.isprintable() or ch in ALLOWED_CONTROL_CHARS)


def guard_formula_injection(value: str) -> str:
    """Prefix a single quote when the text would be read as a spreadsheet formula."""
    if value[:1] in ('\t', '\r'):
        return "'" + value
    trimmed = value.strip()
    if trimmed and trimmed[0] in FORMULA_PREFIXES:
        return "'" + value
    return value


def validate_not_empty(value: str, field: str) -> str:
    if not value or not value.strip():
        raise ValidationError(field, "must not be empty")
    return value


def validate_max_length(value: str, max_length: int, field: str) -> str:
    if len(value) > max_length:
        raise ValidationError(field, f"length {len(value)} exceeds maximum of {max_length}")
    return value


def sanitize_text(
    value: Optional[str],
    field: str,
    max_length: int,
    required: bool = True,
    guard_formula: bool = True
) -> str:
    """
    Full sanitization pipeline for a free-text field.

    Non-breaking spaces are folded to plain spaces before stripping, since
    broker exports use them as thousands and word separators.

    Raises:
        ValidationError: If the field is required but empty, or too long.
    """
    text = strip_unprintable((value or '').replace('\u00a0', ' ')).strip()

    if required:
        validate_not_empty(text, field)
    validate_max_length(text, max_length, field)

    if guard_formula and text:
        text = guard_formula_injection(text)
    return text


def validate_isin(value: Optional[str]) -> Optional[str]:
    """Return the upper-cased ISIN, None for blanks.

    Raises:
        ValidationError: If a non-blank value is not a well-formed ISIN.
    """
    if value is None or not value.strip():
        return None
    isin = value.strip().upper()
    if len(isin) != ISIN_LENGTH or not _ISIN_RE.match(isin):
        raise ValidationError("isin", f"'{value}' is not a valid ISIN")
    return isin


def validate_currency(value: Optional[str]) -> str:
    code = (value or '').strip().upper()
    if not _CURRENCY_RE.match(code):
        raise ValidationError("currency", f"'{value}' is not a 3-letter currency code")
    return code


def validate_decimal_string(value: Optional[str], field: str) -> str:
    """
    Check that a broker number string is parseable.

    Accepts '.' or ',' as decimal separator and ' ', '.' or ',' as
    thousands separator (e.g. '1.234,56', '-1,234.56', '12,5').

    Raises:
        ValidationError: If the string is empty or not a number.
    """
    text = (value or '').replace('\u00a0', ' ').strip()
    if not text:
        raise ValidationError(field, "numeric value is empty")
    if not _DECIMAL_RE.match(text):
        raise ValidationError(field, f"'{value}' is not a number")
    return text


def parse_decimal(value: str, field: str, decimal_separator: Optional[str] = None) -> Decimal:
    """
    Parse a string that already passed validate_decimal_string.

    With decimal_separator given ('.' or ','), the other character is
    treated as grouping. Without it, the right-most separator is the decimal
    one when both appear, and a lone separator is always decimal.

    Raises:
        InternalConsistencyError: If the validated string still fails to parse.
    """
    text = value.replace('\u00a0', '').replace(' ', '').strip()

    if decimal_separator is None:
        if '.' in text and ',' in text:
            decimal_separator = ',' if text.rfind(',') > text.rfind('.') else '.'
        elif text.count(',') == 1:
            decimal_separator = ','
        elif text.count('.') == 1:
            decimal_separator = '.'
        else:
            decimal_separator = '.' if ',' in text else ','

    grouping = ',' if decimal_separator == '.' else '.'
    text = text.replace(grouping, '').replace(decimal_separator, '.')

    try:
        result = Decimal(text)
    except InvalidOperation as e:
        logger.error(f"Pre-validated {field} value '{value}' failed to parse")
        raise InternalConsistencyError(f"{field}: validated value '{value}' is not a number") from e
    if not result.is_finite():
        raise InternalConsistencyError(f"{field}: validated value '{value}' is not finite")
    return result


def validated_decimal(value: Optional[str], field: str, decimal_separator: Optional[str] = None) -> Decimal:
    """validate_decimal_string followed by parse_decimal.

    Raises:
        ValidationError: If the string is not a number, or uses the given
            decimal separator more than once.
    """
    text = validate_decimal_string(value, field)
    if decimal_separator and text.count(decimal_separator) > 1:
        raise ValidationError(field, f"'{value}' has more than one '{decimal_separator}' decimal separator")
    return parse_decimal(text, field, decimal_separator)


def validate_upload(data: bytes, max_bytes: int) -> bytes:
    """
    Reject uploads that cannot be a text export.

    Raises:
        FileFormatError: If the payload is empty, larger than max_bytes,
            or contains NUL bytes (binary content).
    """
    if not data:
        raise FileFormatError("Uploaded file is empty")
    if len(data) > max_bytes:
        raise FileFormatError(f"Uploaded file is {len(data)} bytes, limit is {max_bytes}")
    if b'\x00' in data[:8192]:
        raise FileFormatError("Uploaded file looks binary, expected CSV or XML text")
    return data
