"""
Tests for input sanitization and broker number parsing.
"""

import pytest
from decimal import Decimal
from hypothesis import given, strategies as st

from core.exceptions import FileFormatError, ValidationError
from lib.validators import (
    guard_formula_injection,
    parse_decimal,
    sanitize_text,
    strip_unprintable,
    validate_currency,
    validate_decimal_string,
    validate_isin,
    validate_upload,
    validated_decimal,
)


class TestDecimalParsing:

    @pytest.mark.parametrize("raw,expected", [
        ("1.234,56", Decimal("1234.56")),
        ("-1,234.56", Decimal("-1234.56")),
        ("12,5", Decimal("12.5")),
        ("12.5", Decimal("12.5")),
        ("1.234.567", Decimal("1234567")),
        ("1 234,50", Decimal("1234.50")),
        ("-1505,00", Decimal("-1505.00")),
        ("+3", Decimal("3")),
    ])
    def test_separator_detection(self, raw, expected):
        assert validated_decimal(raw, "amount") == expected

    def test_explicit_comma_separator(self):
        assert validated_decimal("1.000", "quantity", ",") == Decimal("1000")

    def test_explicit_dot_separator(self):
        assert validated_decimal("1,000", "quantity", ".") == Decimal("1000")

    def test_repeated_decimal_separator_rejected(self):
        with pytest.raises(ValidationError):
            validated_decimal("1.234.5", "price", ".")

    @pytest.mark.parametrize("raw", ["", "   ", "abc", "1,2,3,4", "12.5.6,7", "1e5", "NaN", "--1"])
    def test_rejects_non_numbers(self, raw):
        with pytest.raises(ValidationError) as exc_info:
            validate_decimal_string(raw, "amount")
        assert exc_info.value.field == "amount"

    def test_non_breaking_space_grouping(self):
        assert validated_decimal("1\u00a0234,5", "amount") == Decimal("1234.5")

    @given(st.decimals(min_value=-10**9, max_value=10**9, places=2, allow_nan=False, allow_infinity=False))
    def test_plain_decimal_strings_parse_exactly(self, value):
        text = format(value, 'f')
        assert parse_decimal(validate_decimal_string(text, "amount"), "amount", '.') == value


class TestTextSanitization:

    def test_strip_unprintable_keeps_whitespace_controls(self):
        assert strip_unprintable("a\x00b\tc\nd\x07") == "ab\tc\nd"

    @pytest.mark.parametrize("raw", ["=SUM(A1:A3)", "+1", "-1", "@cmd"])
    def test_formula_prefix_is_quoted(self, raw):
        assert guard_formula_injection(raw) == "'" + raw

    def test_plain_text_untouched(self):
        assert guard_formula_injection("Apple Inc") == "Apple Inc"

    def test_sanitize_pipeline(self):
        assert sanitize_text("  =HYPERLINK(\"x\")\x00 ", "product_name", 255) == "'=HYPERLINK(\"x\")"

    def test_required_field_empty(self):
        with pytest.raises(ValidationError) as exc_info:
            sanitize_text("  \x00 ", "product_name", 255)
        assert exc_info.value.field == "product_name"

    def test_optional_field_may_be_empty(self):
        assert sanitize_text(None, "description", 1024, required=False) == ""

    def test_max_length(self):
        assert sanitize_text("x" * 10, "product_name", 10) == "x" * 10
        with pytest.raises(ValidationError):
            sanitize_text("x" * 11, "product_name", 10)

    def test_formula_guard_can_be_disabled(self):
        assert sanitize_text("-123", "order_id", 64, guard_formula=False) == "-123"


class TestCodes:

    def test_isin_is_upper_cased(self):
        assert validate_isin(" us0378331005 ") == "US0378331005"

    @pytest.mark.parametrize("blank", [None, "", "   "])
    def test_blank_isin_is_none(self, blank):
        assert validate_isin(blank) is None

    @pytest.mark.parametrize("bad", ["US037833100", "1S0378331005", "US037833100X"])
    def test_malformed_isin(self, bad):
        with pytest.raises(ValidationError):
            validate_isin(bad)

    def test_currency(self):
        assert validate_currency(" usd ") == "USD"
        for bad in (None, "", "US", "USDT", "U$D"):
            with pytest.raises(ValidationError):
                validate_currency(bad)


class TestUploadGuard:

    def test_empty(self):
        with pytest.raises(FileFormatError):
            validate_upload(b"", 100)

    def test_oversized(self):
        with pytest.raises(FileFormatError):
            validate_upload(b"x" * 101, 100)

    def test_binary(self):
        with pytest.raises(FileFormatError):
            validate_upload(b"PK\x03\x04\x00\x00", 100)

    def test_accepts_text(self):
        assert validate_upload(b"a,b,c\n", 100) == b"a,b,c\n"
