"""
Tests for the DeGiro account statement adapter.

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

from datetime import datetime
from decimal import Decimal
from io import BytesIO

import pytest

from core.exceptions import FileFormatError
from lib.parsers import DegiroParser, detect_source, get_parser
from lib.parsers.canonical_transaction import BuySell, TransactionSubType, TransactionType
from lib.parsers.degiro_parser import parse_order_date

HEADER = "Data,Hora,Data Valor,Produto,ISIN,Descrição,Taxa de Câmbio,Variação,,Saldo,,ID da Ordem\n"


@pytest.fixture
def parsed(degiro_csv):
    parser = DegiroParser()
    return parser, parser.parse(degiro_csv)


def _by_text(transactions, prefix):
    return next(t for t in transactions if t.raw_text.startswith(prefix))


class TestDegiroParsing:

    def test_counts(self, parsed):
        parser, transactions = parsed
        assert len(transactions) == 7
        assert [s.category for s in parser.skipped] == ['unrecognized']
        assert all(t.source == "degiro" for t in transactions)
        assert not any(t.transaction_type == TransactionType.PRODUCT_CHANGE for t in transactions)

    def test_buy(self, parsed):
        _, transactions = parsed
        buy = _by_text(transactions, "Compra")
        assert buy.transaction_type == TransactionType.STOCK
        assert buy.buy_sell == BuySell.BUY
        assert buy.transaction_date == datetime(2024, 1, 15, 9, 30)
        assert buy.product_name == "Apple Inc"
        assert buy.isin == "US0378331005"
        assert buy.quantity == Decimal("10")
        assert buy.price == Decimal("150.5")
        assert buy.currency == "USD"
        assert buy.amount == Decimal("-1505.00")
        assert buy.order_id == "abc-123"

    def test_commission_attached_by_order_id(self, parsed):
        _, transactions = parsed
        assert _by_text(transactions, "Compra").commission == Decimal("2.00")
        commission_row = _by_text(transactions, "Comissões")
        assert commission_row.transaction_type == TransactionType.FEE
        assert commission_row.amount == Decimal("-2.00")

    def test_tax_and_fees_are_forced_negative(self, parsed):
        _, transactions = parsed
        tax = _by_text(transactions, "Imposto")
        assert tax.subtype == TransactionSubType.TAX
        assert tax.amount == Decimal("-0.36")
        assert tax.source_amount == Decimal("0.36")
        fee = _by_text(transactions, "Custo de Conectividade")
        assert fee.amount == Decimal("-2.50")

    def test_dividend_uses_product_column(self, parsed):
        _, transactions = parsed
        dividend = _by_text(transactions, "Dividendo")
        assert dividend.transaction_type == TransactionType.DIVIDEND
        assert dividend.product_name == "APPLE INC"
        assert dividend.amount == Decimal("2.40")

    def test_deposit(self, parsed):
        _, transactions = parsed
        deposit = _by_text(transactions, "Depósito")
        assert deposit.transaction_type == TransactionType.CASH
        assert deposit.subtype == TransactionSubType.DEPOSIT
        assert deposit.amount == Decimal("2000.00")
        assert deposit.isin is None

    def test_option(self, parsed):
        _, transactions = parsed
        option = _by_text(transactions, "Venda 1 FLW")
        assert option.transaction_type == TransactionType.OPTION
        assert option.subtype == TransactionSubType.PUT
        assert option.buy_sell == BuySell.SELL
        assert option.amount == Decimal("120.00")
        assert option.commission == Decimal(0)

    def test_file_like_input(self, degiro_csv):
        assert len(DegiroParser().parse(BytesIO(degiro_csv))) == 7

    def test_byte_order_mark(self, degiro_csv):
        assert len(DegiroParser().parse(b'\xef\xbb\xbf' + degiro_csv)) == 7


class TestDegiroRowErrors:

    def test_invalid_date_and_amount(self):
        content = (
            HEADER
            + "2024/01/15,09:30,,,,Depósito,,EUR,\"100,00\",EUR,,\n"
            + "15-01-2024,09:30,,,,Depósito,,EUR,abc,EUR,,\n"
            + "16-01-2024,,,,,Depósito,,EUR,\"100,00\",EUR,,\n"
        )
        parser = DegiroParser()
        transactions = parser.parse(content.encode('utf-8'))
        assert [s.category for s in parser.skipped] == ['invalid_date', 'invalid_amount']
        assert len(transactions) == 1
        assert transactions[0].transaction_date == datetime(2024, 1, 16)

    def test_row_with_extra_field_is_skipped(self):
        content = (
            HEADER
            + "16-01-2024,10:00,,,,Depósito,,EUR,\"100,00\",EUR,,\n"
            + "17-01-2024,10:00,,,,Depósito,,EUR,\"50,00\",EUR,,,extra\n"
        )
        parser = DegiroParser()
        transactions = parser.parse(content.encode('utf-8'))
        assert len(transactions) == 1
        assert transactions[0].amount == Decimal("100")
        assert [s.category for s in parser.skipped] == ['malformed_row']
        assert parser.skipped[0].text.endswith("extra")

    def test_ragged_first_row_keeps_column_positions(self):
        content = (
            HEADER
            + "17-01-2024,10:00,,,,Depósito,,EUR,\"50,00\",EUR,,,extra\n"
            + "16-01-2024,10:00,,,,Depósito,,EUR,\"100,00\",EUR,,\n"
        )
        parser = DegiroParser()
        transactions = parser.parse(content.encode('utf-8'))
        assert len(transactions) == 1
        assert transactions[0].transaction_date == datetime(2024, 1, 16, 10, 0)
        assert transactions[0].amount == Decimal("100")
        assert [(s.row, s.category) for s in parser.skipped] == [(0, 'malformed_row')]

    def test_parse_order_date(self):
        assert parse_order_date("31-12-2024", "23:59") == datetime(2024, 12, 31, 23, 59)
        assert parse_order_date("31-12-2024", "") == datetime(2024, 12, 31)
        assert parse_order_date("2024-12-31") is None


class TestDegiroFileErrors:

    def test_empty_file(self):
        with pytest.raises(FileFormatError):
            DegiroParser().parse(b"")

    def test_too_few_columns(self):
        with pytest.raises(FileFormatError):
            DegiroParser().parse(b"Data,Hora,Produto\n15-01-2024,09:30,X\n")

    def test_not_utf8(self):
        with pytest.raises(FileFormatError):
            DegiroParser().parse(HEADER.encode('utf-8') + b"\xff\xfe\xfa,broken\n")


def test_factory_and_detection(degiro_csv, ibkr_xml):
    assert isinstance(get_parser("DeGiro"), DegiroParser)
    assert detect_source(degiro_csv) == "degiro"
    assert detect_source(ibkr_xml) == "ibkr"
    with pytest.raises(ValueError):
        get_parser("revolut")
