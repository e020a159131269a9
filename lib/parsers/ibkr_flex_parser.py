"""
Interactive Brokers Flex Query Parser

Reads the XML Flex Query report:

    <FlexQueryResponse>
      <FlexStatements>
        <FlexStatement accountId="U1234567">
          <Trades><Trade assetCategory="STK" ... /></Trades>
          <CashTransactions><CashTransaction type="Dividends" ... /></CashTransactions>
        </FlexStatement>
      </FlexStatements>
    </FlexQueryResponse>

IBKR reports tradeMoney positive for buys (cost) and negative for sells, so
the canonical amount is its negation. Summary rows are skipped: trades must be
EXECUTION rows, cash transactions DETAIL rows.
"""

import xml.etree.ElementTree as ET
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import ValidationError as ModelValidationError

from core.exceptions import FileFormatError, ValidationError
from lib.parsers.base import BrokerParser, Stream, read_bytes
from lib.parsers.canonical_transaction import (
    BuySell,
    CanonicalTransaction,
    TransactionSubType,
    TransactionType,
)
from lib.utils.logging_config import get_perf_logger, setup_logger
from lib.validators import validated_decimal

logger = setup_logger(__name__)

ROOT_TAG = 'FlexQueryResponse'
INTERNAL_FX_EXCHANGE = 'IDEALFX'

ASSET_CATEGORIES = {
    'STK': TransactionType.STOCK,
    'OPT': TransactionType.OPTION,
}
PUT_CALL = {
    'P': TransactionSubType.PUT,
    'C': TransactionSubType.CALL,
}


def parse_ibkr_datetime(value: str) -> datetime:
    """'20240115;093000' or '20240115' -> datetime.

    Raises:
        ValueError: If the value matches neither layout.
    """
    value = (value or '').strip()
    layout = '%Y%m%d;%H%M%S' if ';' in value else '%Y%m%d'
    return datetime.strptime(value, layout)


def _decimal_attr(element: ET.Element, name: str, default: Optional[Decimal] = None) -> Decimal:
    raw = (element.get(name) or '').strip()
    if not raw and default is not None:
        return default
    return validated_decimal(raw, name, '.')


class IbkrFlexParser(BrokerParser):
    """Parser for Interactive Brokers Flex Query XML exports."""

    source = "ibkr"

    def read_root(self, stream: Stream) -> ET.Element:
        """
        Raises:
            FileFormatError: If the XML is malformed or not a Flex Query response.
        """
        data = read_bytes(stream)
        try:
            root = ET.fromstring(data)
        except ET.ParseError as e:
            raise FileFormatError(f"IBKR Flex XML is malformed: {e}") from e
        if root.tag != ROOT_TAG:
            raise FileFormatError(f"Unexpected root element <{root.tag}>, expected <{ROOT_TAG}>")
        return root

    def parse(self, stream: Stream) -> List[CanonicalTransaction]:
        self.skipped = []
        with get_perf_logger(logger, "parse ibkr flex xml", threshold_ms=500):
            root = self.read_root(stream)

            transactions = []
            statements = root.findall('./FlexStatements/FlexStatement')
            logger.info(f"Read {len(statements)} IBKR flex statement(s)")
            for statement in statements:
                for idx, trade in enumerate(statement.findall('./Trades/Trade')):
                    tx = self._parse_trade(idx, trade)
                    if tx is not None:
                        transactions.append(tx)
                for idx, cash in enumerate(statement.findall('./CashTransactions/CashTransaction')):
                    tx = self._parse_cash(idx, cash)
                    if tx is not None:
                        transactions.append(tx)

        self._log_summary(len(transactions))
        return transactions

    def _parse_trade(self, idx: int, trade: ET.Element) -> Optional[CanonicalTransaction]:
        order_id = trade.get('ibOrderID', '')
        if trade.get('exchange', '') == INTERNAL_FX_EXCHANGE:
            logger.debug(f"Trade {idx}: skipping internal FX conversion (order {order_id})")
            return None
        level = trade.get('levelOfDetail')
        if level and level != 'EXECUTION':
            return None

        category = trade.get('assetCategory', '')
        transaction_type = ASSET_CATEGORIES.get(category)
        if transaction_type is None:
            self._skip(idx, 'unsupported_asset', f"unsupported asset category '{category}' (order {order_id})")
            return None
        subtype = TransactionSubType.NONE
        if transaction_type == TransactionType.OPTION:
            subtype = PUT_CALL.get(trade.get('putCall', '').upper(), TransactionSubType.NONE)

        raw_text = "{} {} {} @ {}".format(
            trade.get('buySell', ''), trade.get('quantity', ''), trade.get('symbol', ''), trade.get('tradePrice', '')
        )

        try:
            trade_date = parse_ibkr_datetime(trade.get('dateTime', ''))
            buy_sell = BuySell.normalize(trade.get('buySell', ''))
            trade_money = _decimal_attr(trade, 'tradeMoney')
            return CanonicalTransaction(
                source=self.source,
                transaction_date=trade_date,
                product_name=trade.get('description') or trade.get('symbol', ''),
                isin=trade.get('isin') or None,
                quantity=abs(_decimal_attr(trade, 'quantity')),
                price=_decimal_attr(trade, 'tradePrice'),
                multiplier=_decimal_attr(trade, 'multiplier', Decimal(1)),
                currency=trade.get('currency', ''),
                amount=-trade_money,
                source_amount=trade_money,
                transaction_type=transaction_type,
                subtype=subtype,
                buy_sell=buy_sell,
                order_id=order_id,
                commission=abs(_decimal_attr(trade, 'ibCommission', Decimal(0))),
                raw_text=raw_text,
            )
        except (ValueError, ValidationError, ModelValidationError) as e:
            self._skip(idx, 'invalid_trade', f"order {order_id}: {e}", raw_text)
            return None

    def _parse_cash(self, idx: int, cash: ET.Element) -> Optional[CanonicalTransaction]:
        if cash.get('levelOfDetail') != 'DETAIL':
            return None

        cash_type = cash.get('type', '')
        description = cash.get('description', '')
        try:
            amount = _decimal_attr(cash, 'amount')
            trans_date = parse_ibkr_datetime(cash.get('dateTime', ''))
        except (ValueError, ValidationError) as e:
            self._skip(idx, 'invalid_cash', f"{cash_type}: {e}", description)
            return None

        product_name = cash.get('symbol') or description
        isin = cash.get('isin') or None
        subtype = TransactionSubType.NONE
        normalized = amount

        if cash_type == 'Dividends':
            transaction_type = TransactionType.DIVIDEND
        elif cash_type == 'Withholding Tax':
            transaction_type = TransactionType.DIVIDEND
            subtype = TransactionSubType.TAX
            normalized = -abs(amount)
        elif cash_type == 'Deposits/Withdrawals':
            transaction_type = TransactionType.CASH
            subtype = TransactionSubType.DEPOSIT if amount > 0 else TransactionSubType.WITHDRAWAL
            product_name = 'Cash Transfer'
            isin = None
        elif cash_type == 'Other Fees':
            transaction_type = TransactionType.FEE
            normalized = -abs(amount)
            product_name = description or 'Other Fees'
        else:
            logger.debug(f"Cash transaction {idx}: ignoring type '{cash_type}'")
            return None

        try:
            return CanonicalTransaction(
                source=self.source,
                transaction_date=trans_date,
                product_name=product_name or cash_type,
                isin=isin,
                currency=cash.get('currency', ''),
                amount=normalized,
                source_amount=amount,
                transaction_type=transaction_type,
                subtype=subtype,
                raw_text=description,
            )
        except ModelValidationError as e:
            self._skip(idx, 'invalid_cash', f"{cash_type}: {e.error_count()} field error(s)", description)
            return None
