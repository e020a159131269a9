"""
Option Trade Matching

Options can be written (sold to open), so unlike stocks each product keeps
two FIFO books: open longs and open shorts. Per product, in date order:
- a buy first closes open shorts, any remainder opens a long
- a sell first closes open longs, any remainder opens a short

Products are keyed by product name (strike and expiry are part of it).
Values are per-contract amounts in the reporting currency, so contract
multipliers are already included.
"""

from collections import defaultdict
from decimal import Decimal
from typing import Dict, Iterable, List

from lib.parsers.canonical_transaction import BuySell, ProcessedTransaction, TransactionType
from lib.utils.logging_config import get_perf_logger, setup_logger
from modules.tax.engine import chronological_key
from modules.tax.tax_events import OptionPosition, OptionTrade, PositionSide

logger = setup_logger(__name__)


class OptionMatcher:

    def __init__(self, transactions: Iterable[ProcessedTransaction]):
        self.transactions = sorted(
            (t for t in transactions if t.transaction_type == TransactionType.OPTION and t.is_trade()),
            key=chronological_key
        )
        self.longs: Dict[str, List[OptionPosition]] = defaultdict(list)
        self.shorts: Dict[str, List[OptionPosition]] = defaultdict(list)
        self.trades: List[OptionTrade] = []

    def process_all_transactions(self) -> None:
        with get_perf_logger(logger, "option matching", threshold_ms=500):
            for txn in self.transactions:
                self.process_transaction(txn)
        logger.debug(f"Matched {len(self.trades)} option round trips")

    def process_transaction(self, txn: ProcessedTransaction) -> None:
        if txn.quantity <= 0:
            logger.warning(f"Skipping option '{txn.product_name}' with zero quantity (order {txn.order_id})")
            return

        if txn.buy_sell == BuySell.BUY:
            closing, opening_book, side = self.shorts[txn.product_name], self.longs, PositionSide.LONG
        else:
            closing, opening_book, side = self.longs[txn.product_name], self.shorts, PositionSide.SHORT

        unit_value = abs(txn.amount_reporting) / txn.quantity
        unit_commission = txn.commission_reporting / txn.quantity
        remaining = txn.quantity

        while remaining > 0 and closing:
            position = closing[0]
            matched = min(remaining, position.quantity)
            self.trades.append(OptionTrade(
                product_name=txn.product_name,
                subtype=txn.subtype.value,
                side=position.side,
                open_date=position.open_date,
                close_date=txn.transaction_date.date(),
                quantity=matched,
                open_value=matched * position.unit_value,
                close_value=matched * unit_value,
                commission=matched * (position.commission_per_unit + unit_commission),
            ))
            position.quantity -= matched
            remaining -= matched
            if position.is_exhausted():
                del closing[0]

        if remaining > 0:
            opening_book[txn.product_name].append(OptionPosition(
                product_name=txn.product_name,
                subtype=txn.subtype.value,
                side=side,
                open_date=txn.transaction_date.date(),
                quantity=remaining,
                unit_value=unit_value,
                commission_per_unit=unit_commission,
                isin=txn.isin,
            ))

    def get_trades(self) -> List[OptionTrade]:
        return list(self.trades)

    def get_open_positions(self) -> List[OptionPosition]:
        positions = []
        for book in (self.longs, self.shorts):
            for product_positions in book.values():
                positions.extend(product_positions)
        return sorted(positions, key=lambda p: (p.product_name, p.open_date))

    def total_delta(self) -> Decimal:
        return sum((t.delta for t in self.trades), Decimal(0))
