"""
Tax Basis Engine - FIFO Lot Matching

Turns a user's processed stock trades into realized-gain records and the
lots still open afterwards:
1. Builds one lot book per instrument (ISIN, product name as fallback)
2. Replays trades chronologically; buys before sells on the same day
3. Matches each sale against the oldest lots first

Every run owns its books; nothing is shared between runs, so a report can be
abandoned mid-computation without side effects. Values stay at full Decimal
precision here.

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

import bisect
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from lib.parsers.canonical_transaction import BuySell, ProcessedTransaction, TransactionType
from lib.utils.logging_config import get_perf_logger, setup_logger
from modules.tax.tax_events import PurchaseLot, RealizedGain

logger = setup_logger(__name__)


def chronological_key(txn: ProcessedTransaction):
    """Sort key: by day, buys before sells within a day, then by time."""
    side = 0 if txn.buy_sell == BuySell.BUY else 1
    return (txn.transaction_date.date(), side, txn.transaction_date)


class InstrumentBook:
    """
    Lots of one instrument, ascending by acquisition date.

    The book exclusively owns its lots: matching decrements them in place
    and removes an exhausted lot by index.
    """

    def __init__(self, instrument: str):
        self.instrument = instrument
        self.lots: List[PurchaseLot] = []

    def add(self, lot: PurchaseLot) -> None:
        # Equal dates keep arrival order
        dates = [existing.acquisition_date for existing in self.lots]
        self.lots.insert(bisect.bisect_right(dates, lot.acquisition_date), lot)

    def available(self) -> Decimal:
        return sum((lot.quantity for lot in self.lots), Decimal(0))

    def match(self, sale: ProcessedTransaction) -> List[RealizedGain]:
        """Consume lots oldest first; any remainder becomes an unmatched record."""
        sale_date = sale.transaction_date.date()
        unit_price = sale.unit_price_reporting()
        remaining = sale.quantity
        records = []

        while remaining > 0 and self.lots:
            lot = self.lots[0]
            matched = min(remaining, lot.quantity)

            records.append(RealizedGain(
                instrument=self.instrument,
                product_name=sale.product_name,
                country_code=sale.country_code,
                sale_date=sale_date,
                quantity=matched,
                sale_value=matched * unit_price,
                purchase_date=lot.acquisition_date,
                purchase_value=matched * lot.unit_cost,
                sale_commission=sale.commission_reporting * matched / sale.quantity,
                purchase_commission=lot.commission * matched / lot.original_quantity,
                isin=sale.isin,
            ))

            lot.quantity -= matched
            remaining -= matched
            if lot.is_exhausted():
                del self.lots[0]

        if remaining > 0:
            logger.warning(
                f"Orphaned sell: {sale.product_name} on {sale_date} "
                f"- selling {remaining} more units than available",
                extra={'context': {'instrument': self.instrument}}
            )
            records.append(RealizedGain(
                instrument=self.instrument,
                product_name=sale.product_name,
                country_code=sale.country_code,
                sale_date=sale_date,
                quantity=remaining,
                sale_value=remaining * unit_price,
                purchase_date=None,
                purchase_value=Decimal(0),
                sale_commission=sale.commission_reporting * remaining / sale.quantity,
                isin=sale.isin,
                unmatched=True,
            ))

        return records


class TaxBasisEngine:
    """
    FIFO realized-gain engine for one user's stock transactions.

    Usage:
        engine = TaxBasisEngine(processed_transactions)
        engine.process_all_transactions()
        gains = engine.get_realized_gains()
        lots = engine.get_open_lots()
    """

    def __init__(
        self,
        transactions: Iterable[ProcessedTransaction],
        transaction_types: Iterable[TransactionType] = (TransactionType.STOCK,)
    ):
        types = set(transaction_types)
        self.transactions = sorted(
            (t for t in transactions if t.transaction_type in types and t.is_trade()),
            key=chronological_key
        )
        self.books: Dict[str, InstrumentBook] = {}
        self.realized: List[RealizedGain] = []

    def _book(self, txn: ProcessedTransaction) -> InstrumentBook:
        key = txn.instrument_key()
        if key not in self.books:
            self.books[key] = InstrumentBook(key)
        return self.books[key]

    def process_all_transactions(self) -> None:
        with get_perf_logger(logger, "fifo matching", threshold_ms=1000):
            for txn in self.transactions:
                self.process_transaction(txn)
        logger.debug(
            f"Generated {len(self.realized)} realized-gain records from {len(self.transactions)} trades",
            extra={'context': {'instruments': len(self.books)}}
        )

    def process_transaction(self, txn: ProcessedTransaction) -> None:
        if txn.quantity <= 0:
            logger.warning(f"Skipping {txn.buy_sell.value} of '{txn.product_name}' with zero quantity")
            return

        book = self._book(txn)
        if txn.buy_sell == BuySell.BUY:
            book.add(PurchaseLot(
                instrument=book.instrument,
                product_name=txn.product_name,
                acquisition_date=txn.transaction_date.date(),
                quantity=txn.quantity,
                original_quantity=txn.quantity,
                unit_cost=txn.unit_price_reporting(),
                isin=txn.isin,
                country_code=txn.country_code,
                commission=txn.commission_reporting,
                lot_id=txn.content_hash,
            ))
        else:
            self.realized.extend(book.match(txn))

    def get_realized_gains(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None
    ) -> List[RealizedGain]:
        """Get realized gains, optionally filtered by sale date."""
        records = self.realized
        if start_date:
            records = [r for r in records if r.sale_date >= start_date]
        if end_date:
            records = [r for r in records if r.sale_date <= end_date]
        return list(records)

    def get_open_lots(self, instrument: Optional[str] = None) -> List[PurchaseLot]:
        """Get open lots, optionally for one instrument."""
        if instrument:
            book = self.books.get(instrument)
            return list(book.lots) if book else []

        all_lots = []
        for book in self.books.values():
            all_lots.extend(book.lots)
        return all_lots
