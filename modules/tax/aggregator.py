"""
Report Aggregation

Buckets processed transactions and realized-gain records into the figures a
tax return needs:
- dividends and withholding tax per (year, country)
- realized gains per (year, instrument)
- open holdings at cost basis, optionally at market value
- fees and cash movements

This is the only place amounts are rounded (2 places, half-up).

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Mapping, Optional

import pandas as pd

from lib.parsers.canonical_transaction import ProcessedTransaction, TransactionSubType, TransactionType
from lib.utils.logging_config import setup_logger
from modules.tax.engine import TaxBasisEngine
from modules.tax.option_engine import OptionMatcher
from modules.tax.tax_events import (
    CashMovement,
    FeeDetail,
    Holding,
    OptionPosition,
    OptionTrade,
    PurchaseLot,
    RealizedGain,
)

logger = setup_logger(__name__)

CENT = Decimal('0.01')


def round_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _in_year(txn: ProcessedTransaction, year: Optional[int]) -> bool:
    return year is None or txn.year == year


def dividend_summary(
    transactions: Iterable[ProcessedTransaction],
    year: Optional[int] = None
) -> Dict[int, Dict[str, Dict[str, Decimal]]]:
    """
    {year: {country: {"gross_amt": ..., "taxed_amt": ...}}}

    Gross dividends add to gross_amt; withholding tax (negative) adds to
    taxed_amt, so taxed_amt is zero or negative.
    """
    summary: Dict[int, Dict[str, Dict[str, Decimal]]] = defaultdict(
        lambda: defaultdict(lambda: {"gross_amt": Decimal(0), "taxed_amt": Decimal(0)})
    )
    for txn in transactions:
        if txn.transaction_type != TransactionType.DIVIDEND or not _in_year(txn, year):
            continue
        bucket = summary[txn.year][txn.country_code]
        if txn.subtype == TransactionSubType.TAX:
            bucket["taxed_amt"] += txn.amount_reporting
        else:
            bucket["gross_amt"] += txn.amount_reporting

    return {
        y: {
            country: {key: round_money(value) for key, value in amounts.items()}
            for country, amounts in countries.items()
        }
        for y, countries in sorted(summary.items())
    }


def gains_by_year_and_instrument(
    records: Iterable[RealizedGain],
    year: Optional[int] = None
) -> Dict[int, Dict[str, Dict[str, Decimal]]]:
    """{year: {instrument: {quantity, sale_value, purchase_value, delta, commission}}}"""
    grouped: Dict[int, Dict[str, Dict[str, Decimal]]] = defaultdict(
        lambda: defaultdict(lambda: defaultdict(Decimal))
    )
    for record in records:
        if year is not None and record.year != year:
            continue
        bucket = grouped[record.year][record.instrument]
        bucket["quantity"] += record.quantity
        bucket["sale_value"] += record.sale_value
        bucket["purchase_value"] += record.purchase_value
        bucket["delta"] += record.delta
        bucket["commission"] += record.sale_commission + record.purchase_commission

    result = {}
    for y, instruments in sorted(grouped.items()):
        result[y] = {}
        for instrument, totals in instruments.items():
            result[y][instrument] = {
                key: (value if key == "quantity" else round_money(value))
                for key, value in totals.items()
            }
    return result


def holdings(
    open_lots: Iterable[PurchaseLot],
    market_prices: Optional[Mapping[str, Decimal]] = None
) -> List[Holding]:
    """
    One Holding per instrument with open lots.

    market_prices maps instrument key to a unit price in the reporting
    currency; instruments without a price get market_value None.
    """
    by_instrument: Dict[str, List[PurchaseLot]] = defaultdict(list)
    for lot in open_lots:
        if lot.quantity > 0:
            by_instrument[lot.instrument].append(lot)

    result = []
    for instrument, lots in sorted(by_instrument.items()):
        quantity = sum((lot.quantity for lot in lots), Decimal(0))
        market_value = None
        if market_prices and instrument in market_prices:
            market_value = round_money(quantity * Decimal(market_prices[instrument]))
        result.append(Holding(
            instrument=instrument,
            product_name=lots[-1].product_name,
            country_code=lots[0].country_code,
            quantity=quantity,
            cost_basis=round_money(sum((lot.cost_basis() for lot in lots), Decimal(0))),
            first_acquired=min(lot.acquisition_date for lot in lots),
            isin=lots[0].isin,
            market_value=market_value,
        ))
    return result


def fee_details(transactions: Iterable[ProcessedTransaction], year: Optional[int] = None) -> List[FeeDetail]:
    """
    Fee rows plus trade commissions, each fee counted once.

    DeGiro reports a commission both as its own fee row and (derived) on the
    trade, so a trade commission is listed only when no fee row carries the
    same order id.
    """
    transactions = [t for t in transactions if _in_year(t, year)]
    fee_order_ids = {
        t.order_id for t in transactions
        if t.transaction_type == TransactionType.FEE and t.order_id
    }

    details = []
    for txn in transactions:
        if txn.transaction_type == TransactionType.FEE:
            details.append(FeeDetail(
                fee_date=txn.transaction_date.date(),
                product_name=txn.product_name,
                description=txn.raw_text,
                amount=-abs(txn.amount_reporting),
                order_id=txn.order_id,
            ))
        elif txn.is_trade() and txn.commission_reporting > 0 and txn.order_id not in fee_order_ids:
            details.append(FeeDetail(
                fee_date=txn.transaction_date.date(),
                product_name=txn.product_name,
                description=f"Commission {txn.buy_sell.value} {txn.product_name}",
                amount=-txn.commission_reporting,
                order_id=txn.order_id,
                is_commission=True,
            ))
    return sorted(details, key=lambda d: d.fee_date)


def fee_summary(transactions: Iterable[ProcessedTransaction], year: Optional[int] = None) -> Dict[int, Dict[str, Decimal]]:
    """{year: {"fees": ..., "commissions": ..., "total": ...}}, all non-positive."""
    totals: Dict[int, Dict[str, Decimal]] = defaultdict(lambda: {"fees": Decimal(0), "commissions": Decimal(0)})
    for detail in fee_details(transactions, year):
        key = "commissions" if detail.is_commission else "fees"
        totals[detail.fee_date.year][key] += detail.amount
    return {
        y: {
            "fees": round_money(t["fees"]),
            "commissions": round_money(t["commissions"]),
            "total": round_money(t["fees"] + t["commissions"]),
        }
        for y, t in sorted(totals.items())
    }


def cash_movements(transactions: Iterable[ProcessedTransaction], year: Optional[int] = None) -> List[CashMovement]:
    movements = [
        CashMovement(
            movement_date=t.transaction_date.date(),
            subtype=t.subtype.value,
            amount=round_money(t.amount_reporting),
            currency=t.currency,
            amount_source=t.amount,
            description=t.raw_text,
        )
        for t in transactions
        if t.transaction_type == TransactionType.CASH and _in_year(t, year)
    ]
    return sorted(movements, key=lambda m: m.movement_date)


def gains_dataframe(records: Iterable[RealizedGain]) -> pd.DataFrame:
    """Realized gains as a display table, rounded to cents."""
    columns = [
        'Sale Date', 'Purchase Date', 'Instrument', 'Product', 'Country', 'Quantity',
        'Sale Value', 'Purchase Value', 'Delta', 'Commission', 'Unmatched',
    ]
    rows = [
        {
            'Sale Date': r.sale_date,
            'Purchase Date': r.purchase_date,
            'Instrument': r.instrument,
            'Product': r.product_name,
            'Country': r.country_code,
            'Quantity': float(r.quantity),
            'Sale Value': float(round_money(r.sale_value)),
            'Purchase Value': float(round_money(r.purchase_value)),
            'Delta': float(round_money(r.delta)),
            'Commission': float(round_money(r.sale_commission + r.purchase_commission)),
            'Unmatched': r.unmatched,
        }
        for r in records
    ]
    return pd.DataFrame(rows, columns=columns)


@dataclass
class PortfolioReport:
    """Everything one report request produces for one user."""

    year: Optional[int]
    realized_gains: List[RealizedGain]
    gains_by_instrument: Dict[int, Dict[str, Dict[str, Decimal]]]
    holdings: List[Holding]
    option_trades: List[OptionTrade]
    option_positions: List[OptionPosition]
    dividends: Dict[int, Dict[str, Dict[str, Decimal]]]
    fees: Dict[int, Dict[str, Decimal]]
    cash_movements: List[CashMovement]
    warnings: List[str] = field(default_factory=list)

    @property
    def total_realized_delta(self) -> Decimal:
        return round_money(sum((r.delta for r in self.realized_gains), Decimal(0)))

    @property
    def total_option_delta(self) -> Decimal:
        return round_money(sum((t.delta for t in self.option_trades), Decimal(0)))


def build_report(
    transactions: Iterable[ProcessedTransaction],
    year: Optional[int] = None,
    market_prices: Optional[Mapping[str, Decimal]] = None
) -> PortfolioReport:
    """
    Run both matchers over the full history, then filter output by `year`.

    Matching always sees every year: a sale in 2024 may consume a 2019 lot.
    """
    transactions = list(transactions)

    engine = TaxBasisEngine(transactions)
    engine.process_all_transactions()
    options = OptionMatcher(transactions)
    options.process_all_transactions()

    realized = [r for r in engine.get_realized_gains() if year is None or r.year == year]
    option_trades = [t for t in options.get_trades() if year is None or t.year == year]

    warnings = []
    approximate = sum(1 for t in transactions if t.rate_missing and _in_year(t, year))
    if approximate:
        warnings.append(f"{approximate} transaction(s) converted without an exchange rate")
    unmatched = [r for r in realized if r.unmatched]
    if unmatched:
        warnings.append(f"{len(unmatched)} sale(s) exceed the recorded purchases")
    for warning in warnings:
        logger.warning(warning)

    return PortfolioReport(
        year=year,
        realized_gains=realized,
        gains_by_instrument=gains_by_year_and_instrument(realized),
        holdings=holdings(engine.get_open_lots(), market_prices),
        option_trades=option_trades,
        option_positions=options.get_open_positions(),
        dividends=dividend_summary(transactions, year),
        fees=fee_summary(transactions, year),
        cash_movements=cash_movements(transactions, year),
        warnings=warnings,
    )
