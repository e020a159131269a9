"""
Tax Event and Lot Data Models

Defines the core data structures for realized-gain reporting:
- PurchaseLot: a specific purchase, consumed by later sales
- RealizedGain: the part of one sale matched against one lot
- OptionTrade / OptionPosition: closed and still-open option contracts
- Holding, FeeDetail, CashMovement: report rows

All money is in the reporting currency and kept at full Decimal precision;
rounding happens in the aggregator only.

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional


@dataclass
class PurchaseLot:
    """
    Represents a specific purchase lot for FIFO matching.

    Key Invariant: unit_cost is FIXED at acquisition time; only `quantity`
    changes as sales consume the lot, and it never goes below zero.
    """

    # Required fields (no defaults) - MUST come first
    instrument: str
    product_name: str
    acquisition_date: date
    quantity: Decimal
    original_quantity: Decimal
    unit_cost: Decimal

    # Optional fields (with defaults) - MUST come after
    isin: Optional[str] = None
    country_code: str = "UNKNOWN"
    commission: Decimal = field(default_factory=lambda: Decimal(0))
    lot_id: str = ""

    def cost_basis(self) -> Decimal:
        """Remaining cost basis (quantity x unit cost)."""
        return self.quantity * self.unit_cost

    def is_exhausted(self) -> bool:
        return self.quantity <= 0


@dataclass(frozen=True)
class RealizedGain:
    """
    One sale matched against one lot (SaleDetail).

    A sale consuming three lots yields three records. unmatched=True marks
    the part of a sale that exceeded every available lot: it carries a zero
    purchase value and no purchase date.
    """

    instrument: str
    product_name: str
    country_code: str
    sale_date: date
    quantity: Decimal
    sale_value: Decimal
    purchase_date: Optional[date]
    purchase_value: Decimal
    sale_commission: Decimal = field(default_factory=lambda: Decimal(0))
    purchase_commission: Decimal = field(default_factory=lambda: Decimal(0))
    isin: Optional[str] = None
    unmatched: bool = False

    @property
    def delta(self) -> Decimal:
        return self.sale_value - self.purchase_value

    @property
    def year(self) -> int:
        return self.sale_date.year

    @property
    def holding_period_days(self) -> Optional[int]:
        if self.purchase_date is None:
            return None
        return (self.sale_date - self.purchase_date).days


class PositionSide(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"


@dataclass
class OptionPosition:
    """
    Open option contracts for one product.

    `quantity` is the unsigned remaining count; signed_quantity() is
    negative for short (written) positions.
    """

    product_name: str
    subtype: str
    side: PositionSide
    open_date: date
    quantity: Decimal
    unit_value: Decimal
    commission_per_unit: Decimal = field(default_factory=lambda: Decimal(0))
    isin: Optional[str] = None

    def signed_quantity(self) -> Decimal:
        return self.quantity if self.side == PositionSide.LONG else -self.quantity

    def is_exhausted(self) -> bool:
        return self.quantity <= 0


@dataclass(frozen=True)
class OptionTrade:
    """A closed option round trip: opened by one trade, closed by a later one."""

    product_name: str
    subtype: str
    side: PositionSide
    open_date: date
    close_date: date
    quantity: Decimal
    open_value: Decimal
    close_value: Decimal
    commission: Decimal = field(default_factory=lambda: Decimal(0))

    @property
    def delta(self) -> Decimal:
        """Close minus open for longs; open (premium received) minus close for shorts."""
        if self.side == PositionSide.LONG:
            return self.close_value - self.open_value
        return self.open_value - self.close_value

    @property
    def year(self) -> int:
        return self.close_date.year


@dataclass(frozen=True)
class Holding:
    """Open position of one instrument, at cost and optionally at market."""

    instrument: str
    product_name: str
    country_code: str
    quantity: Decimal
    cost_basis: Decimal
    first_acquired: date
    isin: Optional[str] = None
    market_value: Optional[Decimal] = None

    @property
    def unrealized_gain(self) -> Optional[Decimal]:
        if self.market_value is None:
            return None
        return self.market_value - self.cost_basis


@dataclass(frozen=True)
class FeeDetail:
    """A brokerage fee: either a fee row or a trade commission."""

    fee_date: date
    product_name: str
    description: str
    amount: Decimal
    order_id: str = ""
    is_commission: bool = False


@dataclass(frozen=True)
class CashMovement:
    movement_date: date
    subtype: str
    amount: Decimal
    currency: str
    amount_source: Decimal
    description: str = ""
