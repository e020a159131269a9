"""
Canonical and Processed Transaction Models

Every broker adapter converges on CanonicalTransaction; the transaction
processor enriches it into ProcessedTransaction, the record handed to
persistence and to the tax engine.

Sign convention (applied by the adapters): outflows negative, inflows positive.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator


class TransactionType(str, Enum):
    """Semantic category of a transaction."""

    STOCK = "STOCK"
    OPTION = "OPTION"
    DIVIDEND = "DIVIDEND"
    FEE = "FEE"
    CASH = "CASH"
    PRODUCT_CHANGE = "PRODUCT_CHANGE"
    UNKNOWN = "UNKNOWN"

    def is_trade(self) -> bool:
        return self in (TransactionType.STOCK, TransactionType.OPTION)


class TransactionSubType(str, Enum):
    """Type-dependent refinement. NONE for types without one."""

    NONE = ""
    CALL = "CALL"
    PUT = "PUT"
    TAX = "TAX"
    DEPOSIT = "DEPOSIT"
    SWEEP = "SWEEP"
    WITHDRAWAL = "WITHDRAWAL"


class BuySell(str, Enum):
    BUY = "BUY"
    SELL = "SELL"

    @classmethod
    def normalize(cls, value: str) -> 'BuySell':
        """Map broker verbs (compra/venda/buy/sell/B/S) to a side.

        Raises:
            ValueError: If the verb is not a known side.
        """
        side_map = {
            "BUY": cls.BUY,
            "B": cls.BUY,
            "COMPRA": cls.BUY,
            "SELL": cls.SELL,
            "S": cls.SELL,
            "VENDA": cls.SELL,
        }
        result = side_map.get(value.strip().upper())
        if result is None:
            raise ValueError(f"Unknown trade side: '{value}'")
        return result


class CanonicalTransaction(BaseModel):
    """
    Broker-agnostic transaction as produced by an adapter.

    `amount` is the normalized signed amount in `currency`; `source_amount`
    is the amount exactly as it appeared in the export and feeds the
    content hash.
    """

    model_config = ConfigDict(frozen=True)

    source: str
    transaction_date: datetime
    product_name: str
    isin: Optional[str] = None

    quantity: Decimal = Decimal(0)
    price: Decimal = Decimal(0)
    multiplier: Decimal = Decimal(1)
    currency: str = "EUR"
    amount: Decimal
    source_amount: Decimal

    transaction_type: TransactionType
    subtype: TransactionSubType = TransactionSubType.NONE
    buy_sell: Optional[BuySell] = None

    order_id: str = ""
    commission: Decimal = Decimal(0)
    raw_text: str = ""

    @field_validator('isin', mode='before')
    @classmethod
    def blank_isin_is_none(cls, v):
        if v is None:
            return None
        v = str(v).strip().upper()
        return v or None

    @field_validator('currency', mode='before')
    @classmethod
    def upper_currency(cls, v):
        return "" if v is None else str(v).strip().upper()

    @field_validator('quantity', 'commission', 'multiplier')
    @classmethod
    def non_negative_values(cls, v):
        if v < 0:
            raise ValueError(f'Value cannot be negative: {v}')
        return v

    def instrument_key(self) -> str:
        """ISIN when present (stable across renames), product name otherwise."""
        return self.isin or self.product_name

    def is_trade(self) -> bool:
        return self.transaction_type.is_trade() and self.buy_sell is not None


class ProcessedTransaction(CanonicalTransaction):
    """
    Canonical transaction enriched with reporting-currency data.

    exchange_rate is quoted as units of `currency` per reporting unit, so
    amount_reporting == amount / exchange_rate. rate_missing marks amounts
    that were left unconverted because no historical rate existed.
    """

    exchange_rate: Decimal = Decimal(1)
    amount_reporting: Decimal
    commission_reporting: Decimal = Decimal(0)
    country_code: str
    content_hash: str
    rate_missing: bool = False

    def unit_price_reporting(self) -> Decimal:
        """Per-unit price (times contract multiplier) in reporting currency."""
        return self.price * self.multiplier / self.exchange_rate

    @property
    def year(self) -> int:
        return self.transaction_date.year
