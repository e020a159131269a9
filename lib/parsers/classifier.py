"""
Free-Text Transaction Classifier

Broker exports describe every cash movement in free text, e.g.

    "Compra 10 Apple Inc@150,5 USD (US0378331005)"
    "Imposto sobre Dividendo"
    "Comissões de transação DEGIRO e/ou taxas de terceiros"

The classifier is an ordered list of rules evaluated top to bottom; the first
rule that matches wins. Order matters because broker text is ambiguous: a
withholding-tax line also contains the word "dividend", so the tax rule must
run before the plain dividend rule.

classify() is a pure function: no state is kept between calls.
"""

import re
import unicodedata
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Sequence, Tuple, Union

from core.exceptions import RowClassificationError, ValidationError
from lib.parsers.canonical_transaction import BuySell, TransactionSubType, TransactionType
from lib.validators import validated_decimal


@dataclass(frozen=True)
class Classification:
    """A recognized description and the fields extracted from it."""

    transaction_type: TransactionType
    subtype: TransactionSubType = TransactionSubType.NONE
    buy_sell: Optional[BuySell] = None
    product_name: Optional[str] = None
    quantity: Decimal = Decimal(0)
    price: Decimal = Decimal(0)
    rule: str = ""


@dataclass(frozen=True)
class Unrecognized:
    """No rule matched the description."""

    text: str


ClassificationResult = Union[Classification, Unrecognized]


def normalize_description(text: str) -> str:
    """NFC-normalize, fold non-breaking spaces and trim."""
    return unicodedata.normalize('NFC', text or '').replace('\u00a0', ' ').strip()


class Rule(ABC):
    """One pattern-to-category mapping."""

    name: str = "rule"

    @abstractmethod
    def match(self, text: str) -> Optional[Classification]:
        """Return a Classification when the rule applies, else None."""
        pass


class DividendRule(Rule):
    """Dividend lines, with the withholding-tax variant checked first.

    Keywords must open the description so product names such as
    "... HIGH DIVIDEND YIELD" inside a trade line are not mistaken for income.
    """

    name = "dividend"

    def __init__(
        self,
        tax_prefixes: Sequence[str] = ("imposto sobre dividendo", "dividend tax", "withholding tax"),
        dividend_prefixes: Sequence[str] = ("dividendo", "dividend"),
    ):
        self.tax_prefixes = tuple(p.lower() for p in tax_prefixes)
        self.dividend_prefixes = tuple(p.lower() for p in dividend_prefixes)

    def match(self, text: str) -> Optional[Classification]:
        lowered = text.lower()
        for prefix in self.tax_prefixes:
            if lowered.startswith(prefix):
                return Classification(
                    TransactionType.DIVIDEND, TransactionSubType.TAX,
                    product_name=self._remainder(text, prefix), rule=self.name
                )
        for prefix in self.dividend_prefixes:
            if lowered.startswith(prefix):
                return Classification(
                    TransactionType.DIVIDEND,
                    product_name=self._remainder(text, prefix), rule=self.name
                )
        return None

    @staticmethod
    def _remainder(text: str, prefix: str) -> Optional[str]:
        # "Dividendo APPLE INC (Ordinary)" -> "APPLE INC"
        rest = re.sub(r'\s*\(.*\)\s*$', '', text[len(prefix):]).strip(' :-')
        return rest or None


class KeywordRule(Rule):
    """Fixed category for descriptions equal to or containing a keyword."""

    def __init__(
        self,
        name: str,
        transaction_type: TransactionType,
        subtype: TransactionSubType = TransactionSubType.NONE,
        label: Optional[str] = None,
        contains: Sequence[str] = (),
        equals: Sequence[str] = (),
    ):
        self.name = name
        self.transaction_type = transaction_type
        self.subtype = subtype
        self.label = label
        self.contains = tuple(k.lower() for k in contains)
        self.equals = tuple(k.lower() for k in equals)

    def match(self, text: str) -> Optional[Classification]:
        lowered = text.lower()
        if lowered in self.equals or any(k in lowered for k in self.contains):
            return Classification(self.transaction_type, self.subtype, product_name=self.label, rule=self.name)
        return None


class TradeRule(Rule):
    """`<buy|sell verb> <quantity> <product name> @ <price>`, then STOCK vs OPTION.

    Options carry a `C|P<strike> <DDMMMYY>` suffix, e.g. "FLW P31.00 18MAR22".
    Portuguese verbs imply comma decimals ("Compra 1.000 X@12,5").
    """

    name = "trade"

    TRADE_RE = re.compile(
        r'^\s*(compra|venda|buy|sell)\s+([\d\s.,]+)\s+(.+?)\s*@\s*([\d.,]+)',
        re.IGNORECASE
    )
    OPTION_SUFFIX_RE = re.compile(r'\s+([CP])\d+(?:[.,]\d+)?\s+\d{2}[A-Z]{3}\d{2}$')
    COMMA_DECIMAL_VERBS = ("compra", "venda")

    def match(self, text: str) -> Optional[Classification]:
        matches = self.TRADE_RE.match(text)
        if matches is None:
            return None

        verb, quantity_raw, product_name, price_raw = matches.groups()
        separator = ',' if verb.lower() in self.COMMA_DECIMAL_VERBS else '.'
        try:
            quantity = validated_decimal(quantity_raw.replace(' ', ''), "quantity", separator)
            price = validated_decimal(price_raw.rstrip('.,'), "price", separator)
        except ValidationError:
            return None

        product_name = product_name.strip()
        option = self.OPTION_SUFFIX_RE.search(product_name)
        if option:
            transaction_type = TransactionType.OPTION
            subtype = TransactionSubType.CALL if option.group(1) == 'C' else TransactionSubType.PUT
        else:
            transaction_type = TransactionType.STOCK
            subtype = TransactionSubType.NONE

        return Classification(
            transaction_type, subtype,
            buy_sell=BuySell.normalize(verb),
            product_name=product_name,
            quantity=abs(quantity),
            price=price,
            rule=self.name
        )


DEFAULT_RULES: Tuple[Rule, ...] = (
    DividendRule(),
    KeywordRule(
        "cash-deposit", TransactionType.CASH, TransactionSubType.DEPOSIT, "Cash Deposit",
        contains=("flatex deposit",), equals=("depósito", "deposito", "deposit")
    ),
    KeywordRule(
        "cash-sweep", TransactionType.CASH, TransactionSubType.SWEEP, "Cash Sweep Transfer",
        contains=("cash sweep transfer",)
    ),
    KeywordRule(
        "cash-withdrawal", TransactionType.CASH, TransactionSubType.WITHDRAWAL, "Cash Withdrawal",
        contains=("flatex withdrawal",), equals=("levantamento", "withdrawal")
    ),
    KeywordRule(
        "fee", TransactionType.FEE, label="Brokerage Fee",
        contains=("comissões de transação", "custo de conectividade", "transaction fee", "connectivity fee")
    ),
    KeywordRule(
        "product-change", TransactionType.PRODUCT_CHANGE, label="Product Change",
        contains=("mudança de produto", "product change")
    ),
    TradeRule(),
)

# Per-order commission rows are the fee rows that reference a trade's order id.
COMMISSION_KEYWORDS = ("comissões de transação", "transaction fee")


class DescriptionClassifier:
    """Evaluates an ordered rule list against a description."""

    def __init__(self, rules: Sequence[Rule] = DEFAULT_RULES):
        self.rules = tuple(rules)

    def classify(self, text: str) -> ClassificationResult:
        normalized = normalize_description(text)
        if not normalized:
            return Unrecognized(text or '')
        for rule in self.rules:
            result = rule.match(normalized)
            if result is not None:
                return result
        return Unrecognized(normalized)

    def classify_or_raise(self, text: str, source: Optional[str] = None) -> Classification:
        """
        Raises:
            RowClassificationError: If no rule matches.
        """
        result = self.classify(text)
        if isinstance(result, Unrecognized):
            raise RowClassificationError(result.text, source)
        return result


def is_commission_text(text: str) -> bool:
    lowered = normalize_description(text).lower()
    return any(k in lowered for k in COMMISSION_KEYWORDS)
