"""
DeGiro Account Statement Parser

Reads the DeGiro "Account" CSV export (Portuguese locale). Columns are
positional; the header row is required but its labels are not relied on:

    0 order date (dd-mm-yyyy)   1 order time (HH:MM)   2 value date
    3 product                   4 ISIN                 5 description
    6 exchange rate             7 currency             8 amount
    9 balance currency         10 balance             11 order id

DeGiro's raw sign is authoritative except for fees and dividend withholding
tax, which are always outflows. Trade commissions arrive as separate
"Comissões de transação" rows carrying the trade's order id.
"""

import math
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from io import StringIO
from typing import Dict, List, Optional

import pandas as pd
from pydantic import ValidationError as ModelValidationError

from core.exceptions import FileFormatError, ValidationError
from lib.parsers.base import BrokerParser, Stream, read_text
from lib.parsers.canonical_transaction import CanonicalTransaction, TransactionSubType, TransactionType
from lib.parsers.classifier import Unrecognized, is_commission_text
from lib.utils.logging_config import get_perf_logger, setup_logger
from lib.validators import validated_decimal

logger = setup_logger(__name__)

MIN_COLUMNS = 12

COL_ORDER_DATE = 0
COL_ORDER_TIME = 1
COL_PRODUCT = 3
COL_ISIN = 4
COL_DESCRIPTION = 5
COL_CURRENCY = 7
COL_AMOUNT = 8
COL_ORDER_ID = 11


def _cell(row: pd.Series, index: int) -> str:
    """Positional cell as stripped text; short rows and NaN read as ''."""
    if index >= len(row):
        return ''
    value = row.iloc[index]
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return ''
    return str(value).strip()


def parse_order_date(date_str: str, time_str: str = '') -> Optional[datetime]:
    """'15-01-2024' + '09:30' -> datetime. None if the date is unreadable."""
    try:
        day = datetime.strptime(date_str, '%d-%m-%Y')
    except ValueError:
        return None
    try:
        clock = datetime.strptime(time_str, '%H:%M')
        return day.replace(hour=clock.hour, minute=clock.minute)
    except ValueError:
        return day


class DegiroParser(BrokerParser):
    """Parser for DeGiro account statement CSV exports."""

    source = "degiro"

    def read_frame(self, stream: Stream) -> pd.DataFrame:
        """
        Rows with more fields than the header are recorded in `skipped` as
        'malformed_row' and dropped; the rest of the file is still read.

        Raises:
            FileFormatError: If the CSV is undecodable, empty, malformed, or
                its header has fewer than 12 columns.
        """
        content = read_text(stream)

        def skip_ragged(fields: List[str]) -> None:
            self._skip(-1, 'malformed_row', f"{len(fields)} fields, more than the header",
                       ','.join(str(f) for f in fields))
            return None

        try:
            df = pd.read_csv(
                StringIO(content),
                dtype=str,
                keep_default_na=False,
                quotechar='"',
                skipinitialspace=False,
                engine='python',
                on_bad_lines=skip_ragged,
            )
        except pd.errors.EmptyDataError as e:
            raise FileFormatError("DeGiro CSV is empty or has no header row") from e
        except pd.errors.ParserError as e:
            raise FileFormatError(f"DeGiro CSV is malformed: {e}") from e

        if not isinstance(df.index, pd.RangeIndex):
            df = self._restore_implicit_index(df)

        if len(df.columns) < MIN_COLUMNS:
            raise FileFormatError(
                f"DeGiro CSV header has {len(df.columns)} columns, expected at least {MIN_COLUMNS}"
            )
        logger.info(f"Read {len(df)} DeGiro rows, {len(df.columns)} columns")
        return df

    def _restore_implicit_index(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        A first data row with more fields than the header makes pandas lift
        the leading fields into an index. Put them back as columns and drop
        every row that has content past the header width.
        """
        width = len(df.columns)
        df = df.reset_index(drop=False)
        overflow = df.iloc[:, width:].fillna('').astype(str)
        ragged = overflow.apply(lambda col: col.str.strip() != '').any(axis=1)
        for idx in df.index[ragged.to_numpy()]:
            fields = [str(v) for v in df.loc[idx].fillna('')]
            self._skip(idx, 'malformed_row', f"{len(df.columns)} fields, more than the header", ','.join(fields))
        return df.loc[~ragged].iloc[:, :width]

    def commissions_by_order(self, df: pd.DataFrame) -> Dict[str, Decimal]:
        """Σ|amount| of commission rows per order id."""
        commissions: Dict[str, Decimal] = defaultdict(Decimal)
        for idx, row in df.iterrows():
            order_id = _cell(row, COL_ORDER_ID)
            if not order_id or not is_commission_text(_cell(row, COL_DESCRIPTION)):
                continue
            try:
                commissions[order_id] += abs(validated_decimal(_cell(row, COL_AMOUNT), "amount"))
            except ValidationError as e:
                logger.warning(f"Row {idx}: ignoring unreadable commission amount for order {order_id}: {e}")
        return dict(commissions)

    def parse(self, stream: Stream) -> List[CanonicalTransaction]:
        self.skipped = []
        with get_perf_logger(logger, "parse degiro csv", threshold_ms=500):
            df = self.read_frame(stream)
            commissions = self.commissions_by_order(df)

            transactions = []
            for idx, row in df.iterrows():
                transaction = self._parse_row(idx, row, commissions)
                if transaction is not None:
                    transactions.append(transaction)

        self._log_summary(len(transactions))
        return transactions

    def _parse_row(self, idx: int, row: pd.Series, commissions: Dict[str, Decimal]) -> Optional[CanonicalTransaction]:
        description = _cell(row, COL_DESCRIPTION)
        order_id = _cell(row, COL_ORDER_ID)

        trans_date = parse_order_date(_cell(row, COL_ORDER_DATE), _cell(row, COL_ORDER_TIME))
        if trans_date is None:
            self._skip(idx, 'invalid_date', f"invalid date '{_cell(row, COL_ORDER_DATE)}' (order {order_id})", description)
            return None

        result = self.classifier.classify(description)
        if isinstance(result, Unrecognized):
            self._skip(idx, 'unrecognized', f"unrecognized description '{description}'", description)
            return None
        if result.transaction_type == TransactionType.PRODUCT_CHANGE:
            logger.debug(f"Row {idx}: dropping product change '{description}'")
            return None

        try:
            source_amount = validated_decimal(_cell(row, COL_AMOUNT), "amount")
        except ValidationError as e:
            self._skip(idx, 'invalid_amount', str(e), description)
            return None

        amount = source_amount
        if result.transaction_type == TransactionType.FEE or result.subtype == TransactionSubType.TAX:
            amount = -abs(source_amount)

        product_name = result.product_name or ''
        if result.transaction_type == TransactionType.DIVIDEND:
            product_name = _cell(row, COL_PRODUCT) or product_name or 'Dividend'

        commission = Decimal(0)
        if result.transaction_type.is_trade():
            commission = commissions.get(order_id, Decimal(0))

        try:
            return CanonicalTransaction(
                source=self.source,
                transaction_date=trans_date,
                product_name=product_name,
                isin=_cell(row, COL_ISIN) or None,
                quantity=result.quantity,
                price=result.price,
                currency=_cell(row, COL_CURRENCY),
                amount=amount,
                source_amount=source_amount,
                transaction_type=result.transaction_type,
                subtype=result.subtype,
                buy_sell=result.buy_sell,
                order_id=order_id,
                commission=commission,
                raw_text=description,
            )
        except ModelValidationError as e:
            self._skip(idx, 'invalid_row', f"{e.error_count()} field error(s)", description)
            return None
