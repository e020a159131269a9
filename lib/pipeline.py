# -----------------------------------------------------------------------------
# (c) 2026 Andreas Wagner. All Rights Reserved.
#
# This code is part of the Taxfolio project.
# Unauthorized usage or distribution is not permitted.
# -----------------------------------------------------------------------------

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, List, Optional, Set

from pydantic import ValidationError as ModelValidationError

from core.config import ReferenceData
from core.exceptions import InternalConsistencyError, RowClassificationError, ValidationError
from core.hashing import transaction_content_hash
from lib.countries import CountryTable
from lib.ecb_rates import CurrencyConverter
from lib.parsers import detect_source, get_parser
from lib.parsers.base import SkippedRow
from lib.parsers.canonical_transaction import CanonicalTransaction, ProcessedTransaction, TransactionType
from lib.parsers.classifier import DescriptionClassifier
from lib.utils.logging_config import get_perf_logger, setup_logger
from lib.validators import (
    MAX_DESCRIPTION_LENGTH,
    MAX_ORDER_ID_LENGTH,
    MAX_PRODUCT_NAME_LENGTH,
    sanitize_text,
    validate_currency,
    validate_isin,
    validate_upload,
)

logger = setup_logger(__name__)

NUMERIC_FIELDS = ('amount', 'source_amount', 'quantity', 'price', 'commission', 'multiplier')


class TransactionProcessor:
    """
    Turns adapter output into persistable ProcessedTransactions.

    Per record: sanitize text fields, re-classify UNKNOWN rows from their raw
    text, drop product changes, convert to the reporting currency, derive the
    ISIN country and compute the content hash.

    The converter and country table are shared read-only; `rejected` and
    `duplicates` describe the last process_batch() call only.
    """

    def __init__(
        self,
        converter: CurrencyConverter,
        countries: CountryTable,
        classifier: Optional[DescriptionClassifier] = None
    ):
        self.converter = converter
        self.countries = countries
        self.classifier = classifier or DescriptionClassifier()
        self.rejected: List[SkippedRow] = []
        self.duplicates = 0

    def process(self, tx: CanonicalTransaction) -> Optional[ProcessedTransaction]:
        """
        Enrich one canonical transaction. None for product changes.

        Raises:
            ValidationError: A text field is empty, oversized or malformed.
            RowClassificationError: An UNKNOWN row still matches no rule.
            InternalConsistencyError: A numeric field is not finite.
        """
        for name in NUMERIC_FIELDS:
            if not getattr(tx, name).is_finite():
                raise InternalConsistencyError(f"{name} of '{tx.raw_text}' is not finite")

        raw_text = sanitize_text(tx.raw_text, "description", MAX_DESCRIPTION_LENGTH, required=False)
        updates = {
            'raw_text': raw_text,
            'order_id': sanitize_text(tx.order_id, "order_id", MAX_ORDER_ID_LENGTH, required=False, guard_formula=False),
            'isin': validate_isin(tx.isin),
            'currency': validate_currency(tx.currency),
        }

        if tx.transaction_type == TransactionType.UNKNOWN:
            result = self.classifier.classify_or_raise(tx.raw_text, tx.source)
            updates.update(transaction_type=result.transaction_type, subtype=result.subtype)
            if result.transaction_type.is_trade():
                updates.update(buy_sell=result.buy_sell, quantity=result.quantity, price=result.price)
            if result.product_name and not tx.product_name.strip():
                updates['product_name'] = result.product_name
            logger.debug(f"Re-classified '{tx.raw_text}' as {result.transaction_type.value} via rule '{result.rule}'")

        transaction_type = updates.get('transaction_type', tx.transaction_type)
        if transaction_type == TransactionType.PRODUCT_CHANGE:
            logger.debug(f"Dropping product change '{raw_text}'")
            return None

        updates['product_name'] = sanitize_text(
            updates.get('product_name', tx.product_name), "product_name", MAX_PRODUCT_NAME_LENGTH
        )

        conversion = self.converter.convert(tx.amount, updates['currency'], tx.transaction_date)
        if conversion.approximate:
            logger.warning(
                f"Amount of '{raw_text}' left in {updates['currency']}",
                extra={'context': {'date': tx.transaction_date.date(), 'amount': tx.amount}}
            )

        data = tx.model_dump()
        data.update(updates)
        data.update(
            exchange_rate=conversion.rate,
            amount_reporting=conversion.amount,
            commission_reporting=tx.commission / conversion.rate,
            country_code=self.countries.country_code(updates['isin']),
            content_hash=transaction_content_hash(tx.transaction_date, raw_text, tx.source_amount),
            rate_missing=conversion.approximate,
        )
        return ProcessedTransaction(**data)

    def process_batch(
        self,
        transactions: Iterable[CanonicalTransaction],
        known_hashes: Optional[Set[str]] = None
    ) -> List[ProcessedTransaction]:
        """
        Process a batch, skipping rejected rows and duplicate content hashes.

        known_hashes holds hashes the caller already persisted for this user;
        rows matching them, or an earlier row of the same batch, are dropped.

        Raises:
            InternalConsistencyError: Aborts the whole batch; nothing is returned.
        """
        self.rejected = []
        self.duplicates = 0
        seen: Set[str] = set(known_hashes or ())
        processed: List[ProcessedTransaction] = []

        with get_perf_logger(logger, "process transaction batch", threshold_ms=1000):
            for idx, tx in enumerate(transactions):
                try:
                    result = self.process(tx)
                except RowClassificationError as e:
                    self._reject(idx, 'unrecognized', str(e), tx.raw_text)
                    continue
                except ValidationError as e:
                    self._reject(idx, 'invalid_field', str(e), tx.raw_text)
                    continue
                except ModelValidationError as e:
                    self._reject(idx, 'invalid_field', f"{e.error_count()} field error(s)", tx.raw_text)
                    continue
                except InternalConsistencyError:
                    logger.error(f"Aborting batch at row {idx}: internal consistency error", exc_info=True)
                    raise

                if result is None:
                    continue
                if result.content_hash in seen:
                    self.duplicates += 1
                    logger.info(f"Row {idx}: duplicate transaction '{result.raw_text}' skipped")
                    continue
                seen.add(result.content_hash)
                processed.append(result)

        logger.info(
            f"Processed {len(processed)} transactions",
            extra={'context': {'rejected': len(self.rejected), 'duplicates': self.duplicates}}
        )
        return processed

    def _reject(self, idx: int, category: str, reason: str, text: str) -> None:
        self.rejected.append(SkippedRow(idx, category, reason, text))
        logger.warning(f"Row {idx} rejected: {reason}")


@dataclass
class UploadResult:
    """Outcome of one upload: persistable rows plus what was dropped and why."""

    source: str
    transactions: List[ProcessedTransaction]
    skipped: List[SkippedRow] = field(default_factory=list)
    rejected: List[SkippedRow] = field(default_factory=list)
    duplicates: int = 0

    @property
    def approximate_count(self) -> int:
        return sum(1 for t in self.transactions if t.rate_missing)

    @property
    def total_amount_reporting(self) -> Decimal:
        return sum((t.amount_reporting for t in self.transactions), Decimal(0))


def process_upload(
    data: bytes,
    reference: ReferenceData,
    source: Optional[str] = None,
    known_hashes: Optional[Set[str]] = None,
    max_upload_bytes: Optional[int] = None
) -> UploadResult:
    """
    Validate, parse and process one uploaded export.

    The size limit defaults to the reference settings' max_upload_size_bytes.

    Raises:
        FileFormatError: The upload or its container is unreadable.
        InternalConsistencyError: A defect aborted the batch.
    """
    if max_upload_bytes is None:
        max_upload_bytes = reference.settings.max_upload_size_bytes
    validate_upload(data, max_upload_bytes)
    source = source or detect_source(data)
    logger.info(f"Processing {len(data)} byte upload from {source}")

    parser = get_parser(source)
    canonical = parser.parse(data)

    processor = TransactionProcessor(reference.converter, reference.countries)
    processed = processor.process_batch(canonical, known_hashes)

    return UploadResult(
        source=source,
        transactions=processed,
        skipped=list(parser.skipped),
        rejected=list(processor.rejected),
        duplicates=processor.duplicates,
    )
