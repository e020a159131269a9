"""Shared adapter plumbing: stream decoding, skipped-row bookkeeping and the parser contract."""

from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass
from typing import IO, List, Optional, Union

from core.exceptions import FileFormatError
from lib.parsers.canonical_transaction import CanonicalTransaction
from lib.parsers.classifier import DescriptionClassifier
from lib.utils.logging_config import setup_logger

logger = setup_logger(__name__)

Stream = Union[bytes, str, IO]


def read_bytes(stream: Stream) -> bytes:
    """Accept raw bytes, text or a file-like object and return bytes."""
    data = stream.read() if hasattr(stream, 'read') else stream
    if isinstance(data, str):
        return data.encode('utf-8')
    return bytes(data)


def read_text(stream: Stream) -> str:
    """
    Decode an upload as UTF-8 (a leading BOM is dropped).

    Raises:
        FileFormatError: If the bytes are not valid UTF-8.
    """
    data = stream.read() if hasattr(stream, 'read') else stream
    if isinstance(data, str):
        return data
    try:
        return bytes(data).decode('utf-8-sig')
    except UnicodeDecodeError as e:
        raise FileFormatError(f"File is not valid UTF-8 text: {e}") from e


@dataclass(frozen=True)
class SkippedRow:
    """A row an adapter dropped, kept for diagnostics. `row` is -1 when the reader cannot place it."""

    row: int
    category: str
    reason: str
    text: str = ""


class BrokerParser(ABC):
    """
    Contract for broker adapters.

    parse() returns canonical transactions or raises FileFormatError when the
    container is unreadable. Rows that cannot be classified or validated are
    recorded in `skipped` and never abort the upload.
    """

    source: str = ""

    def __init__(self, classifier: Optional[DescriptionClassifier] = None):
        self.classifier = classifier or DescriptionClassifier()
        self.skipped: List[SkippedRow] = []

    @abstractmethod
    def parse(self, stream: Stream) -> List[CanonicalTransaction]:
        pass

    def _skip(self, row: int, category: str, reason: str, text: str = "") -> None:
        self.skipped.append(SkippedRow(row, category, reason, text))
        logger.warning(f"{self.source}: skipping row {row}: {reason}")

    def _log_summary(self, parsed: int) -> None:
        logger.info(f"{self.source} parsing complete: {parsed} parsed, {len(self.skipped)} skipped")
        for category, count in Counter(s.category for s in self.skipped).items():
            logger.info(f"  - {category}: {count}")
