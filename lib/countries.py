"""
Country Reference Data

Maps the two-letter ISIN prefix to a country. Loaded once from a JSON list of
{country, alpha2, alpha3, numeric} records and shared read-only.

Unknown or unusable prefixes resolve to UNKNOWN_COUNTRY, never to a default
country, so unclassified income stays visible in the dividend report.
"""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from core.exceptions import FileFormatError
from lib.utils.logging_config import setup_logger

logger = setup_logger(__name__)

UNKNOWN_COUNTRY = "UNKNOWN"


@dataclass(frozen=True)
class CountryInfo:
    country: str
    alpha2: str
    alpha3: str = ""
    numeric: str = ""

    @property
    def label(self) -> str:
        """'840 - United States of America', numeric code N/A when missing."""
        return f"{self.numeric.strip() or 'N/A'} - {self.country}"


class CountryTable:
    """Read-only alpha-2 -> CountryInfo lookup."""

    def __init__(self, countries: Iterable[CountryInfo]):
        self._by_alpha2: Dict[str, CountryInfo] = {c.alpha2.upper(): c for c in countries}

    @classmethod
    def from_records(cls, records: List[dict]) -> 'CountryTable':
        """
        Raises:
            FileFormatError: If records is not a list of country objects.
        """
        if not isinstance(records, list):
            raise FileFormatError("Country data must be a list of records")
        countries = []
        for record in records:
            try:
                countries.append(CountryInfo(
                    country=str(record["country"]),
                    alpha2=str(record["alpha2"]).strip().upper(),
                    alpha3=str(record.get("alpha3", "")),
                    numeric=str(record.get("numeric", "")),
                ))
            except (KeyError, TypeError, AttributeError):
                logger.warning(f"Skipping malformed country record: {record!r}")
        logger.info(f"Loaded {len(countries)} countries")
        return cls(countries)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> 'CountryTable':
        try:
            with open(path, encoding='utf-8') as f:
                records = json.load(f)
        except json.JSONDecodeError as e:
            raise FileFormatError(f"Country data {path} is not valid JSON: {e}") from e
        return cls.from_records(records)

    def get(self, alpha2: str) -> Optional[CountryInfo]:
        return self._by_alpha2.get((alpha2 or '').upper())

    def country_code(self, isin: Optional[str]) -> str:
        """Alpha-2 code from an ISIN prefix, UNKNOWN_COUNTRY when it is absent or not a known country."""
        if not isin or len(isin.strip()) < 2:
            return UNKNOWN_COUNTRY
        prefix = isin.strip()[:2].upper()
        if prefix not in self._by_alpha2:
            logger.debug(f"Unknown ISIN country prefix '{prefix}'")
            return UNKNOWN_COUNTRY
        return prefix

    def country_label(self, code: str) -> str:
        info = self.get(code)
        return info.label if info else f"Unknown Code: {code}"

    def __len__(self) -> int:
        return len(self._by_alpha2)
