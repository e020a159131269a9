"""
European Central Bank (ECB) FX Rates

Historical daily reference rates used to convert broker amounts into the
reporting currency.

- RateTable: read-only (date, currency) -> rate map, built once from the
  observation document and shared by every request
- CurrencyConverter: strict get_rate() and lenient convert()
- fetch_ecb_observations(): download a date range from the ECB data API in
  the same observation document shape

ECB quotes rates as units of foreign currency per EUR (USD 1.0945 means
1 EUR = 1.0945 USD), so converted = amount / rate.

API Documentation: https://data.ecb.europa.eu/help/api/data

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

import bisect
import json
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

import requests

from core.exceptions import FileFormatError, MissingRateError
from lib.utils.logging_config import setup_logger

logger = setup_logger(__name__)

REPORTING_CURRENCY = "EUR"


def _as_date(day: Union[date, datetime]) -> date:
    return day.date() if isinstance(day, datetime) else day


@dataclass(frozen=True)
class Conversion:
    """
    Result of a lenient conversion.

    approximate=True means no rate existed: `amount` is the source amount
    unconverted and `rate` is 1.
    """

    amount: Decimal
    rate: Decimal
    approximate: bool = False


class RateTable:
    """
    Immutable historical rate table keyed by (date, currency).

    Built once at startup and passed explicitly to converters; it is never
    mutated after construction, so sharing it across requests needs no lock.
    """

    def __init__(self, rates: Dict[Tuple[date, str], Decimal]):
        self._rates: Dict[Tuple[date, str], Decimal] = dict(rates)
        self._dates: Dict[str, List[date]] = {}
        for day, currency in self._rates:
            self._dates.setdefault(currency, []).append(day)
        for days in self._dates.values():
            days.sort()

    @classmethod
    def from_observations(cls, payload: dict) -> 'RateTable':
        """
        Build from {"root": {"Obs": [{"_TIME_PERIOD", "_CCY", "_OBS_VALUE"}, ...]}}.

        Malformed observations are skipped with a warning.

        Raises:
            FileFormatError: If the document has no root/Obs list.
        """
        try:
            observations = payload["root"]["Obs"]
        except (KeyError, TypeError) as e:
            raise FileFormatError("Rate document has no root.Obs observation list") from e
        if not isinstance(observations, list):
            raise FileFormatError("Rate document root.Obs is not a list")

        rates: Dict[Tuple[date, str], Decimal] = {}
        skipped = 0
        for obs in observations:
            try:
                day = date.fromisoformat(str(obs["_TIME_PERIOD"]))
                currency = str(obs["_CCY"]).strip().upper()
                rate = Decimal(str(obs["_OBS_VALUE"]))
            except (KeyError, TypeError, ValueError, InvalidOperation):
                skipped += 1
                continue
            if not rate.is_finite() or rate <= 0:
                skipped += 1
                continue
            rates[(day, currency)] = rate

        if skipped:
            logger.warning(f"Skipped {skipped} malformed rate observations")
        logger.info(f"Loaded {len(rates)} exchange rates")
        return cls(rates)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> 'RateTable':
        """
        Raises:
            FileFormatError: If the file is not valid JSON or lacks root.Obs.
        """
        try:
            with open(path, encoding='utf-8') as f:
                payload = json.load(f)
        except json.JSONDecodeError as e:
            raise FileFormatError(f"Rate file {path} is not valid JSON: {e}") from e
        return cls.from_observations(payload)

    def get(self, currency: str, day: date) -> Optional[Decimal]:
        return self._rates.get((_as_date(day), currency.upper()))

    def latest_on_or_before(self, currency: str, day: date, max_days: int) -> Optional[Tuple[date, Decimal]]:
        """Most recent observation in [day - max_days, day], if any."""
        day = _as_date(day)
        currency = currency.upper()
        days = self._dates.get(currency)
        if not days:
            return None
        pos = bisect.bisect_right(days, day)
        if pos == 0:
            return None
        found = days[pos - 1]
        if (day - found).days > max_days:
            return None
        return found, self._rates[(found, currency)]

    def currencies(self) -> List[str]:
        return sorted(self._dates)

    def __len__(self) -> int:
        return len(self._rates)


class CurrencyConverter:
    """
    Converts source-currency amounts to the reporting currency.

    Lookups are exact (date, currency) matches. lookback_days > 0 accepts the
    most recent earlier observation within that many days (ECB publishes no
    rates on weekends and TARGET holidays).
    """

    def __init__(self, rate_table: RateTable, reporting_currency: str = REPORTING_CURRENCY, lookback_days: int = 0):
        if lookback_days < 0:
            raise ValueError(f"lookback_days cannot be negative: {lookback_days}")
        self.rate_table = rate_table
        self.reporting_currency = reporting_currency.upper()
        self.lookback_days = lookback_days

    def get_rate(self, currency: str, day: Union[date, datetime]) -> Decimal:
        """
        Units of `currency` per one reporting-currency unit.

        Raises:
            MissingRateError: If no rate exists for (currency, day).
        """
        currency = (currency or '').strip().upper()
        day = _as_date(day)
        if currency == self.reporting_currency:
            return Decimal(1)

        rate = self.rate_table.get(currency, day)
        if rate is not None:
            return rate

        if self.lookback_days:
            found = self.rate_table.latest_on_or_before(currency, day, self.lookback_days)
            if found is not None:
                found_day, rate = found
                logger.debug(f"No {currency} rate on {day}, using {found_day}: {rate}")
                return rate

        raise MissingRateError(currency, day)

    def convert(self, amount: Decimal, currency: str, day: Union[date, datetime]) -> Conversion:
        """Lenient conversion: a missing rate yields rate 1 and the amount unconverted."""
        try:
            rate = self.get_rate(currency, day)
        except MissingRateError as e:
            logger.warning(f"{e}; using rate 1.0, amount left unconverted")
            return Conversion(amount=amount, rate=Decimal(1), approximate=True)

        if rate == 1:
            return Conversion(amount=amount, rate=rate)
        return Conversion(amount=amount / rate, rate=rate)


ECB_API_URL = "https://data-api.ecb.europa.eu/service/data/EXR/D.{currency}.EUR.SP00.A"

SDMX_NAMESPACES = {
    'generic': 'http://www.sdmx.org/resources/sdmxml/schemas/v2_1/data/generic',
}


def _parse_sdmx_observations(content: bytes, currency: str) -> List[dict]:
    """Generic SDMX-ML series -> observation dicts."""
    root = ET.fromstring(content)
    observations = []
    for obs in root.iterfind('.//generic:Obs', SDMX_NAMESPACES):
        dimension = obs.find('generic:ObsDimension', SDMX_NAMESPACES)
        value = obs.find('generic:ObsValue', SDMX_NAMESPACES)
        if dimension is None or value is None:
            continue
        observations.append({
            "_TIME_PERIOD": dimension.get('value'),
            "_CCY": currency,
            "_OBS_VALUE": value.get('value'),
        })
    return observations


def fetch_ecb_observations(
    currencies: Iterable[str],
    start_date: date,
    end_date: date,
    session: Optional[requests.Session] = None,
    timeout: float = 10,
) -> dict:
    """
    Download daily reference rates and return them as an observation document.

    Currencies whose request fails are logged and left out; the caller
    decides whether a partial document is acceptable.

    Example:
        >>> payload = fetch_ecb_observations(["USD"], date(2024, 1, 1), date(2024, 1, 31))
        >>> table = RateTable.from_observations(payload)
    """
    if session is None:
        session = requests.Session()
        session.headers.update({
            "User-Agent": "Taxfolio/1.0 (Tax Reporting)",
            "Accept": "application/xml",
        })

    observations: List[dict] = []
    for currency in currencies:
        currency = currency.upper()
        if currency == REPORTING_CURRENCY:
            continue
        url = ECB_API_URL.format(currency=currency)
        params = {"startPeriod": start_date.isoformat(), "endPeriod": end_date.isoformat()}
        try:
            response = session.get(url, params=params, timeout=timeout)
            response.raise_for_status()
            fetched = _parse_sdmx_observations(response.content, currency)
        except requests.RequestException as e:
            logger.error(f"ECB API request failed for {currency}: {e}")
            continue
        except ET.ParseError as e:
            logger.error(f"Failed to parse ECB response for {currency}: {e}")
            continue
        logger.info(f"ECB rates fetched: {len(fetched)} {currency}/EUR observations "
                    f"{start_date} .. {end_date}")
        observations.extend(fetched)

    return {"root": {"Obs": observations}}
