"""
Configuration - Environment Settings and Reference Data

Settings are read from environment variables once at startup. Reference
data (rate table, converter, country table) is built from them once and then
passed explicitly to the processor and report builders; nothing here is a
module-level singleton.

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from lib.countries import CountryTable
from lib.ecb_rates import CurrencyConverter, RateTable
from lib.utils.logging_config import setup_logger

logger = setup_logger(__name__)

DEFAULT_MAX_UPLOAD_SIZE_BYTES = 10 * 1024 * 1024


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"{name}={raw!r} is not an integer, using {default}")
        return default


@dataclass(frozen=True)
class Settings:
    reporting_currency: str = "EUR"
    rates_path: Path = Path("data/history.json")
    country_data_path: Path = Path("data/countries.json")
    rate_lookback_days: int = 0
    max_upload_size_bytes: int = DEFAULT_MAX_UPLOAD_SIZE_BYTES

    @classmethod
    def from_env(cls) -> 'Settings':
        settings = cls(
            reporting_currency=os.getenv('REPORTING_CURRENCY', 'EUR').strip().upper(),
            rates_path=Path(os.getenv('RATES_PATH', 'data/history.json')),
            country_data_path=Path(os.getenv('COUNTRY_DATA_PATH', 'data/countries.json')),
            rate_lookback_days=max(0, _int_env('RATE_LOOKBACK_DAYS', 0)),
            max_upload_size_bytes=_int_env('MAX_UPLOAD_SIZE_BYTES', DEFAULT_MAX_UPLOAD_SIZE_BYTES),
        )
        logger.info(
            "Configuration loaded",
            extra={'context': {
                'reporting_currency': settings.reporting_currency,
                'rates_path': settings.rates_path,
                'country_data_path': settings.country_data_path,
                'rate_lookback_days': settings.rate_lookback_days,
                'max_upload_size_bytes': settings.max_upload_size_bytes,
            }}
        )
        return settings


@dataclass(frozen=True)
class ReferenceData:
    """Read-only tables shared by every request, with the settings they were built from."""

    rates: RateTable
    converter: CurrencyConverter
    countries: CountryTable
    settings: Settings = field(default_factory=Settings)

    @classmethod
    def build(cls, rates: RateTable, countries: CountryTable, settings: Optional[Settings] = None) -> 'ReferenceData':
        settings = settings or Settings()
        converter = CurrencyConverter(rates, settings.reporting_currency, settings.rate_lookback_days)
        return cls(rates=rates, converter=converter, countries=countries, settings=settings)

    @classmethod
    def load(cls, settings: Settings) -> 'ReferenceData':
        """
        Raises:
            FileFormatError: If a reference file is not valid JSON.
            OSError: If a reference file cannot be read.
        """
        rates = RateTable.from_file(settings.rates_path)
        countries = CountryTable.from_file(settings.country_data_path)
        return cls.build(rates, countries, settings)
