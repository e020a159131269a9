"""
Ingestion Library

Components:
- parsers: broker adapters, canonical model and description classifier
- validators: text sanitization and upload checks
- ecb_rates: historical rate table and currency conversion
- countries: ISIN prefix to country lookup
- pipeline: canonical -> processed transaction enrichment

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

__all__ = ['parsers', 'validators', 'ecb_rates', 'countries', 'pipeline']
