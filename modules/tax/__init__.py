"""
Tax Module

Deterministic realized-gain calculation over a user's processed transactions.

Features:
- Chronological replay per instrument
- FIFO lot matching for stocks, long/short matching for options
- Dividend, fee and holdings aggregation

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

__all__ = ['engine', 'option_engine', 'aggregator', 'tax_events']
