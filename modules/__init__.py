"""
Modules Package

Business logic layer operating on processed transactions.

Modules:
- tax: FIFO lot matching, option matching and report aggregation

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

__all__ = ['tax']
