"""
Core Kernel Module

Foundational pieces shared by the ingestion library and the tax module.

Components:
- config: environment-driven settings and reference data loading
- exceptions: pipeline error hierarchy
- hashing: SHA256 content hashes for deduplication

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

__all__ = ['config', 'exceptions', 'hashing']
