"""
Core modules for usage-index.

This package contains log discovery, per-file parsing, cache
reconciliation, aggregation and pricing.
"""
