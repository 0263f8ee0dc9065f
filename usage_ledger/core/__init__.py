"""
Core modules for usage-ledger.

This package contains token estimation, usage recording, aggregation of
the dashboard views, and the query facade over them.
"""
