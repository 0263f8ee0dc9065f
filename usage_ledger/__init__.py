"""
usage-ledger: token-usage recording and aggregation for a persona chat service.
"""

__version__ = "0.1.0"
