"""HTTP API for usage-ledger."""
