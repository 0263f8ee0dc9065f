"""Demo data helpers."""
