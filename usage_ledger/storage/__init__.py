"""Storage layer: usage event model and append-only stores."""
