"""Use cases — the operations the CLI exposes."""
