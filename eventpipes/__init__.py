"""Queue and stream pipes into an idempotent, cache-backed event processor."""
