"""Pure domain types for the procurement kernel (no I/O)."""
