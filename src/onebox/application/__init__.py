"""Application layer - use cases, ports and the sync engine."""
