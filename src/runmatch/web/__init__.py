"""HTTP API for result ingestion and match review."""
