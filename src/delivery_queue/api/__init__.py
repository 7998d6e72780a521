"""HTTP API for the delivery queue."""
