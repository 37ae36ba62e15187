"""HTTP API for the finance lifecycle service."""
