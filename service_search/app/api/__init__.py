"""HTTP API for the search service."""
