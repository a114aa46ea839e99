"""HTTP API for the proxy."""
