"""Standard adapters and port-backed libraries."""
