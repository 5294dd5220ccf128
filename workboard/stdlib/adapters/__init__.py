"""Storage and scheduler adapters."""
