"""Encrypted UDP status ingestion with debounced webhook alerting."""

__version__ = "0.3.0"
