"""Multi-account IMAP synchronisation with an ingestion pipeline."""

__version__ = "0.1.0"
