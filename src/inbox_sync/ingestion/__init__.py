"""Ingestion pipeline components."""

from .normalizer import MessageNormalizer, NormalizationError, message_id_for
from .pipeline import IngestionPipeline

__all__ = [
    "IngestionPipeline",
    "MessageNormalizer",
    "NormalizationError",
    "message_id_for",
]
