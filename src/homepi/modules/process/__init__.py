"""Processing modules."""

from .event_ingestion import EventIngestion

__all__ = ["EventIngestion"]
