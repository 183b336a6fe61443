"""
Ingestion Package

Boundary validation of inbound sensor events.
"""

from .ingestion_service import IngestionService, IngestResult

__all__ = ["IngestionService", "IngestResult"]
