"""Storage services for the portfolio backend."""

__all__ = [
    "catalog_service",
    "deletion_service",
    "ingestion_service",
    "maintenance_service",
    "retrieval_service",
]
