"""Use cases."""

from onebox.application.use_cases.enrich_email import EnrichEmailUseCase
from onebox.application.use_cases.ingest_email import IngestEmailUseCase

__all__ = [
    "EnrichEmailUseCase",
    "IngestEmailUseCase",
]
