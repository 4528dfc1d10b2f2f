"""Embeddings infrastructure."""

from onebox.infrastructure.embeddings.factory import (
    Embedder,
    EmbeddingsFactory,
    SentenceTransformerEmbedder,
    email_embedding_text,
)

__all__ = [
    "Embedder",
    "EmbeddingsFactory",
    "SentenceTransformerEmbedder",
    "email_embedding_text",
]
