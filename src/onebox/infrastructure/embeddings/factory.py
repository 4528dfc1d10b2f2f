"""Embeddings factory for creating embedding clients."""

from __future__ import annotations

from typing import Protocol

from loguru import logger

from onebox.infrastructure.settings import Settings

# Keep embedding input bounded; the model truncates anyway
MAX_EMBED_CHARS = 4000


class Embedder(Protocol):
    """Protocol for embedding providers."""

    def embed(self, text: str) -> list[float]:
        ...

    @property
    def dimension(self) -> int:
        ...


class SentenceTransformerEmbedder:
    """Local sentence-transformers embedder."""

    def __init__(self, model_name: str = "sentence-transformers/all-MiniLM-L6-v2"):
        from sentence_transformers import SentenceTransformer

        logger.info(f"Loading embedding model: {model_name}")
        self.model = SentenceTransformer(model_name)
        self._dimension = self.model.get_sentence_embedding_dimension()
        logger.info(f"Embedding model loaded, dimension: {self._dimension}")

    def embed(self, text: str) -> list[float]:
        return self.model.encode(text[:MAX_EMBED_CHARS], convert_to_numpy=True).tolist()

    @property
    def dimension(self) -> int:
        return self._dimension


def email_embedding_text(subject: str, sender: str, body: str) -> str:
    """The text an email is embedded under: subject weighted by repetition."""
    return f"{subject}\n{subject}\nFrom: {sender}\n\n{body}"


class EmbeddingsFactory:
    """Factory for creating embedder instances."""

    @staticmethod
    def from_settings(settings: Settings) -> Embedder:
        return EmbeddingsFactory.create(model_name=settings.embedding_model)

    @staticmethod
    def create(provider: str = "sentence-transformers", model_name: str | None = None) -> Embedder:
        """Create embedder with explicit configuration."""
        if provider == "sentence-transformers":
            return SentenceTransformerEmbedder(
                model_name or "sentence-transformers/all-MiniLM-L6-v2"
            )
        raise ValueError(f"Unknown embedding provider: {provider}")
