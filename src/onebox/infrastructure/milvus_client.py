"""Milvus vector database client shared by the email search index."""

from typing import Any

from loguru import logger
from pymilvus import DataType, MilvusClient

from onebox.infrastructure.settings import Settings, get_settings


class MilvusClientWrapper:
    """Wrapper owning the lazily created MilvusClient."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self._client: MilvusClient | None = None

    def connect(self) -> MilvusClient:
        """Establish connection to Milvus."""
        if self._client is None:
            logger.info(f"Connecting to Milvus at {self.settings.milvus_uri}")
            self._client = MilvusClient(uri=self.settings.milvus_uri)
            logger.info("Milvus connection established")
        return self._client

    def disconnect(self) -> None:
        """Close Milvus connection."""
        if self._client is not None:
            self._client.close()
            self._client = None
            logger.info("Milvus connection closed")

    @property
    def client(self) -> MilvusClient:
        """Get or create Milvus client."""
        if self._client is None:
            return self.connect()
        return self._client

    def health_check(self) -> dict[str, Any]:
        """Check Milvus connection health."""
        try:
            return {
                "status": "healthy",
                "uri": self.settings.milvus_uri,
                "server_version": self.client.get_server_version(),
            }
        except Exception as e:
            logger.error(f"Milvus health check failed: {e}")
            return {
                "status": "unhealthy",
                "uri": self.settings.milvus_uri,
                "error": str(e),
            }

    def ensure_collection(
        self,
        collection_name: str | None = None,
        dimension: int | None = None,
    ) -> str:
        """Ensure the string-keyed, dynamic-field collection exists."""
        name = collection_name or self.settings.milvus_collection_name
        dim = dimension or self.settings.embedding_dimension

        if self.client.has_collection(name):
            logger.info(f"Collection already exists: {name}")
            return name

        logger.info(f"Creating collection: {name} with dimension {dim}")
        self.client.create_collection(
            collection_name=name,
            dimension=dim,
            primary_field_name="id",
            id_type=DataType.VARCHAR,
            max_length=64,
            vector_field_name="embedding",
            metric_type="COSINE",
            auto_id=False,
            enable_dynamic_field=True,
        )
        return name
