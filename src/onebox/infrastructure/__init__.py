"""Infrastructure layer - external services, databases, and configuration."""

from onebox.infrastructure.milvus_client import MilvusClientWrapper
from onebox.infrastructure.postgres_client import PostgresClientWrapper
from onebox.infrastructure.settings import Settings, SyncPolicy, get_settings

__all__ = [
    # Settings
    "Settings",
    "SyncPolicy",
    "get_settings",
    # Clients
    "MilvusClientWrapper",
    "PostgresClientWrapper",
]
