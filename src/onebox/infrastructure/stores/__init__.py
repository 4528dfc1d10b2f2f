"""Store implementations."""

from onebox.infrastructure.stores.milvus_email_store import MilvusEmailIndex
from onebox.infrastructure.stores.postgres_account_registry import PostgresAccountRegistry

__all__ = [
    "MilvusEmailIndex",
    "PostgresAccountRegistry",
]
