from __future__ import annotations
from typing import Any, Optional, Protocol

from onebox.domain.models import EmailRecord, SearchFilters, SearchPage

class SearchIndex(Protocol):
    async def exists_by_natural_key(self, account_id: str, message_id: str) -> bool: ...
    async def get(self, email_id: str) -> Optional[EmailRecord]: ...
    async def upsert(self, record: EmailRecord) -> None: ...
    async def update(self, email_id: str, fields: dict[str, Any]) -> Optional[EmailRecord]: ...
    async def delete(self, email_id: str) -> bool: ...
    async def search(self, filters: SearchFilters, offset: int = 0, limit: int = 20) -> SearchPage: ...
