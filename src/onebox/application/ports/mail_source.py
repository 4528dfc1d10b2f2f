from __future__ import annotations
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Protocol

from onebox.domain.models import Account

@dataclass(frozen=True)
class SearchCriteria:
    # Both bounds optional; an empty criteria lists the whole mailbox
    since: Optional[date] = None
    min_uid: Optional[int] = None

@dataclass(frozen=True)
class RawMessage:
    uid: int
    rfc822_bytes: bytes
    internal_date: Optional[datetime] = None

class MailConnection(Protocol):
    """One live protocol connection to one mailbox folder."""

    folder: str

    @property
    def supports_idle(self) -> bool: ...
    async def connect(self) -> None: ...
    async def list_messages(self, criteria: SearchCriteria) -> list[int]: ...
    async def fetch(self, uids: list[int]) -> list[RawMessage]: ...
    async def wait_for_change(self, timeout: float) -> bool: ...
    async def close(self) -> None: ...

class MailConnectionFactory(Protocol):
    def __call__(self, account: Account) -> MailConnection: ...
