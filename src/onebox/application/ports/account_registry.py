from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Optional, Protocol

from onebox.domain.models import Account

class AccountEventKind(str, Enum):
    ACTIVATED = "activated"
    DEACTIVATED = "deactivated"
    DELETED = "deleted"

@dataclass(frozen=True)
class AccountEvent:
    kind: AccountEventKind
    account_id: str

AccountListener = Callable[[AccountEvent], Awaitable[None]]

class AccountRegistry(Protocol):
    async def get(self, account_id: str) -> Optional[Account]: ...
    async def list_active(self) -> list[Account]: ...
    async def update_last_sync(self, account_id: str, when: datetime) -> None: ...
    def subscribe(self, listener: AccountListener) -> None: ...
