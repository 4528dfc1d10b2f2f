"""The arena of account supervisors."""

from __future__ import annotations

import asyncio

from loguru import logger

from onebox.application.ports.account_registry import AccountEvent, AccountEventKind, AccountRegistry
from onebox.application.ports.events import EventPublisher
from onebox.application.ports.mail_source import MailConnectionFactory
from onebox.application.sync.supervisor import ConnectionSupervisor
from onebox.application.use_cases.ingest_email import IngestEmailUseCase
from onebox.domain.errors import AccountNotFoundError
from onebox.domain.models import AccountStatus
from onebox.infrastructure.settings import SyncPolicy


class SyncManager:
    """
    Maps account id to its supervisor and keeps that map in line with the
    registry: activation starts a supervisor, deactivation or deletion stops
    it and discards its state.
    """

    def __init__(
        self,
        registry: AccountRegistry,
        connection_factory: MailConnectionFactory,
        ingest: IngestEmailUseCase,
        events: EventPublisher,
        policy: SyncPolicy | None = None,
    ):
        self.registry = registry
        self.connection_factory = connection_factory
        self.ingest = ingest
        self.events = events
        self.policy = policy or SyncPolicy()
        self._supervisors: dict[str, ConnectionSupervisor] = {}
        self._lock = asyncio.Lock()
        registry.subscribe(self._on_account_event)

    def _new_supervisor(self, account_id: str) -> ConnectionSupervisor:
        return ConnectionSupervisor(
            account_id,
            registry=self.registry,
            connection_factory=self.connection_factory,
            ingest=self.ingest,
            events=self.events,
            policy=self.policy,
        )

    @property
    def account_ids(self) -> list[str]:
        return list(self._supervisors)

    def get(self, account_id: str) -> ConnectionSupervisor | None:
        return self._supervisors.get(account_id)

    async def start_all(self) -> int:
        accounts = await self.registry.list_active()
        for account in accounts:
            await self.start_account(account.id)
        logger.info(f"Sync manager started {len(accounts)} account(s)")
        return len(accounts)

    async def start_account(self, account_id: str) -> ConnectionSupervisor:
        async with self._lock:
            supervisor = self._supervisors.get(account_id)
            if supervisor is not None and supervisor.running:
                return supervisor
            # A supervisor that gave up is replaced by a fresh one
            supervisor = self._new_supervisor(account_id)
            self._supervisors[account_id] = supervisor
            supervisor.start()
            logger.info(f"[{account_id}] Supervisor started")
            return supervisor

    async def stop_account(self, account_id: str) -> bool:
        async with self._lock:
            supervisor = self._supervisors.pop(account_id, None)
        if supervisor is None:
            return False
        await supervisor.stop()
        return True

    async def _on_account_event(self, event: AccountEvent) -> None:
        logger.info(f"[{event.account_id}] Account {event.kind.value}")
        if event.kind is AccountEventKind.ACTIVATED:
            await self.start_account(event.account_id)
        else:
            await self.stop_account(event.account_id)

    def _require(self, account_id: str) -> ConnectionSupervisor:
        supervisor = self._supervisors.get(account_id)
        if supervisor is None:
            raise AccountNotFoundError(account_id)
        return supervisor

    def request_sync(self, account_id: str) -> bool:
        """Coalesced on-demand sync. False when the account is not connected right now."""
        return self._require(account_id).request_sync()

    def status(self, account_id: str) -> AccountStatus:
        return self._require(account_id).status()

    def statuses(self) -> list[AccountStatus]:
        return [s.status() for s in self._supervisors.values()]

    async def stop_all(self) -> None:
        async with self._lock:
            supervisors = list(self._supervisors.values())
            self._supervisors.clear()
        await asyncio.gather(*(s.stop() for s in supervisors))
        logger.info(f"Sync manager stopped {len(supervisors)} account(s)")
