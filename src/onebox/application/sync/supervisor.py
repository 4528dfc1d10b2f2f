"""Per-account connection supervisor: connect, listen or poll, ingest, reconnect."""

from __future__ import annotations

import asyncio
from collections import deque
from datetime import timedelta
from enum import Enum
from typing import Optional

from loguru import logger

from onebox.application.ports.account_registry import AccountRegistry
from onebox.application.ports.events import EventPublisher
from onebox.application.ports.mail_source import MailConnection, MailConnectionFactory, SearchCriteria
from onebox.application.sync.single_flight import SingleFlight
from onebox.application.use_cases.ingest_email import IngestEmailUseCase
from onebox.domain.errors import MailAuthError, MailTransportError, OneBoxError
from onebox.domain.models import (
    Account,
    AccountStatus,
    ConnectionState,
    DomainEvent,
    EventType,
    IngestResult,
)
from onebox.infrastructure.settings import SyncPolicy


class _Exit(str, Enum):
    """Why a served connection ended."""

    REFRESH = "refresh"
    DROPPED = "dropped"
    STOPPED = "stopped"


class ConnectionSupervisor:
    """
    Owns the single live connection of one account and its state machine.

    One asyncio task drives the loop. Ingestion runs go through a
    SingleFlight runner, so a change signal or sync request that arrives
    mid-run costs exactly one extra run. In listening mode the blocking
    change wait only happens while no run is in flight.
    """

    def __init__(
        self,
        account_id: str,
        registry: AccountRegistry,
        connection_factory: MailConnectionFactory,
        ingest: IngestEmailUseCase,
        events: EventPublisher,
        policy: SyncPolicy | None = None,
    ):
        self.account_id = account_id
        self.registry = registry
        self.connection_factory = connection_factory
        self.ingest = ingest
        self.events = events
        self.policy = policy or SyncPolicy()

        self.state = ConnectionState.DISCONNECTED
        self.strategy: Optional[ConnectionState] = None
        self.transitions: deque[ConnectionState] = deque([self.state], maxlen=64)
        self.last_error: Optional[str] = None
        self.consecutive_failures = 0
        self.last_sync_result: Optional[IngestResult] = None

        self._account: Optional[Account] = None
        self._connection: Optional[MailConnection] = None
        self._highest_uid: Optional[int] = None
        self._idle_active = False
        self._run_completed = False
        self._stopping = False
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._connection_lost = asyncio.Event()
        self._runner = SingleFlight(self._sync_job, name=f"sync:{account_id}")

    # =========================================================================
    # Public surface
    # =========================================================================

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name=f"supervisor:{self.account_id}")

    def request_sync(self) -> bool:
        """Ask for a sync run. False when there is no live connection to run it on."""
        if self._connection is None or self.state not in (ConnectionState.LISTENING, ConnectionState.POLLING):
            return False
        self._runner.trigger()
        return True

    def status(self) -> AccountStatus:
        return AccountStatus(
            account_id=self.account_id,
            state=self.state,
            strategy=self.strategy,
            connected=self._connection is not None,
            idle=self._idle_active,
            last_error=self.last_error,
            consecutive_failures=self.consecutive_failures,
            last_sync_result=self.last_sync_result,
        )

    async def stop(self) -> None:
        """Stop waiting, refuse new runs, let the current chunk finish, then disconnect."""
        if self._stopping:
            return
        self._stopping = True
        was_connected = self._connection is not None
        self._stop_event.set()
        self._runner.close()

        try:
            await asyncio.wait_for(self._runner.wait_idle(), timeout=self.policy.stop_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[{self.account_id}] Sync run did not finish within {self.policy.stop_timeout}s, cancelling")
            await self._runner.cancel()

        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

        await self._close_connection()
        self._set_state(ConnectionState.DISCONNECTED)
        if was_connected:
            self._publish(EventType.DISCONNECTED, reason="stopped")
        logger.info(f"[{self.account_id}] Supervisor stopped")

    # =========================================================================
    # Main loop
    # =========================================================================

    async def _run(self) -> None:
        try:
            while not self._stopping:
                try:
                    account = await self.registry.get(self.account_id)
                except OneBoxError as e:
                    if await self._connect_failed(e):
                        break
                    continue

                if account is None or not account.is_active:
                    logger.info(f"[{self.account_id}] Account missing or inactive, not connecting")
                    break
                self._account = account

                self._set_state(ConnectionState.CONNECTING)
                try:
                    connection = await self._connect(account)
                except MailAuthError as e:
                    self._fail(e, kind="auth")
                    break
                except MailTransportError as e:
                    if await self._connect_failed(e):
                        break
                    continue

                outcome = await self._serve(connection)
                await self._close_connection()

                if outcome is _Exit.DROPPED:
                    self._set_state(ConnectionState.DISCONNECTED)
                    self._publish(EventType.DISCONNECTED, reason="dropped", error=self.last_error)
                    # A connection that never finished a run counts as a failed attempt
                    if not self._run_completed:
                        error = MailTransportError(self.last_error or "connection lost before first sync")
                        if await self._connect_failed(error):
                            break
                        continue
                    logger.warning(f"[{self.account_id}] Connection dropped, reconnecting")
                elif outcome is _Exit.STOPPED:
                    break
        finally:
            await self._close_connection()
            if self.state is not ConnectionState.DISCONNECTED:
                self._set_state(ConnectionState.DISCONNECTED)

    async def _connect(self, account: Account) -> MailConnection:
        connection = self.connection_factory(account)
        try:
            await asyncio.wait_for(connection.connect(), timeout=self.policy.connect_timeout)
        except asyncio.TimeoutError as e:
            await self._close_quietly(connection)
            raise MailTransportError(f"connect timed out after {self.policy.connect_timeout}s") from e
        except OneBoxError:
            await self._close_quietly(connection)
            raise
        return connection

    async def _connect_failed(self, error: Exception) -> bool:
        """Record a retryable failure. True when the attempt budget is spent."""
        self.consecutive_failures += 1
        self.last_error = str(error)
        if self.consecutive_failures >= self.policy.max_connect_attempts:
            self._fail(error, kind="transport")
            return True
        logger.warning(
            f"[{self.account_id}] Attempt {self.consecutive_failures}/{self.policy.max_connect_attempts} "
            f"failed: {error}; retrying in {self.policy.reconnect_backoff}s"
        )
        self._set_state(ConnectionState.DISCONNECTED)
        await self._pause(self.policy.reconnect_backoff)
        return False

    def _fail(self, error: Exception, kind: str) -> None:
        self.last_error = str(error)
        self._set_state(ConnectionState.ERROR)
        logger.error(f"[{self.account_id}] Giving up ({kind}): {error}")
        self._publish(EventType.ERROR, kind=kind, error=str(error))
        self._set_state(ConnectionState.DISCONNECTED)

    async def _serve(self, connection: MailConnection) -> _Exit:
        self._connection = connection
        self._connection_lost.clear()
        self._run_completed = False
        self.strategy = ConnectionState.LISTENING if connection.supports_idle else ConnectionState.POLLING
        self._set_state(self.strategy)
        self._publish(EventType.CONNECTED, strategy=self.strategy.value, folder=connection.folder)

        self._runner.trigger()
        if self.strategy is ConnectionState.LISTENING:
            return await self._listen(connection)
        return await self._poll()

    def _exit_reason(self) -> Optional[_Exit]:
        if self._stopping:
            return _Exit.STOPPED
        if self._connection_lost.is_set():
            return _Exit.DROPPED
        return None

    async def _listen(self, connection: MailConnection) -> _Exit:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.policy.idle_refresh

        while True:
            await self._runner.wait_idle()
            reason = self._exit_reason()
            if reason is not None:
                return reason

            remaining = deadline - loop.time()
            if remaining <= 0:
                self._set_state(ConnectionState.REFRESHING)
                logger.debug(f"[{self.account_id}] Refreshing long-lived connection")
                return _Exit.REFRESH

            # Wait in slices so dwell time and stop requests are noticed promptly
            self._idle_active = True
            try:
                changed = await connection.wait_for_change(min(remaining, self.policy.change_wait))
            except (MailTransportError, MailAuthError) as e:
                self.last_error = str(e)
                self._connection_lost.set()
                continue
            finally:
                self._idle_active = False

            if changed and not self._stopping:
                logger.debug(f"[{self.account_id}] Change detected")
                self._runner.trigger()

    async def _poll(self) -> _Exit:
        while True:
            await self._runner.wait_idle()
            reason = self._exit_reason()
            if reason is not None:
                return reason

            await self._pause(self.policy.poll_interval)
            reason = self._exit_reason()
            if reason is not None:
                return reason
            self._runner.trigger()

    async def _pause(self, seconds: float) -> None:
        """Sleep that ends early on stop or connection loss."""
        waiters = [
            asyncio.ensure_future(self._stop_event.wait()),
            asyncio.ensure_future(self._connection_lost.wait()),
        ]
        try:
            await asyncio.wait(waiters, timeout=seconds, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()

    # =========================================================================
    # Sync runs
    # =========================================================================

    def _criteria(self) -> SearchCriteria:
        if self._highest_uid is not None:
            return SearchCriteria(min_uid=self._highest_uid + 1)
        horizon = self.ingest.clock() - timedelta(days=self.policy.retention_days)
        last_sync = self._account.last_sync if self._account else None
        since = max(last_sync, horizon) if last_sync else horizon
        return SearchCriteria(since=since.date())

    async def _sync_job(self) -> None:
        connection = self._connection
        if connection is None or self._stopping or self._connection_lost.is_set():
            return

        try:
            uids = await asyncio.wait_for(
                connection.list_messages(self._criteria()),
                timeout=self.policy.fetch_timeout,
            )
            result = await self.ingest.run(
                self.account_id,
                uids,
                timedelta(days=self.policy.retention_days),
                connection,
                should_continue=lambda: not self._stopping,
            )
        except (MailTransportError, MailAuthError, asyncio.TimeoutError) as e:
            self.last_error = str(e) or type(e).__name__
            logger.warning(f"[{self.account_id}] Sync failed on the wire: {self.last_error}")
            self._connection_lost.set()
            return

        self.last_sync_result = result
        if result.aborted:
            if not self._stopping:
                self.last_error = result.errors[-1].error if result.errors else "ingestion aborted"
                self._connection_lost.set()
            return

        self._run_completed = True
        self.consecutive_failures = 0
        self.last_error = None

        retry = result.retry_uids
        if retry:
            # Hold the cursor below the first message that still needs another attempt
            logger.info(f"[{self.account_id}] {len(retry)} message(s) will be retried from UID {retry[0]}")
            if self._highest_uid is not None:
                self._highest_uid = max(self._highest_uid, retry[0] - 1)
        elif uids:
            self._highest_uid = max(self._highest_uid or 0, max(uids))

    # =========================================================================
    # Helpers
    # =========================================================================

    def _set_state(self, state: ConnectionState) -> None:
        if state is self.state:
            return
        logger.debug(f"[{self.account_id}] {self.state.value} -> {state.value}")
        self.state = state
        self.transitions.append(state)
        if state is ConnectionState.DISCONNECTED:
            self.strategy = None

    def _publish(self, event_type: EventType, **payload) -> None:
        self.events.publish(DomainEvent(type=event_type, account_id=self.account_id, payload=payload))

    async def _close_connection(self) -> None:
        connection, self._connection = self._connection, None
        if connection is not None:
            await self._close_quietly(connection)

    async def _close_quietly(self, connection: MailConnection) -> None:
        try:
            await connection.close()
        except OneBoxError as e:
            logger.debug(f"[{self.account_id}] Close failed: {e}")
