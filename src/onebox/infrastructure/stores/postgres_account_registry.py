"""PostgreSQL-backed account registry."""

from __future__ import annotations

import asyncio
import threading
import uuid
from datetime import datetime
from typing import Any, Callable, Optional, TypeVar

import psycopg
from loguru import logger
from psycopg.rows import dict_row

from onebox.application.ports.account_registry import (
    AccountEvent,
    AccountEventKind,
    AccountListener,
    AccountRegistry,
)
from onebox.domain.errors import AccountNotFoundError, AccountRegistryError
from onebox.domain.models import Account, utcnow
from onebox.infrastructure.postgres_client import PostgresClientWrapper

T = TypeVar("T")

_COLUMNS = "id, email, password, imap_host, imap_port, is_active, last_sync, created_at, updated_at"


class PostgresAccountRegistry(AccountRegistry):
    """
    Account records in the ``email_accounts`` table.

    Mutations that change whether an account should be syncing
    (create, activate, deactivate, delete) are announced to subscribers
    after the row is committed.
    """

    def __init__(self, client: PostgresClientWrapper):
        self.client = client
        self._lock = threading.Lock()
        self._listeners: list[AccountListener] = []

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.to_thread(self._locked, fn, *args)
        except psycopg.Error as e:
            raise AccountRegistryError(f"Account registry {fn.__name__} failed: {e}") from e

    def _locked(self, fn: Callable[..., T], *args: Any) -> T:
        with self._lock:
            return fn(*args)

    # -- subscriptions -----------------------------------------------------

    def subscribe(self, listener: AccountListener) -> None:
        self._listeners.append(listener)

    async def _announce(self, kind: AccountEventKind, account_id: str) -> None:
        event = AccountEvent(kind=kind, account_id=account_id)
        for listener in list(self._listeners):
            try:
                await listener(event)
            except Exception:
                logger.exception(f"Account listener failed for {kind.value} {account_id}")

    # -- reads -------------------------------------------------------------

    def _fetch_one(self, account_id: str) -> Optional[dict]:
        conn = self.client.connection
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(f"SELECT {_COLUMNS} FROM email_accounts WHERE id = %s", (account_id,))
            row = cur.fetchone()
        conn.commit()
        return row

    def _fetch_active(self) -> list[dict]:
        conn = self.client.connection
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(f"SELECT {_COLUMNS} FROM email_accounts WHERE is_active ORDER BY created_at")
            rows = cur.fetchall()
        conn.commit()
        return rows

    def _fetch_by_email(self, email: str) -> Optional[dict]:
        conn = self.client.connection
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(f"SELECT {_COLUMNS} FROM email_accounts WHERE lower(email) = lower(%s)", (email,))
            row = cur.fetchone()
        conn.commit()
        return row

    async def get(self, account_id: str) -> Optional[Account]:
        row = await self._run(self._fetch_one, account_id)
        return Account.model_validate(row) if row else None

    async def find_by_email(self, email: str) -> Optional[Account]:
        row = await self._run(self._fetch_by_email, email)
        return Account.model_validate(row) if row else None

    async def list_active(self) -> list[Account]:
        return [Account.model_validate(r) for r in await self._run(self._fetch_active)]

    # -- writes ------------------------------------------------------------

    def _execute(self, sql: str, params: tuple) -> int:
        conn = self.client.connection
        try:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                count = cur.rowcount
            conn.commit()
        except psycopg.Error:
            conn.rollback()
            raise
        return count

    async def update_last_sync(self, account_id: str, when: datetime) -> None:
        await self._run(
            self._execute,
            "UPDATE email_accounts SET last_sync = %s, updated_at = %s WHERE id = %s",
            (when, utcnow(), account_id),
        )

    async def create(
        self,
        email: str,
        password: str,
        imap_host: str,
        imap_port: int = 993,
        is_active: bool = True,
    ) -> Account:
        now = utcnow()
        account = Account(
            id=str(uuid.uuid4()),
            email=email,
            password=password,
            imap_host=imap_host,
            imap_port=imap_port,
            is_active=is_active,
            created_at=now,
            updated_at=now,
        )
        await self._run(
            self._execute,
            f"INSERT INTO email_accounts ({_COLUMNS}) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)",
            (
                account.id,
                account.email,
                account.password,
                account.imap_host,
                account.imap_port,
                account.is_active,
                None,
                now,
                now,
            ),
        )
        logger.info(f"Registered account {account.email} ({account.id})")
        if account.is_active:
            await self._announce(AccountEventKind.ACTIVATED, account.id)
        return account

    async def set_active(self, account_id: str, active: bool) -> None:
        count = await self._run(
            self._execute,
            "UPDATE email_accounts SET is_active = %s, updated_at = %s WHERE id = %s",
            (active, utcnow(), account_id),
        )
        if not count:
            raise AccountNotFoundError(account_id)
        kind = AccountEventKind.ACTIVATED if active else AccountEventKind.DEACTIVATED
        await self._announce(kind, account_id)

    async def delete(self, account_id: str) -> None:
        count = await self._run(self._execute, "DELETE FROM email_accounts WHERE id = %s", (account_id,))
        if not count:
            raise AccountNotFoundError(account_id)
        await self._announce(AccountEventKind.DELETED, account_id)
