from __future__ import annotations
import asyncio
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from imapclient import IMAPClient, SocketTimeout
from loguru import logger

from onebox.application.ports.mail_source import MailConnection, RawMessage, SearchCriteria
from onebox.domain.errors import MailTransportError
from onebox.domain.models import Account
from onebox.infrastructure.email.providers.imap.errors import imap_errors

DEFAULT_FOLDER = "INBOX"
CHANGE_RESPONSES = (b"EXISTS", b"RECENT")


@dataclass
class ImapConnectionConfig:
    folder: str = DEFAULT_FOLDER
    ssl: bool = True
    connect_timeout: float = 60.0
    read_timeout: float = 60.0


class ImapMailConnection(MailConnection):
    """
    One IMAP connection for one account, selected read-only on a single folder.

    imapclient is blocking, so every call runs in a worker thread. The lock
    keeps IDLE, FETCH and LOGOUT from interleaving on the same socket.
    """

    def __init__(self, account: Account, cfg: Optional[ImapConnectionConfig] = None) -> None:
        self.account = account
        self.cfg = cfg or ImapConnectionConfig()
        self.folder = self.cfg.folder
        self._client: Optional[IMAPClient] = None
        self._lock = threading.Lock()
        self._supports_idle = False
        # UIDNEXT seen by the last listing; a later value means mail arrived since
        self._listed_uidnext: Optional[int] = None

    @property
    def supports_idle(self) -> bool:
        return self._supports_idle

    def _require_client(self) -> IMAPClient:
        if self._client is None:
            raise MailTransportError(f"{self.account.email}: not connected")
        return self._client

    # -- connect / close ---------------------------------------------------

    def _connect_sync(self) -> None:
        with self._lock, imap_errors(self.account.email):
            client = IMAPClient(
                self.account.imap_host,
                port=self.account.imap_port,
                ssl=self.cfg.ssl,
                timeout=SocketTimeout(connect=self.cfg.connect_timeout, read=self.cfg.read_timeout),
            )
            try:
                client.login(self.account.email, self.account.password)
                selected = client.select_folder(self.folder, readonly=True)
                self._listed_uidnext = selected.get(b"UIDNEXT")
                self._supports_idle = b"IDLE" in client.capabilities()
            except Exception:
                client.shutdown()
                raise
            self._client = client
        logger.info(
            f"IMAP connected: {self.account.email}@{self.account.imap_host} "
            f"({self.folder}, idle={'yes' if self._supports_idle else 'no'})"
        )

    async def connect(self) -> None:
        await asyncio.to_thread(self._connect_sync)

    def _close_sync(self) -> None:
        with self._lock:
            client, self._client = self._client, None
            if client is None:
                return
            try:
                client.logout()
            except Exception as e:
                logger.debug(f"IMAP logout failed for {self.account.email}, dropping socket: {e}")
                try:
                    client.shutdown()
                except OSError as e:
                    logger.debug(f"IMAP socket shutdown failed for {self.account.email}: {e}")

    async def close(self) -> None:
        await asyncio.to_thread(self._close_sync)

    # -- listing / fetching ------------------------------------------------

    def _list_sync(self, criteria: SearchCriteria) -> list[int]:
        search: list = []
        if criteria.since is not None:
            search += ["SINCE", criteria.since]
        if criteria.min_uid is not None:
            search += ["UID", f"{criteria.min_uid}:*"]
        with self._lock, imap_errors(self.account.email):
            client = self._require_client()
            self._listed_uidnext = self._uidnext(client)
            uids = client.search(search or ["ALL"])
        # "n:*" always matches the highest uid, even when it is below n
        if criteria.min_uid is not None:
            uids = [u for u in uids if u >= criteria.min_uid]
        return sorted(int(u) for u in uids)

    async def list_messages(self, criteria: SearchCriteria) -> list[int]:
        return await asyncio.to_thread(self._list_sync, criteria)

    def _fetch_sync(self, uids: list[int]) -> list[RawMessage]:
        if not uids:
            return []
        with self._lock, imap_errors(self.account.email):
            data = self._require_client().fetch(uids, ["RFC822", "INTERNALDATE"])

        results: list[RawMessage] = []
        for uid in uids:
            item = data.get(uid)
            if not item or b"RFC822" not in item:
                logger.warning(f"UID {uid} vanished before fetch ({self.account.email})")
                continue
            internal: Optional[datetime] = item.get(b"INTERNALDATE")
            results.append(RawMessage(uid=uid, rfc822_bytes=item[b"RFC822"], internal_date=internal))
        return results

    async def fetch(self, uids: list[int]) -> list[RawMessage]:
        return await asyncio.to_thread(self._fetch_sync, uids)

    # -- change notification -----------------------------------------------

    def _uidnext(self, client: IMAPClient) -> Optional[int]:
        status = client.folder_status(self.folder, [b"UIDNEXT"])
        value = status.get(b"UIDNEXT")
        return int(value) if value is not None else None

    def _arrived_since_listing(self, client: IMAPClient) -> bool:
        # EXISTS pushed during SEARCH/FETCH is not kept by imapclient, so compare UIDNEXT instead
        if self._listed_uidnext is None:
            return False
        current = self._uidnext(client)
        return current is not None and current > self._listed_uidnext

    def _wait_sync(self, timeout: float) -> bool:
        with self._lock, imap_errors(self.account.email):
            client = self._require_client()
            if self._arrived_since_listing(client):
                return True
            if self._supports_idle:
                client.idle()
                try:
                    responses = client.idle_check(timeout=timeout)
                finally:
                    _, done_responses = client.idle_done()
                responses = list(responses) + list(done_responses or [])
            else:
                time.sleep(timeout)
                _, responses = client.noop()
        return any(
            isinstance(r, tuple) and any(flag in r for flag in CHANGE_RESPONSES)
            for r in responses
        )

    async def wait_for_change(self, timeout: float) -> bool:
        """Block up to ``timeout`` seconds; True when the server reported new mail."""
        return await asyncio.to_thread(self._wait_sync, timeout)


class ImapConnectionFactory:
    """Builds a fresh connection per (re)connect, from the latest account record."""

    def __init__(self, cfg: Optional[ImapConnectionConfig] = None) -> None:
        self.cfg = cfg or ImapConnectionConfig()

    def __call__(self, account: Account) -> ImapMailConnection:
        return ImapMailConnection(account, self.cfg)
