"""Mail sync worker - keeps one supervised connection open per active account."""

from __future__ import annotations

import asyncio
import os
import signal
from dataclasses import dataclass

from loguru import logger

from onebox.domain.models import ConnectionState
from onebox.infrastructure import Settings, get_settings
from onebox.infrastructure.log_config import configure_logging
from onebox.infrastructure.wiring import Services, build_services

STATS_INTERVAL_SECONDS = 300


@dataclass
class AccountSeed:
    """An account declared in the environment, registered on startup if missing."""

    name: str
    email: str
    password: str
    imap_host: str
    imap_port: int = 993


class SyncWorker:
    """
    Headless sync engine.

    Starts a supervisor for every active account in the registry and keeps
    running until SIGINT/SIGTERM, logging a status summary periodically.
    """

    def __init__(self, settings: Settings, seeds: list[AccountSeed] | None = None):
        self.settings = settings
        self.seeds = seeds or []
        self._stop = asyncio.Event()

    def _handle_shutdown(self, signum: int) -> None:
        """Handle graceful shutdown."""
        logger.info(f"Received signal {signum}, shutting down...")
        self._stop.set()

    async def _seed_accounts(self, services: Services) -> None:
        for seed in self.seeds:
            if await services.registry.find_by_email(seed.email) is not None:
                continue
            await services.registry.create(
                email=seed.email,
                password=seed.password,
                imap_host=seed.imap_host,
                imap_port=seed.imap_port,
            )
            logger.info(f"Registered account from environment: {seed.name} ({seed.email})")

    def _log_stats(self, services: Services) -> None:
        statuses = services.manager.statuses()
        by_state: dict[str, int] = {}
        for s in statuses:
            by_state[s.state.value] = by_state.get(s.state.value, 0) + 1
        logger.info(f"Worker stats: accounts={len(statuses)}, by_state={by_state}")
        for s in statuses:
            if s.state is ConnectionState.DISCONNECTED and s.last_error:
                logger.warning(f"  - {s.account_id}: {s.last_error}")

    async def run(self) -> int:
        """Run until signalled."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._handle_shutdown, sig)

        try:
            services = await asyncio.to_thread(build_services, self.settings)
        except Exception as e:
            logger.error(f"Failed to initialize infrastructure: {e}")
            return 1

        try:
            await self._seed_accounts(services)
            started = await services.manager.start_all()
            if not started:
                logger.warning("No active accounts; waiting for activations")

            while not self._stop.is_set():
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=STATS_INTERVAL_SECONDS)
                except asyncio.TimeoutError:
                    self._log_stats(services)
        finally:
            await services.aclose()

        logger.info("Worker shutdown complete")
        return 0


def get_accounts_from_env() -> list[AccountSeed]:
    """
    Load account declarations from environment variables.

    ONEBOX_ACCOUNTS=work,personal
    ONEBOX_WORK_EMAIL=me@example.com
    ONEBOX_WORK_PASSWORD=xxx
    ONEBOX_WORK_IMAP_HOST=imap.example.com
    ONEBOX_WORK_IMAP_PORT=993   # Optional
    """
    seeds = []
    names = os.getenv("ONEBOX_ACCOUNTS", "").strip()
    for name in filter(None, (n.strip().upper() for n in names.split(","))):
        email = os.getenv(f"ONEBOX_{name}_EMAIL")
        password = os.getenv(f"ONEBOX_{name}_PASSWORD")
        host = os.getenv(f"ONEBOX_{name}_IMAP_HOST")
        if email and password and host:
            seeds.append(
                AccountSeed(
                    name=name.lower(),
                    email=email,
                    password=password,
                    imap_host=host,
                    imap_port=int(os.getenv(f"ONEBOX_{name}_IMAP_PORT", "993")),
                )
            )
            logger.info(f"Configured account: {name.lower()} ({email})")
        else:
            logger.warning(f"Account {name} missing email, password or host, skipping")
    return seeds


def main() -> int:
    """Entry point for the sync worker."""
    settings = get_settings()
    configure_logging(settings.log_level)

    logger.info("=" * 60)
    logger.info(f"{settings.app_name} Sync Worker")
    logger.info("=" * 60)

    worker = SyncWorker(settings, seeds=get_accounts_from_env())
    return asyncio.run(worker.run())


if __name__ == "__main__":
    raise SystemExit(main())
