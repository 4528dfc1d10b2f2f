"""One-shot sync of a single account, without starting the supervisor."""

from __future__ import annotations

import argparse
import asyncio
from datetime import timedelta

from loguru import logger

from onebox.application.ports.mail_source import SearchCriteria
from onebox.domain.errors import MailAuthError, MailTransportError
from onebox.domain.models import IngestResult, utcnow
from onebox.infrastructure import get_settings
from onebox.infrastructure.log_config import configure_logging
from onebox.infrastructure.wiring import Services, build_services


async def sync_once(services: Services, account_id: str, days: int, full: bool) -> IngestResult | None:
    account = await services.registry.get(account_id)
    if account is None:
        logger.error(f"Unknown account: {account_id}")
        return None

    lookback = timedelta(days=days)
    since = utcnow() - lookback
    if account.last_sync and not full:
        since = max(since, account.last_sync)

    connection = services.connections(account)
    await connection.connect()
    try:
        uids = await connection.list_messages(SearchCriteria(since=since.date()))
        return await services.ingest.run(account.id, uids, lookback, connection)
    finally:
        await connection.close()
        await services.notifier.drain(timeout=services.settings.notification_timeout_seconds)


def main() -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Sync one account once")
    parser.add_argument("account_id", help="Account id in the registry")
    parser.add_argument("--days", type=int, default=settings.sync_retention_days, help="Lookback window in days")
    parser.add_argument("--full", action="store_true", help="Ignore last_sync and list the whole lookback window")
    args = parser.parse_args()

    configure_logging(settings.log_level)
    services = build_services(settings)
    try:
        result = asyncio.run(sync_once(services, args.account_id, args.days, args.full))
    except MailAuthError as e:
        logger.error(f"Login rejected: {e}")
        return 2
    except MailTransportError as e:
        logger.error(f"Connection failed: {e}")
        return 1
    finally:
        services.milvus.disconnect()
        services.postgres.disconnect()

    if result is None:
        return 1
    print(result.model_dump_json(indent=2))
    return 0 if not result.aborted else 1


if __name__ == "__main__":
    raise SystemExit(main())
