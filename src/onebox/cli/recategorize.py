"""Re-run classification (and optionally reply drafting) on stored records."""

from __future__ import annotations

import argparse
import asyncio

from loguru import logger

from onebox.infrastructure import get_settings
from onebox.infrastructure.log_config import configure_logging
from onebox.infrastructure.wiring import Services, build_services


async def _run(services: Services, args: argparse.Namespace) -> int:
    if args.account_id:
        updated = await services.enrich.recategorize_account(args.account_id)
        print(f"Re-categorized {updated} email(s) for account {args.account_id}")
        return 0

    record = await services.enrich.recategorize(args.email_id)
    if record is None:
        logger.error(f"Email not found: {args.email_id}")
        return 1
    if args.reply:
        record = await services.enrich.suggest_reply(args.email_id) or record

    category = record.category.value if record.category else "none"
    print(f"{record.id}: {category} ({record.ai_confidence or 0:.2f}) {record.ai_rationale or ''}")
    if args.reply and record.suggested_reply:
        print()
        print(record.suggested_reply)
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Re-categorize stored emails")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--email-id", help="Single record id")
    target.add_argument("--account-id", help="Every record of this account (batched, rate-capped)")
    parser.add_argument("--reply", action="store_true", help="Also draft a suggested reply (single record only)")
    args = parser.parse_args()

    settings = get_settings()
    configure_logging(settings.log_level)
    services = build_services(settings)
    try:
        return asyncio.run(_run(services, args))
    finally:
        services.milvus.disconnect()
        services.postgres.disconnect()


if __name__ == "__main__":
    raise SystemExit(main())
