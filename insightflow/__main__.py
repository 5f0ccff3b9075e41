"""
Command line entry point: ``python -m insightflow <command>``.

    python -m insightflow login --provider umami --server https://umami.example.com --username me --password ...
    python -m insightflow accounts
    python -m insightflow notify <account-id> <website-id> daily
    python -m insightflow set-time 8:30
    python -m insightflow fire-now
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from insightflow.cache import OfflineCache
from insightflow.config import InsightFlowConfig, configure_logging
from insightflow.context import AppContext
from insightflow.errors import InsightFlowError
from insightflow.models import AccountCredentials, ProviderType
from insightflow.scheduler import NotificationDataSource, NotificationSetting, fire_now
from insightflow.secrets import load_secrets_from_secret_manager

logger = logging.getLogger(__name__)


def _parse_time(raw: str):
    hour, sep, minute = raw.partition(":")
    try:
        return int(hour), int(minute) if sep else 0
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected HH:MM, got {raw!r}") from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="insightflow", description="InsightFlow analytics digests and cache maintenance")
    parser.add_argument("--log-level", default=None, help="Log level (default: LOG_LEVEL or INFO)")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("fire-now", help="Deliver every enabled digest immediately")
    commands.add_parser("reschedule", help="Re-register recurring digests for all enabled websites")
    commands.add_parser("deliver-due", help="Deliver recurring digests due this minute (run from cron every minute)")
    commands.add_parser("clear-expired", help="Remove expired and corrupt cache entries")
    commands.add_parser("cache-size", help="Print the offline cache size")
    commands.add_parser("accounts", help="List configured accounts")

    login = commands.add_parser("login", help="Add an analytics account")
    login.add_argument("--provider", choices=[p.value for p in ProviderType], required=True)
    login.add_argument("--server", default=None, help="Server URL (default: the provider's cloud URL)")
    login.add_argument("--name", default="", help="Display name")
    login.add_argument("--username")
    login.add_argument("--password")
    login.add_argument("--api-key")
    login.add_argument("--site", action="append", default=[], help="Plausible site domain (repeatable)")

    logout = commands.add_parser("logout", help="Remove an account")
    logout.add_argument("account_id")

    notify = commands.add_parser("notify", help="Set the digest cadence for a website, then reschedule")
    notify.add_argument("account_id")
    notify.add_argument("website_id")
    notify.add_argument("setting", choices=[s.value for s in NotificationSetting])

    set_time = commands.add_parser("set-time", help="Set the digest time (HH:MM), then reschedule")
    set_time.add_argument("time", type=_parse_time)

    data_source = commands.add_parser("set-data-source", help="Choose which day daily digests cover, then reschedule")
    data_source.add_argument("source", choices=[s.value for s in NotificationDataSource])
    return parser


async def _login(context: AppContext, args: argparse.Namespace) -> int:
    provider_type = ProviderType(args.provider)
    credentials = AccountCredentials(username=args.username, password=args.password, api_key=args.api_key)
    account = await context.registry.login(args.server or provider_type.cloud_url, provider_type, credentials, args.name)
    for site in args.site:
        await context.registry.add_site(account.id, site)
    print(f"Added {provider_type.display_name} account {account.display_name} ({account.id})")
    return 0


async def _with_context(config: InsightFlowConfig, args: argparse.Namespace) -> int:
    context = AppContext.from_config(config)
    try:
        if args.command == "accounts":
            active = context.registry.active_account
            for account in context.registry.accounts:
                marker = "*" if active and account.id == active.id else " "
                print(f"{marker} {account.id}  {account.provider_type.display_name:<9}  {account.display_name}")
            return 0
        if args.command == "login":
            return await _login(context, args)
        if args.command == "logout":
            await context.registry.remove_account(args.account_id)
            return 0
        if args.command == "deliver-due":
            print(await context.channel.deliver_due())
            return 0

        scheduler = context.scheduler
        if args.command == "notify":
            scheduler.set_setting(args.account_id, args.website_id, NotificationSetting(args.setting))
        elif args.command == "set-time":
            scheduler.set_notification_time(*args.time)
        elif args.command == "set-data-source":
            scheduler.set_data_source(NotificationDataSource(args.source))
        registered = await scheduler.reschedule()
        print(f"Scheduled {len(registered)} notification(s)")
        return 0
    finally:
        await context.aclose()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    load_secrets_from_secret_manager()
    config = InsightFlowConfig.from_env()

    if args.command in ("clear-expired", "cache-size"):
        cache = OfflineCache(config.cache_dir)
        if args.command == "clear-expired":
            print(f"Removed {cache.clear_expired()} expired entries")
        print(cache.formatted_size())
        return 0

    try:
        if args.command == "fire-now":
            print(f"Delivered {asyncio.run(fire_now(config))} digest(s)")
            return 0
        return asyncio.run(_with_context(config, args))
    except (InsightFlowError, KeyError, ValueError) as e:
        logger.error("%s failed: %s", args.command, e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
