"""Command-line access to a CloudKit container.

Run with:
  python -m cloudkit_web account                 # account status
  python -m cloudkit_web whoami                  # current user record and name
  python -m cloudkit_web query Task --where status=open --sort createdAt:desc --limit 10
  python -m cloudkit_web subscriptions           # registered subscriptions

Settings come from CLOUDKIT_* environment variables, optionally loaded from
a .env file in the working directory.
"""

from __future__ import annotations

import argparse
import asyncio
import base64
import json
import logging
import sys
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from dotenv import load_dotenv

from cloudkit_core.config import CloudKitConfig
from cloudkit_core.errors import CloudKitError
from cloudkit_core.service import CloudKitService
from cloudkit_core.types import (
    Predicate,
    QueryDescriptor,
    Record,
    RecordID,
    Subscription,
    sort_keys,
    where,
)

from .client import CloudKitWebContainer

logger = logging.getLogger("cloudkit_web")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m cloudkit_web",
        description="Inspect a CloudKit container from the command line.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("account", help="Show the account status")
    sub.add_parser("whoami", help="Show the current user record and name")

    query = sub.add_parser("query", help="Run a query and print matching records")
    query.add_argument("record_type")
    query.add_argument(
        "--where",
        action="append",
        default=[],
        metavar="FIELD=VALUE",
        help="Equality filter; repeat to AND several together",
    )
    query.add_argument(
        "--sort",
        action="append",
        default=[],
        metavar="FIELD[:desc]",
        help="Sort key; repeat for secondary keys",
    )
    query.add_argument("--limit", type=int, default=None)

    sub.add_parser("subscriptions", help="List registered subscriptions")
    return parser


def parse_value(raw: str) -> Any:
    """Interpret a command-line filter value as int, float or string."""
    for convert in (int, float):
        try:
            return convert(raw)
        except ValueError:
            continue
    return raw


def parse_where(clauses: Sequence[str]) -> Predicate:
    """Build an AND predicate from FIELD=VALUE clauses.

    Raises:
        ValueError: A clause has no "=" or an empty field name.
    """
    predicate = Predicate()
    for clause in clauses:
        field_name, sep, raw = clause.partition("=")
        if not sep or not field_name:
            raise ValueError(f"Expected FIELD=VALUE, got {clause!r}")
        predicate = predicate.and_(where(field_name.strip(), parse_value(raw)))
    return predicate


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, RecordID):
        return str(value)
    raise TypeError(f"{type(value).__name__} is not JSON serializable")


def record_summary(record: Record) -> dict[str, Any]:
    return {
        "recordName": record.record_id.record_name,
        "recordType": record.record_type,
        "fields": dict(record.fields),
        "modified": record.modified_at,
    }


def subscription_summary(subscription: Subscription) -> dict[str, Any]:
    return {
        "subscriptionID": subscription.subscription_id,
        "recordType": subscription.record_type,
        "firesOn": sorted(t.value for t in subscription.fires_on),
    }


async def run(args: argparse.Namespace, service: CloudKitService) -> Any:
    """Execute one parsed command and return a JSON-serializable result."""
    if args.command == "account":
        status = await service.account_status()
        return {"status": status.value}
    if args.command == "whoami":
        identity = await service.get_user_information()
        return {"userRecordName": identity.record_name, "name": identity.name}
    if args.command == "query":
        query = QueryDescriptor(
            args.record_type,
            predicate=parse_where(args.where),
            sort_keys=sort_keys(*args.sort),
            results_limit=args.limit,
        )
        return [record_summary(r) for r in await service.read_many(query)]
    if args.command == "subscriptions":
        return [subscription_summary(s) for s in await service.list_subscriptions()]
    raise ValueError(f"Unknown command {args.command!r}")


async def _main(args: argparse.Namespace, config: CloudKitConfig) -> Any:
    async with CloudKitWebContainer(config.container) as container:
        return await run(args, CloudKitService(container))


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point. Returns the process exit code."""
    load_dotenv()
    args = build_parser().parse_args(argv)

    try:
        config = CloudKitConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=config.logging.level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        result = asyncio.run(_main(args, config))
    except CloudKitError as e:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    print(json.dumps(result, indent=2, default=_json_default))
    return 0


if __name__ == "__main__":
    sys.exit(main())
