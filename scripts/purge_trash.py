#!/usr/bin/env python3
"""
Permanently remove orders that have sat in the trash past the retention
period (``lifecycle.trash_retention_days``).

Each order is removed in its own transaction with its items, planned
shipments, shipments, tracking and comments.  Audit events are kept.

Usage:
    python3 scripts/purge_trash.py [--config overrides.yaml] [--dry-run]
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Purge orders trashed longer than the retention period.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--config", type=Path, default=None, help="YAML override file.")
    parser.add_argument("--db-url", default=None, help="Database URL (default: from config).")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List the orders that would be removed and exit.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    from wholesale_config import get_active_config
    from wholesale_kernel.db.engine import get_session, init_engine_from_url
    from wholesale_kernel.services.order_lifecycle_service import OrderLifecycleService
    from wholesale_services import OrderOperations

    config = get_active_config(args.config)
    init_engine_from_url(args.db_url or config.database.url, echo=config.database.echo)
    session = get_session()
    try:
        if args.dry_run:
            expired = OrderLifecycleService(session).expired_trash(
                config.lifecycle.trash_retention_days,
            )
            session.rollback()
            print(f"{len(expired)} order(s) past the "
                  f"{config.lifecycle.trash_retention_days}-day retention period")
            for order_id in expired:
                print(f"  {order_id}")
            return 0

        run = OrderOperations(session, config=config).purge_expired_trash()
        print(f"Purged {run.succeeded} of {run.total_items} order(s) ({run.status.value})")
        for item in run.errors:
            print(f"  {item.item_key}: [{item.error_code}] {item.error_message}")
        return 0 if run.failed == 0 else 2
    finally:
        session.close()


if __name__ == "__main__":
    sys.exit(main())
