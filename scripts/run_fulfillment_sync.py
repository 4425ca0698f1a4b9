#!/usr/bin/env python3
"""
Pull fulfillments from the commerce platform into local shipments.

Reconciles transferred, still-open orders placed within the recency window
(``reconciliation.recency_days``, at most ``reconciliation.batch_limit``
orders), or a single order with --order-number.  Safe to run repeatedly:
fulfillments already recorded locally are skipped.

Usage:
    python3 scripts/run_fulfillment_sync.py [options]

Examples:
    # Periodic run (cron)
    python3 scripts/run_fulfillment_sync.py --json-logs

    # One order
    python3 scripts/run_fulfillment_sync.py --order-number A10042
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Reconcile platform fulfillments into local shipments.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML override file (default: $WHOLESALE_CONFIG or packaged defaults).",
    )
    parser.add_argument(
        "--db-url",
        default=None,
        help="Database URL (default: database.url from config).",
    )
    parser.add_argument(
        "--order-number",
        default=None,
        help="Reconcile this order only.",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit structured JSON logs to stderr.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    # Lazy imports so we fail fast on args first
    from wholesale_config import get_active_config
    from wholesale_kernel.db.engine import get_session, init_engine_from_url
    from wholesale_kernel.exceptions import IntegrationNotConfiguredError
    from wholesale_kernel.logging_config import configure_logging
    from wholesale_kernel.selectors.order_selector import OrderSelector
    from wholesale_services import OrderOperations

    if args.json_logs:
        configure_logging()

    config = get_active_config(args.config)
    if not config.platform.is_configured:
        print("ERROR: Commerce platform is not configured "
              "(COMMERCE_STORE_DOMAIN / COMMERCE_ACCESS_TOKEN).", file=sys.stderr)
        return 1

    init_engine_from_url(
        args.db_url or config.database.url,
        echo=config.database.echo,
        pool_size=config.database.pool_size,
        max_overflow=config.database.max_overflow,
    )
    session = get_session()
    try:
        ops = OrderOperations(session, config=config)

        if args.order_number:
            order = OrderSelector(session).get_order_by_number(args.order_number)
            session.rollback()
            if order is None:
                print(f"ERROR: Order {args.order_number} not found.", file=sys.stderr)
                return 1
            result = ops.reconcile_order(order.id)
            if not result.success:
                print(f"FAILED {args.order_number}: {result.error.message}", file=sys.stderr)
                return 1
            outcome = result.data
            print(f"{outcome.order_number}: {outcome.shipments_created} new shipment(s), "
                  f"{outcome.duplicates_skipped} already synced, status {outcome.status.value}")
            return 0

        try:
            run = ops.reconcile_recent()
        except IntegrationNotConfiguredError as e:
            print(f"ERROR: {e}", file=sys.stderr)
            return 1

        print(f"Reconciled {run.total_items} order(s): {run.succeeded} succeeded, "
              f"{run.failed} failed ({run.status.value})")
        for item in run.errors:
            print(f"  {item.item_key}: [{item.error_code}] {item.error_message}")
        return 0 if run.failed == 0 else 2
    finally:
        session.close()


if __name__ == "__main__":
    sys.exit(main())
