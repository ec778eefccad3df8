import argparse
import json
import logging
import sys
from datetime import datetime
from typing import Optional

from channel_sync import trigger
from channel_sync.accounts import CHANNEL_KINDS
from channel_sync.logger import setup_logger

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Sync sales-channel orders and inventory into the warehouse."
    )
    commands = parser.add_subparsers(dest="command", required=True)

    sync = commands.add_parser("sync", help="Run one channel sync")
    sync.add_argument("channel", choices=CHANNEL_KINDS)
    sync.add_argument("--account", type=int, default=1, help="Account index (default: 1)")
    sync.add_argument("--marketplace", default="JP", help="Amazon marketplace code (default: JP)")
    sync.add_argument("--days-back", type=int, default=None, help="Lookback window in days")
    sync.add_argument("--start", type=datetime.fromisoformat, default=None, help="ISO start time")
    sync.add_argument("--end", type=datetime.fromisoformat, default=None, help="ISO end time")
    sync.add_argument(
        "--full-sync",
        action="store_true",
        help="Widen the default window and page budget",
    )

    commands.add_parser("stockout", help="Run the stockout check and notify")

    load_skus = commands.add_parser("load-skus", help="Load a SKU mapping CSV")
    load_skus.add_argument("csv_path")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logger()

    if args.command == "load-skus":
        loaded = trigger.seed_sku_mappings(args.csv_path)
        logger.info(f"✅ {loaded} SKU mappings loaded")
        return 0

    if args.command == "stockout":
        response = trigger.run_stockout_check()
    else:
        response = trigger.run_sync(
            {
                "channel": args.channel,
                "account": args.account,
                "marketplace": args.marketplace,
                "days_back": args.days_back,
                "start": args.start,
                "end": args.end,
                "full_sync": args.full_sync,
            }
        )

    print(json.dumps(response.body, indent=2, ensure_ascii=False, default=str))
    return 0 if response.status_code == 200 else 1


if __name__ == "__main__":
    sys.exit(main())
