from __future__ import annotations

import argparse
import asyncio
import json
import sys

from app.admin.commands import run_command
from app.config import get_settings
from app.observability.logging import configure_logging


def main() -> None:
    parser = argparse.ArgumentParser(description="Email open tracker administration")
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create", help="Create a tracking record and print its pixel tag")
    create.add_argument("--to", required=True, help="Recipient address")
    create.add_argument("--subject", required=True)
    create.add_argument("--body", default="", help="Message body as sent")
    create.add_argument("--tracking-id", default=None, help="Use this id instead of generating one")

    show = sub.add_parser("show", help="Print a tracking record as JSON")
    show.add_argument("tracking_id")

    bounce = sub.add_parser("bounce", help="Mark a record as bounced")
    bounce.add_argument("tracking_id")
    bounce.add_argument("--reason", default="unspecified")

    sub.add_parser("init-indexes", help="Create the unique trackingId/messageId indexes")

    args = parser.parse_args()
    configure_logging(get_settings().log_level)
    code, result = asyncio.run(run_command(args.command, vars(args)))
    print(json.dumps(result, indent=2))
    sys.exit(code)


if __name__ == "__main__":
    main()
