import argparse
import json

from bot import build_bot
from logging_utils import configure_logging


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Renew the Gmail push watch of every enabled subscription (run at least every 7 days)."
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Do not print the renewal summary.",
    )
    args = parser.parse_args()

    configure_logging()
    summary = build_bot().renew_watches()
    if not args.quiet:
        print(json.dumps(summary, indent=2, sort_keys=True))
    return 1 if summary["failed"] else 0


if __name__ == "__main__":
    raise SystemExit(main())
