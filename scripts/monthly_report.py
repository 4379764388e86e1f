"""Monthly AI usage report.

Aggregates every user's usage entry for one month and emails the summary
to the operator. Defaults to the previous month in the report timezone;
schedule it at 09:00 on the 1st (cron ``0 9 1 * *``).

Usage:
    python scripts/monthly_report.py --serviceAccount /path/to/sa.json
    python scripts/monthly_report.py --serviceAccount sa.json --month 2024-05 --dry-run
"""

from __future__ import annotations

import argparse
import json
import logging
import re

from google.cloud import firestore  # type: ignore

from suite_api.handlers import handle_monthly_report
from suite_api.services.usage_ledger import UsageLedger

MONTH_PATTERN = re.compile(r"^\d{4}-\d{2}$")


def _month_arg(value: str) -> str:
    if not MONTH_PATTERN.match(value):
        raise argparse.ArgumentTypeError(f"expected YYYY-MM, got {value!r}")
    return value


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Build and email the monthly AI usage report")
    parser.add_argument('--serviceAccount', required=True, help='Path to Firebase service account JSON')
    parser.add_argument('--month', type=_month_arg, help='Month to report (YYYY-MM); default previous month')
    parser.add_argument('--dry-run', action='store_true', help='Print the summary without sending email')
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format='%(asctime)s [%(name)s] %(levelname)s: %(message)s')

    db = firestore.Client.from_service_account_json(args.serviceAccount)
    outcome = handle_monthly_report(UsageLedger(db), month=args.month, dry_run=args.dry_run)
    print(json.dumps(outcome, indent=2))
    return 0 if (args.dry_run or outcome["emailSent"]) else 1


if __name__ == "__main__":
    raise SystemExit(main())
