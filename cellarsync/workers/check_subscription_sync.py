"""
Check one consumer's Stripe subscriptions against the local mirror.

Read-only by default. Use --backfill to create rows for missing subscriptions.

    python -m cellarsync.workers.check_subscription_sync --business napa-cellars --email alice@example.com
"""
from __future__ import annotations

import argparse
import json
import sys
from dataclasses import asdict
from typing import List, Optional, TextIO

from cellarsync.core.errors import AppError
from cellarsync.features.billing import reconciler
from cellarsync.features.billing.provider import BillingProvider


def format_report(report: reconciler.DriftReport) -> List[str]:
    lines = [
        f"Consumer: {report.email}",
        f"Business: {report.business_id}",
        "",
        f"Database: {len(report.database)} subscription(s)",
    ]
    for sub in report.database:
        lines.append(f"  - {sub.id} [{sub.status}] {sub.plan or ''}".rstrip())

    lines.append("")
    lines.append(f"Stripe: {report.customer_count} customer(s), {len(report.remote)} subscription(s)")
    if report.duplicate_customer_ids:
        lines.append(f"  ! duplicate customers share this email: {', '.join(report.duplicate_customer_ids)}")
    for sub in report.remote:
        marker = "ok" if sub.in_database else "MISSING"
        lines.append(f"  - {sub.subscription_id} [{sub.status}] customer={sub.customer_id} {marker}")

    lines.append("")
    if report.missing:
        lines.append(f"{len(report.missing)} subscription(s) missing from database:")
        for sub in report.missing:
            lines.append(f"  - {sub.subscription_id} [{sub.status}]")
    else:
        lines.append("In sync.")
    return lines


def main(argv: Optional[List[str]] = None, provider: Optional[BillingProvider] = None, out: TextIO = sys.stdout) -> int:
    parser = argparse.ArgumentParser(description="Compare Stripe subscriptions with the local mirror.")
    parser.add_argument("--business", required=True, help="Business id or slug")
    parser.add_argument("--email", required=True, help="Consumer email")
    parser.add_argument("--backfill", action="store_true", help="Create rows for missing subscriptions.")
    parser.add_argument("--json", dest="as_json", action="store_true", help="Print the report as JSON.")
    args = parser.parse_args(argv)

    try:
        report = reconciler.find_drift(args.business, args.email, provider=provider)
    except AppError as e:
        print(f"error: {e.message}", file=out)
        return 2 if e.status_code < 500 else 1

    if args.as_json:
        payload = asdict(report)
        payload["missing"] = [asdict(sub) for sub in report.missing]
        print(json.dumps(payload, default=str, indent=2), file=out)
    else:
        print("\n".join(format_report(report)), file=out)

    if args.backfill and report.missing:
        result = reconciler.backfill_missing(args.business, args.email, provider=provider)
        print(
            f"\nBackfill: created={len(result.created)} skipped={len(result.skipped)} errors={len(result.errors)}",
            file=out,
        )
        for error in result.errors:
            print(f"  - {error['subscription_id']}: {error['error']}", file=out)

    return 1 if report.missing and not args.backfill else 0


if __name__ == "__main__":
    raise SystemExit(main())
