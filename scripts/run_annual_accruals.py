#!/usr/bin/env python3
"""Annual Leave Accrual — credit a year's leave for every active employee of a tenant.

Runs the same batch as ``POST /api/v1/leave/accruals/run``. Each
(employee, leave type) unit is isolated; failures are reported per
employee and the run continues. Reruns skip units already accrued.

Usage:
    python -m scripts.run_annual_accruals --tenant <uuid>                 # current year
    python -m scripts.run_annual_accruals --tenant <uuid> --year 2027
    python -m scripts.run_annual_accruals --tenant <uuid> --dry-run       # roll back at the end
    python -m scripts.run_annual_accruals --tenant <uuid> --json          # machine-readable output

Requires in .env (project root):
    DATABASE_URL

Exit codes:
    0 = every unit accrued or skipped
    1 = one or more units failed
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import uuid
from datetime import date
from pathlib import Path

from dotenv import load_dotenv

# ── Path setup ────────────────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

# Load .env before settings are read
env_path = PROJECT_ROOT / ".env"
if env_path.exists():
    load_dotenv(env_path)

from leave_engine.common.constants import AccrualOutcome  # noqa: E402
from leave_engine.config import configure_logging  # noqa: E402
from leave_engine.database import async_session_factory, engine  # noqa: E402
from leave_engine.leave.accrual import AccrualService  # noqa: E402
from leave_engine.leave.schemas import AccrualRunSummary  # noqa: E402

logger = logging.getLogger("run_annual_accruals")


async def run(tenant_id: uuid.UUID, year: int, *, dry_run: bool) -> AccrualRunSummary:
    async with async_session_factory() as session:
        try:
            summary = await AccrualService.process_annual_accruals(session, tenant_id, year)
            if dry_run:
                logger.info("Dry run: rolling back %d accrual(s)", summary.accrued)
                await session.rollback()
            else:
                await session.commit()
        except Exception:
            await session.rollback()
            raise
    await engine.dispose()
    return summary


def _print_summary(summary: AccrualRunSummary, tenant_id: uuid.UUID, dry_run: bool) -> None:
    print(f"""
{'=' * 60}
  ANNUAL ACCRUAL {summary.year}
  Tenant   : {tenant_id}
  Dry run  : {dry_run}
  Accrued  : {summary.accrued}
  Skipped  : {summary.skipped}
  Failed   : {summary.failed}
{'=' * 60}
""")
    for result in summary.results:
        line = f"  {result.status.value:<8} {result.employee_id}  {result.leave_type_id}  {result.days}"
        if result.error:
            line += f"  ({result.error})"
        print(line)


# ══════════════════════════════════════════════════════════════════════
# Main
# ══════════════════════════════════════════════════════════════════════

def main():
    parser = argparse.ArgumentParser(
        description="Annual leave accrual for one tenant",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--tenant", type=uuid.UUID, required=True,
                        help="Tenant UUID")
    parser.add_argument("--year", type=int, default=date.today().year,
                        help="Accrual year (default: current year)")
    parser.add_argument("--dry-run", action="store_true",
                        help="Compute and post accruals, then roll back")
    parser.add_argument("--json", action="store_true",
                        help="Print the per-employee result as JSON")
    parser.add_argument("--log-level", default=None,
                        help="Override LOG_LEVEL (debug, info, warning)")
    args = parser.parse_args()

    configure_logging(args.log_level)
    summary = asyncio.run(run(args.tenant, args.year, dry_run=args.dry_run))

    if args.json:
        print(summary.model_dump_json(indent=2))
    else:
        _print_summary(summary, args.tenant, args.dry_run)

    failed = any(r.status == AccrualOutcome.failed for r in summary.results)
    sys.exit(1 if failed else 0)


if __name__ == "__main__":
    main()
