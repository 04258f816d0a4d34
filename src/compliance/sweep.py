"""Periodic compliance sweep.

Usage:
    python -m src.compliance.sweep [--dry-run] [--limit N]

Logs expired legal holds (audit only) and runs one retention cleanup pass.
Meant to be triggered externally (cron, k8s CronJob); nothing here loops.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from src.audit.events import subscribe
from src.audit.sink import audit_on_event
from src.db.engine import close_db, session_scope
from src.schemas.compliance import CleanupReport
from src.schemas.context import OperationContext
from src.services import build_services

logger = logging.getLogger(__name__)

SWEEP_ACTOR = "retention-sweep"


async def run_sweep(*, dry_run: bool = False, limit: int | None = None) -> CleanupReport:
    ctx = OperationContext(actor=SWEEP_ACTOR)
    logger.info("Compliance sweep starting (dry_run=%s, correlation=%s)", dry_run, ctx.correlation_id)

    async with session_scope() as session:
        services = build_services(session)
        expired = await services.holds.log_expired_holds(ctx)
        report = await services.retention.run_cleanup(ctx, dry_run=dry_run, limit=limit)

    logger.info(
        "Compliance sweep finished: expired_holds=%d evaluated=%d errors=%d (correlation=%s)",
        expired,
        report.evaluated,
        len(report.errors),
        ctx.correlation_id,
    )
    return report


async def _main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run one legal-hold and retention sweep.")
    parser.add_argument("--dry-run", action="store_true", help="Evaluate without changing anything")
    parser.add_argument("--limit", type=int, default=None, help="Max documents to evaluate")
    args = parser.parse_args(argv)

    subscribe(audit_on_event)
    try:
        report = await run_sweep(dry_run=args.dry_run, limit=args.limit)
    finally:
        await close_db()
    return 1 if report.errors else 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)-8s %(name)s %(message)s")
    sys.exit(asyncio.run(_main()))
