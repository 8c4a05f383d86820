"""
Reconciliation worker
=====================
Background loop that does what the /{tool}/cron trigger does, for every
tool, every WORKER_INTERVAL_SECONDS:

- reconcile in-flight generations of all accounts (stale ones are failed
  and refunded)
- refund generations that were never dispatched

Run with: python worker.py
"""

import asyncio
import traceback

from config.settings import get_settings
from dependencies import Services, get_services
from models import TOOL_NAMES
from services.orphan_sweeper import SweepReport
from services.reconciliation import ReconciliationReport


async def run_cycle(services: Services) -> dict:
    """One pass over every tool. A failing tool does not stop the others."""
    settings = get_settings()
    report = ReconciliationReport()
    sweep = SweepReport()

    for tool in TOOL_NAMES:
        try:
            report.merge(await services.poller.process(None, tool, settings.CRON_BATCH_SIZE, fail_stale=True))
            sweep.merge(await services.sweeper.sweep(None, tool))
        except Exception as e:
            print(f"❌ Worker cycle failed for {tool}: {e}")
            traceback.print_exc()

    if report.checked or sweep.cleaned:
        print(f"⏳ Cycle: checked {report.checked}, completed {report.completed}, "
              f"failed {report.failed}, orphans {sweep.cleaned}")

    return {"processed": report.to_dict(), "orphans": sweep.to_dict()}


async def run_forever():
    settings = get_settings()
    services = await get_services()
    print(f"✅ Worker started (interval {settings.WORKER_INTERVAL_SECONDS}s)")

    while True:
        await run_cycle(services)
        await asyncio.sleep(settings.WORKER_INTERVAL_SECONDS)


if __name__ == "__main__":
    asyncio.run(run_forever())
