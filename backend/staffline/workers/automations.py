"""
Automation worker.
Sends due reminders, review requests and reactivation messages.
Runs every 15 minutes.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

from staffline.services.automation_service import AutomationScheduler

logger = logging.getLogger(__name__)


async def run_automations(now: Optional[datetime] = None, scheduler: Optional[AutomationScheduler] = None) -> dict:
    """
    Main automation job.
    Returns one summary per job, or {"error": ...} for a job that crashed.
    """
    scheduler = scheduler or AutomationScheduler()
    started = datetime.utcnow()
    report = await scheduler.run(now)
    logger.info("Automations finished in %.1fs: %s", (datetime.utcnow() - started).total_seconds(), report)
    return report


# Entry point for running as standalone script
if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    result = asyncio.run(run_automations())
    print(f"\nAutomation results: {result}")
