"""Trigger endpoints for scheduled jobs (external cron, Vercel-style)."""

from fastapi import APIRouter, Depends

from staffline.api.deps import get_scheduler, verify_cron_secret
from staffline.services.automation_service import AutomationScheduler
from staffline.workers.automations import run_automations
from staffline.workers.summarize import summarize_conversations

router = APIRouter(dependencies=[Depends(verify_cron_secret)])


@router.api_route("/automations", methods=["GET", "POST"])
async def trigger_automations(scheduler: AutomationScheduler = Depends(get_scheduler)):
    """Run reminders, review requests and reactivation once."""
    results = await run_automations(scheduler=scheduler)
    return {"success": True, "results": results}


@router.api_route("/summarize", methods=["GET", "POST"])
async def trigger_summaries():
    """Summarize conversations flagged since the last run."""
    results = await summarize_conversations()
    return {"success": True, "results": results}
