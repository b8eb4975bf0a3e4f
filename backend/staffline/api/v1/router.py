"""Main router for API v1."""

from fastapi import APIRouter

from staffline.api.v1 import cron, timezones, webhooks

api_router = APIRouter()

# =============================================================================
# Webhooks (messaging channels)
# =============================================================================
api_router.include_router(
    webhooks.router,
    prefix="/webhooks",
    tags=["Webhooks"]
)

# =============================================================================
# Scheduled job triggers
# =============================================================================
api_router.include_router(
    cron.router,
    prefix="/cron",
    tags=["Cron"]
)

# =============================================================================
# Reference data
# =============================================================================
api_router.include_router(
    timezones.router,
    prefix="/timezones",
    tags=["Timezones"]
)
