"""
Conversation summary worker.
Refreshes the rolling summary of conversations flagged as needing one.
Runs every 10 minutes.
"""

import asyncio
import logging

from sqlalchemy import select

from staffline.database import AsyncSessionLocal
from staffline.exceptions import ExternalServiceError
from staffline.integrations.openai_client import OpenAIClient
from staffline.models.business import Business
from staffline.services.context_service import ContextService

logger = logging.getLogger(__name__)


async def summarize_conversations(session_factory=None, llm=None, limit: int = 50) -> dict:
    """
    Main summary job.
    A model failure skips that conversation; it stays flagged for the next run.
    """
    session_factory = session_factory or AsyncSessionLocal
    llm = llm or OpenAIClient()

    summarized = 0
    failed = 0
    async with session_factory() as db:
        business_ids = (await db.execute(
            select(Business.id).where(Business.is_active == True)
        )).scalars().all()

        for business_id in business_ids:
            context = ContextService(db, business_id)
            conversation_ids = [c.id for c in await context.conversations_needing_summary(limit)]

            for conversation_id in conversation_ids:
                try:
                    await context.summarize_conversation(conversation_id, llm)
                    summarized += 1
                except ExternalServiceError as e:
                    failed += 1
                    logger.warning("Summary of conversation %s failed: %s", conversation_id, e.message)

    return {"summarized": summarized, "failed": failed}


# Entry point for running as standalone script
if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    result = asyncio.run(summarize_conversations())
    print(f"\nSummary results: {result}")
