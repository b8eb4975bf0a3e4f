from sqlalchemy import select

from staffline.exceptions import ExternalServiceError
from staffline.models import Conversation
from staffline.services.context_service import ContextService
from staffline.workers.automations import run_automations
from staffline.workers.summarize import summarize_conversations

from conftest import NOW, ScriptedLLM


class FailingLLM:
    async def complete(self, messages, **kwargs):
        raise ExternalServiceError("LLM request timed out")


async def flag_conversation(db, seed):
    context = ContextService(db, seed.business_id)
    conversation = await context.get_or_create_conversation(seed.client_id)
    await context.append_messages(
        conversation.id,
        [{"role": "user", "content": "I like Anna"}, {"role": "assistant", "content": "Noted"}],
        NOW,
    )
    for _ in range(10):
        await context.update_conversation_message_count(conversation.id)
    return conversation.id


async def test_summaries_written_for_flagged_conversations(db, session_factory, seed):
    conversation_id = await flag_conversation(db, seed)

    result = await summarize_conversations(session_factory=session_factory, llm=ScriptedLLM())

    assert result == {"summarized": 1, "failed": 0}
    async with session_factory() as fresh:
        flagged = (await fresh.execute(
            select(Conversation.needs_summary).where(Conversation.id == conversation_id)
        )).scalar_one()
    assert flagged is False


async def test_model_failure_keeps_the_flag(db, session_factory, seed):
    conversation_id = await flag_conversation(db, seed)

    result = await summarize_conversations(session_factory=session_factory, llm=FailingLLM())

    assert result == {"summarized": 0, "failed": 1}
    async with session_factory() as fresh:
        flagged = (await fresh.execute(
            select(Conversation.needs_summary).where(Conversation.id == conversation_id)
        )).scalar_one()
    assert flagged is True


async def test_run_automations_returns_the_report():
    class Scheduler:
        async def run(self, now=None):
            return {"reminders": {"sent": 2}}

    assert await run_automations(NOW, scheduler=Scheduler()) == {"reminders": {"sent": 2}}
