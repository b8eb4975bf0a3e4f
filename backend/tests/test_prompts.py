import uuid
from datetime import date, datetime
from decimal import Decimal

from staffline.agents.prompts import build_system_prompt, fallback_reply, quota_reply
from staffline.schemas.context import BookingInfo, BusinessContext, ClientContext, FAQEntry, ServiceInfo, StaffInfo

SERVICE_ID = uuid.UUID("11111111-1111-1111-1111-111111111111")
STAFF_ID = uuid.UUID("22222222-2222-2222-2222-222222222222")


def make_business(**overrides):
    data = dict(
        id=uuid.UUID("33333333-3333-3333-3333-333333333333"),
        name="Studio Aurora",
        address="12 Navoi St",
        timezone="Asia/Tashkent",
        language="en",
        working_hours={"mon": {"start": "09:00", "end": "18:00"}, "sun": None},
        services=[ServiceInfo(id=SERVICE_ID, name="Haircut", price=Decimal("100.00"), duration_minutes=60)],
        staff=[StaffInfo(id=STAFF_ID, name="Anna", role="Stylist")],
        faqs=[FAQEntry(question="Do you take cards?", answer="Yes")],
    )
    data.update(overrides)
    return BusinessContext(**data)


def test_same_input_gives_same_prompt():
    business = make_business()
    client = ClientContext.new_client()
    today = date(2025, 3, 10)
    assert build_system_prompt(client, business, today=today) == build_system_prompt(client, business, today=today)


def test_prompt_lists_ids_hours_and_faq():
    prompt = build_system_prompt(ClientContext.new_client(), make_business(), today=date(2025, 3, 10))
    assert 'virtual assistant of "Studio Aurora"' in prompt
    assert f"[id={SERVICE_ID}]" in prompt
    assert f"Anna (Stylist) [id={STAFF_ID}]" in prompt
    assert "Mon 09:00-18:00" in prompt
    assert "Sun closed" in prompt
    assert "2025-03-10 (Mon)" in prompt
    assert "Do you take cards?" in prompt
    assert "This is a new client" in prompt


def test_known_client_section():
    client = ClientContext(
        is_new=False,
        name="Dana",
        phone="+998901234567",
        total_visits=3,
        last_visit_at=datetime(2025, 2, 1, 10, 0),
        recent_bookings=[
            BookingInfo(id=uuid.uuid4(), local_start=datetime(2025, 2, 1, 15, 0), service_name="Haircut", status="completed"),
        ],
        conversation_summaries=["Prefers Anna."],
    )
    prompt = build_system_prompt(client, make_business())
    assert "Name: Dana" in prompt
    assert "Visits so far: 3" in prompt
    assert "2025-02-01 15:00: Haircut (completed)" in prompt
    assert "Prefers Anna." in prompt
    assert "This is a new client" not in prompt


def test_language_selection():
    russian = build_system_prompt(ClientContext.new_client(), make_business(language="ru"))
    assert "AI-сотрудник" in russian

    unknown = build_system_prompt(ClientContext.new_client(), make_business(language="de"))
    assert 'virtual assistant of "Studio Aurora"' in unknown

    overridden = build_system_prompt(ClientContext.new_client(), make_business(language="ru"), language="en")
    assert 'virtual assistant of "Studio Aurora"' in overridden


def test_canned_replies_fall_back_to_english():
    assert fallback_reply("ru") != fallback_reply("en")
    assert fallback_reply("de") == fallback_reply("en")
    assert quota_reply(None) == quota_reply("en")
