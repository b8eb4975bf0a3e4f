"""System prompt assembly. Pure functions only: same input, same prompt."""

from datetime import date
from typing import Optional

from staffline.schemas.context import BusinessContext, ClientContext
from staffline.services.availability import WEEKDAY_KEYS

TEXTS = {
    "en": {
        "intro": 'You are the virtual assistant of "{name}".',
        "about": "## About the business",
        "address": "Address",
        "phone": "Phone",
        "hours": "Working hours",
        "today": "Today's date",
        "unknown": "not specified",
        "closed": "closed",
        "services": "## Services and prices",
        "no_services": "No services have been added yet.",
        "minutes": "min",
        "staff": "## Staff",
        "no_staff": "No staff have been added yet.",
        "faq": "## Frequently asked questions",
        "style": "## Communication style",
        "rules": "## Additional rules",
        "tasks": (
            "## Your tasks\n"
            "1. Answer client questions about the business and its services.\n"
            "2. Help clients book, using the tools to check free slots and create bookings.\n"
            "3. Collect the contact details needed for a booking (name, phone).\n"
            "4. If you cannot help, suggest contacting the administrator."
        ),
        "booking_rules": (
            "## Bookings\n"
            "- When a client wants to book, ALWAYS call check_availability first.\n"
            "- Never invent free times. Only offer slots returned by the tool.\n"
            "- Confirm service, date, time and the client's name before create_booking.\n"
            "- Use get_client_bookings when the client asks about their bookings.\n"
            "- If a booking fails because the slot was taken, offer the nearest free slots."
        ),
        "client": "## About this client (use it to personalise replies)",
        "new_client": "## About this client\nThis is a new client. Greet them and ask how you can help.",
        "client_name": "Name",
        "client_phone": "Phone",
        "visits": "Visits so far",
        "last_visit": "Last visit",
        "notes": "Notes",
        "summary": "About the client",
        "recent": "Recent bookings",
        "history": "Earlier conversations",
        "tones": {
            "friendly": "Be friendly and warm. Use emoji sparingly.",
            "professional": "Be professional and polite, without extra emotion.",
            "casual": "Be informal and relaxed, like talking to a friend.",
        },
        "weekdays": ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"),
    },
    "ru": {
        "intro": 'Ты - AI-сотрудник компании "{name}".',
        "about": "## О компании",
        "address": "Адрес",
        "phone": "Телефон",
        "hours": "Часы работы",
        "today": "Сегодня",
        "unknown": "не указан",
        "closed": "выходной",
        "services": "## Услуги и цены",
        "no_services": "Услуги пока не добавлены в систему.",
        "minutes": "мин",
        "staff": "## Наши мастера/сотрудники",
        "no_staff": "Сотрудники пока не добавлены.",
        "faq": "## Частые вопросы (FAQ)",
        "style": "## Стиль общения",
        "rules": "## Дополнительные правила",
        "tasks": (
            "## Твои задачи\n"
            "1. Отвечать на вопросы клиентов о компании и услугах.\n"
            "2. Помогать с записью: используй инструменты для проверки свободных слотов и создания записей.\n"
            "3. Собирать контактные данные для записи (имя, телефон).\n"
            "4. Если не можешь ответить, предложи связаться с администратором."
        ),
        "booking_rules": (
            "## ВАЖНО: работа с записями\n"
            "- Когда клиент хочет записаться, ОБЯЗАТЕЛЬНО вызови check_availability.\n"
            "- НЕ ВЫДУМЫВАЙ доступное время. Предлагай только слоты из инструмента.\n"
            "- Перед create_booking уточни услугу, дату, время и имя клиента.\n"
            "- Если клиент спрашивает о своих записях, используй get_client_bookings.\n"
            "- Если слот уже заняли, предложи ближайшие свободные."
        ),
        "client": "## ИНФОРМАЦИЯ О КЛИЕНТЕ (используй для персонализации)",
        "new_client": "## ИНФОРМАЦИЯ О КЛИЕНТЕ\nЭто новый клиент. Поприветствуй его и спроси, чем помочь.",
        "client_name": "Имя",
        "client_phone": "Телефон",
        "visits": "Был у нас",
        "last_visit": "Последний визит",
        "notes": "Заметки",
        "summary": "О клиенте",
        "recent": "Последние записи",
        "history": "Прошлые разговоры",
        "tones": {
            "friendly": "Общайся дружелюбно и тепло, используй эмодзи умеренно.",
            "professional": "Общайся профессионально и вежливо, без лишних эмоций.",
            "casual": "Общайся неформально и легко, как с другом.",
        },
        "weekdays": ("Пн", "Вт", "Ср", "Чт", "Пт", "Сб", "Вс"),
    },
}

FALLBACK_REPLIES = {
    "en": "Sorry, I couldn't sort this out right now. Please contact our administrator and they will help you.",
    "ru": "Извините, сейчас не получается помочь. Пожалуйста, свяжитесь с администратором, он вам поможет.",
}

QUOTA_REPLIES = {
    "en": "Sorry, the assistant is temporarily unavailable. Please contact the business directly.",
    "ru": "Извините, ассистент временно недоступен. Пожалуйста, свяжитесь с нами напрямую.",
}


def texts_for(language: Optional[str]) -> dict:
    return TEXTS.get((language or "").lower()[:2], TEXTS["en"])


def fallback_reply(language: Optional[str]) -> str:
    return FALLBACK_REPLIES.get((language or "").lower()[:2], FALLBACK_REPLIES["en"])


def quota_reply(language: Optional[str]) -> str:
    return QUOTA_REPLIES.get((language or "").lower()[:2], QUOTA_REPLIES["en"])


def describe_working_hours(working_hours, t: dict) -> str:
    if not working_hours:
        return "09:00-18:00"
    if isinstance(working_hours, str):
        return working_hours
    parts = []
    for key, label in zip(WEEKDAY_KEYS, t["weekdays"]):
        entry = working_hours.get(key)
        if entry and entry.get("start") and entry.get("end"):
            parts.append(f"{label} {entry['start']}-{entry['end']}")
        else:
            parts.append(f"{label} {t['closed']}")
    return ", ".join(parts)


def _client_section(client: ClientContext, t: dict) -> str:
    if client.is_new:
        return t["new_client"]

    lines = [t["client"]]
    if client.name:
        lines.append(f"- {t['client_name']}: {client.name}")
    if client.phone:
        lines.append(f"- {t['client_phone']}: {client.phone}")
    if client.total_visits:
        lines.append(f"- {t['visits']}: {client.total_visits}")
    if client.last_visit_at:
        lines.append(f"- {t['last_visit']}: {client.last_visit_at:%Y-%m-%d}")
    if client.summary:
        lines.append(f"- {t['summary']}: {client.summary}")
    if client.notes:
        lines.append(f"- {t['notes']}: {client.notes}")
    if client.recent_bookings:
        lines.append(f"- {t['recent']}:")
        for booking in client.recent_bookings:
            lines.append(
                f"  * {booking.local_start:%Y-%m-%d %H:%M}: "
                f"{booking.service_name or '-'} ({booking.status})"
            )
    if client.conversation_summaries:
        lines.append(f"- {t['history']}:")
        for summary in client.conversation_summaries:
            lines.append(f"  * {summary}")
    return "\n".join(lines)


def build_system_prompt(
    client: ClientContext,
    business: BusinessContext,
    language: Optional[str] = None,
    today: Optional[date] = None,
) -> str:
    """
    Assemble the system prompt for one turn.
    language overrides the business language; unknown languages fall back to English.
    """
    t = texts_for(language or business.language)

    about = [
        t["about"],
        f"- {t['address']}: {business.address or t['unknown']}",
        f"- {t['phone']}: {business.phone or t['unknown']}",
        f"- {t['hours']}: {describe_working_hours(business.working_hours, t)}",
    ]
    if today:
        about.append(f"- {t['today']}: {today.isoformat()} ({t['weekdays'][today.weekday()]})")
    if business.description:
        about.append(business.description)

    if business.services:
        services = "\n".join(
            f"- {s.name} [id={s.id}]: "
            f"{s.price if s.price is not None else '-'} ({s.duration_minutes} {t['minutes']})"
            for s in business.services
        )
    else:
        services = t["no_services"]

    if business.staff:
        staff = "\n".join(
            f"- {s.name}{f' ({s.role})' if s.role else ''} [id={s.id}]"
            for s in business.staff
        )
    else:
        staff = t["no_staff"]

    sections = [
        t["intro"].format(name=business.name),
        "\n".join(about),
        f"{t['services']}\n{services}",
        f"{t['staff']}\n{staff}",
    ]
    if business.faqs:
        faq = "\n\n".join(f"Q: {f.question}\nA: {f.answer}" for f in business.faqs)
        sections.append(f"{t['faq']}\n{faq}")

    sections.append(f"{t['style']}\n{t['tones'].get(business.ai_tone, t['tones']['friendly'])}")
    if business.ai_rules:
        sections.append(f"{t['rules']}\n{business.ai_rules}")
    sections.append(t["tasks"])
    sections.append(t["booking_rules"])
    sections.append(_client_section(client, t))

    return "\n\n".join(sections)
