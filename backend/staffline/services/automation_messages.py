"""Texts for reminders, review requests and win-back messages."""

import secrets
import string
from datetime import datetime
from typing import Optional

MONTHS = {
    "ru": ("января", "февраля", "марта", "апреля", "мая", "июня", "июля",
           "августа", "сентября", "октября", "ноября", "декабря"),
    "en": ("January", "February", "March", "April", "May", "June", "July",
           "August", "September", "October", "November", "December"),
}

REMINDER = {
    "ru": "Здравствуйте{name}!\n\nНапоминаем о вашей записи:\n{when}\n{service}{address}\nЖдём вас!",
    "en": "Hello{name}!\n\nA reminder about your booking:\n{when}\n{service}{address}\nSee you soon!",
}
REMINDER_WHEN = {
    "ru": {"24h": "Завтра, {date}", "default": "{date}"},
    "en": {"24h": "Tomorrow, {date}", "default": "{date}"},
}
REVIEW = {
    "ru": "Здравствуйте{name}!\n\nСпасибо, что были у нас{service}!\nКак вам визит? Оцените, пожалуйста, от 1 до 5.",
    "en": "Hello{name}!\n\nThank you for visiting us{service}!\nHow was it? Please rate your visit from 1 to 5.",
}
REACTIVATION_SOFT = {
    "ru": "Привет{name}!\n\nДавно вас не видели! Последний раз вы были у нас {days} дней назад.\nЗаписывайтесь, мы будем рады вас видеть.",
    "en": "Hi{name}!\n\nWe haven't seen you for a while: your last visit was {days} days ago.\nBook any time, we'd love to see you.",
}
REACTIVATION_PROMO = {
    "ru": "Привет{name}!\n\nМы скучаем! Вот вам скидка {discount}% на следующий визит.\nПромокод: {code}\nДействует 7 дней.",
    "en": "Hi{name}!\n\nWe miss you! Here is {discount}% off your next visit.\nPromo code: {code}\nValid for 7 days.",
}
REACTIVATION_LAST = {
    "ru": "Привет{name}!\n\nМы не хотим вас терять. Специально для вас скидка {discount}%!\nПромокод: {code}\nЭто последнее предложение.",
    "en": "Hi{name}!\n\nWe don't want to lose you. Here is {discount}% off, just for you!\nPromo code: {code}\nThis is our last offer.",
}


def _lang(language: Optional[str]) -> str:
    return "ru" if (language or "").lower().startswith("ru") else "en"


def format_local_datetime(local_dt: datetime, language: Optional[str]) -> str:
    """'15 марта в 14:30' / '15 March at 14:30'."""
    lang = _lang(language)
    joiner = "в" if lang == "ru" else "at"
    return f"{local_dt.day} {MONTHS[lang][local_dt.month - 1]} {joiner} {local_dt:%H:%M}"


def generate_promo_code(prefix: str, discount: int) -> str:
    alphabet = string.ascii_uppercase + string.digits
    return f"{prefix}{discount}{''.join(secrets.choice(alphabet) for _ in range(4))}"


def _name(name: Optional[str]) -> str:
    return f", {name}" if name else ""


def reminder_text(
    language: Optional[str],
    lead_name: str,
    local_start: datetime,
    client_name: Optional[str],
    service_name: Optional[str],
    address: Optional[str],
) -> str:
    lang = _lang(language)
    when = REMINDER_WHEN[lang].get(lead_name, REMINDER_WHEN[lang]["default"])
    return REMINDER[lang].format(
        name=_name(client_name),
        when=when.format(date=format_local_datetime(local_start, lang)),
        service=f"{service_name}\n" if service_name else "",
        address=f"{address}\n" if address else "",
    )


def review_text(language: Optional[str], client_name: Optional[str], service_name: Optional[str]) -> str:
    lang = _lang(language)
    if service_name:
        service = f' на услуге "{service_name}"' if lang == "ru" else f' for "{service_name}"'
    else:
        service = ""
    return REVIEW[lang].format(name=_name(client_name), service=service)


def reactivation_text(
    language: Optional[str],
    client_name: Optional[str],
    days_idle: int,
    discount: int,
) -> str:
    """Wording escalates with idleness; past 60 days it carries a promo code."""
    lang = _lang(language)
    if days_idle > 90:
        template = REACTIVATION_LAST[lang]
    elif days_idle > 60:
        template = REACTIVATION_PROMO[lang]
    else:
        return REACTIVATION_SOFT[lang].format(name=_name(client_name), days=days_idle)
    return template.format(
        name=_name(client_name),
        discount=discount,
        code=generate_promo_code("WELCOME", discount),
    )
