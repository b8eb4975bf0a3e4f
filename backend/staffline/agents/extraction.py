"""
Best-effort extraction of client facts from free text.
Both extractors return None when nothing matches and never raise.
"""

import re
from typing import Optional

import phonenumbers

MAX_SCAN_CHARS = 2000

# Markers strong enough that the next word is taken as a name in any case
_STRONG_NAME = [
    re.compile(r"\b(?:my name is|call me)\s+([A-Za-z][A-Za-z'\-]{1,19})\b", re.IGNORECASE),
    re.compile(r"(?:меня зовут|мо[её] имя|зовите меня)\s+([А-ЯЁа-яё][А-ЯЁа-яё\-]{1,19})", re.IGNORECASE),
]

# Weak markers only count when followed by a capitalised word
_WEAK_NAME = [
    re.compile(r"\b(?:[Ii] am|[Ii]'m|[Tt]his is)\s+([A-Z][a-z'\-]{1,19})\b"),
    re.compile(r"(?:^|[\s,.!])(?:[Яя]|[Ээ]то)\s*[-–]?\s+([А-ЯЁ][а-яё\-]{1,19})"),
]

# Whole message is a single capitalised word
_BARE_NAME = re.compile(r"^\s*([A-ZА-ЯЁ][a-zа-яё\-]{1,19})[\s.!]*$")

_NOT_NAMES = {
    # en
    "hello", "hi", "hey", "thanks", "thank", "yes", "no", "ok", "okay", "sure",
    "good", "fine", "great", "here", "looking", "interested", "available",
    "not", "just", "going", "trying", "sorry", "booking", "today", "tomorrow",
    # ru
    "привет", "здравствуйте", "добрый", "спасибо", "да", "нет", "хорошо",
    "хочу", "хотел", "хотела", "буду", "могу", "записаться", "запись", "тут",
    "здесь", "не", "уже", "сегодня", "завтра", "клиент", "ок", "ладно",
}

# CIS numbers written without spaces or with arbitrary separators
_CIS_PHONE = re.compile(r"^\+?(998|996|995|994|993|992|7|380|375)\d{9,10}$")

# One contiguous run of digits and phone separators
_PHONE_RUN = re.compile(r"\+?\d[\d\s\-()]{8,}")


def _normalise_name(raw: str) -> Optional[str]:
    name = raw.strip("-'")
    if not 2 <= len(name) <= 20 or any(ch.isdigit() for ch in name):
        return None
    if name.lower() in _NOT_NAMES:
        return None
    return name[0].upper() + name[1:].lower()


def extract_client_name(text: Optional[str]) -> Optional[str]:
    """Name the client introduced themselves with, if any."""
    if not text or not isinstance(text, str):
        return None
    text = text[:MAX_SCAN_CHARS]

    for pattern in _STRONG_NAME + _WEAK_NAME:
        match = pattern.search(text)
        if match:
            name = _normalise_name(match.group(1))
            if name:
                return name

    match = _BARE_NAME.match(text)
    if match:
        return _normalise_name(match.group(1))
    return None


def extract_phone(text: Optional[str], region: Optional[str] = None) -> Optional[str]:
    """
    Phone number mentioned in the message, as E.164.
    region is an ISO country code used for numbers written without +.
    """
    if not text or not isinstance(text, str):
        return None
    text = text[:MAX_SCAN_CHARS]

    for run in _PHONE_RUN.findall(text):
        cleaned = re.sub(r"[^\d+]", "", run)
        if _CIS_PHONE.match(cleaned):
            return f"+{cleaned.lstrip('+')}"

    try:
        for match in phonenumbers.PhoneNumberMatcher(text, region):
            return phonenumbers.format_number(match.number, phonenumbers.PhoneNumberFormat.E164)
    except phonenumbers.NumberParseException:
        return None
    return None


def same_phone(a: Optional[str], b: Optional[str]) -> bool:
    """Digit-wise comparison, ignoring formatting."""
    return re.sub(r"\D", "", a or "") == re.sub(r"\D", "", b or "")


def same_name(a: Optional[str], b: Optional[str]) -> bool:
    """Case and whitespace insensitive comparison."""
    return " ".join((a or "").split()).casefold() == " ".join((b or "").split()).casefold()
