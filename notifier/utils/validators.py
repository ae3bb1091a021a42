from __future__ import annotations

import re

from notifier.core.config import settings

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_phone(phone: str, country_code: str | None = None) -> str:
    """Canonical international form without the leading ``+``.

    ``+254 712-345-678``, ``0712345678`` and ``712345678`` all become
    ``254712345678``.
    """
    code = country_code or settings.PHONE_COUNTRY_CODE
    cleaned = re.sub(r"[^\d+]", "", phone or "").lstrip("+")
    if cleaned.startswith("0"):
        cleaned = code + cleaned[1:]
    if not cleaned.startswith(code):
        cleaned = code + cleaned
    return cleaned


def validate_phone(phone: str | None, country_code: str | None = None) -> bool:
    if not phone:
        return False
    code = country_code or settings.PHONE_COUNTRY_CODE
    pattern = rf"^{re.escape(code)}{settings.PHONE_NATIONAL_PATTERN}$"
    return re.match(pattern, normalize_phone(phone, code)) is not None


def validate_email(email: str | None) -> bool:
    return bool(email) and _EMAIL_RE.match(email.strip()) is not None
