from __future__ import annotations

import logging
import re

import phonenumbers
from phonenumbers import NumberParseException, PhoneNumberFormat

from app.core.config import settings

logger = logging.getLogger(__name__)


class PhoneNumberParseError(ValueError):
    pass


def _blank(value: str | None) -> bool:
    return not str(value or "").strip()


def default_phone_region() -> str | None:
    region = str(settings.PHONE_REGION or "").strip().upper()
    return region or None


def is_duplicate_phone_allowed(realm_id: str) -> bool:
    overrides = settings.REALM_DUPLICATE_PHONE or {}
    if realm_id in overrides:
        return bool(overrides[realm_id])
    return bool(settings.DUPLICATE_PHONE)


def phone_number_regex(realm_id: str) -> str | None:
    pattern = (settings.REALM_NUMBER_REGEX or {}).get(realm_id)
    if _blank(pattern):
        pattern = settings.NUMBER_REGEX
    return None if _blank(pattern) else str(pattern).strip()


def matches_number_regex(realm_id: str, phone_number: str) -> bool:
    pattern = phone_number_regex(realm_id)
    if pattern is None:
        return True
    try:
        return re.fullmatch(pattern, phone_number) is not None
    except re.error:
        logger.warning("Invalid phone number regex for realm %s: %s", realm_id, pattern)
        return True


def canonicalize(raw: str, region: str | None = None) -> str:
    """Parse ``raw`` and return it in E.164 form.

    ``region`` is only consulted when the number has no international prefix.
    """
    value = str(raw or "").strip()
    if not value:
        raise PhoneNumberParseError("Phone number is empty")
    try:
        parsed = phonenumbers.parse(value, region)
    except NumberParseException as exc:
        raise PhoneNumberParseError(f"Unable to parse phone number. {exc}") from exc
    if not phonenumbers.is_possible_number(parsed):
        raise PhoneNumberParseError(f"Impossible phone number: {value}")
    return phonenumbers.format_number(parsed, PhoneNumberFormat.E164)


def canonicalize_phone_number(raw: str | None, region: str | None = None) -> str:
    """Canonical form used for storage and lookups.

    Numbers pass through trimmed unless CANONICALIZE_PHONE_NUMBERS is on.
    ``region`` defaults to PHONE_REGION.
    """
    if not settings.CANONICALIZE_PHONE_NUMBERS:
        value = str(raw or "").strip()
        if not value:
            raise PhoneNumberParseError("Phone number is empty")
        return value
    return canonicalize(str(raw or ""), region or default_phone_region())
