"""
Field extraction: raw Smartwaiver record to canonical participant profile.

Smartwaiver templates put participant details in different places depending
on how the waiver was configured, so every field has an ordered list of
candidate locations. The first non-blank value wins.
"""

import logging
from typing import Any

from .models import CanonicalProfile, WaiverRecord

logger = logging.getLogger(__name__)

UNKNOWN_NAME = "Unknown"


def _clean(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def first_present(*candidates: Any) -> str:
    """Return the first candidate that is non-blank after stripping."""
    for candidate in candidates:
        cleaned = _clean(candidate)
        if cleaned:
            return cleaned
    return ""


def placeholder_email(waiver_id: str, feed_domain: str) -> str:
    """Deterministic stand-in address for a waiver signed without an email."""
    return f"{waiver_id}@noemail.{feed_domain}"


def extract_phone(waiver: WaiverRecord) -> str:
    participant = waiver.participant
    participants = waiver.participants
    return first_present(
        waiver.raw.get("phone"),
        participant.get("phone"),
        participant.get("mobile"),
        participants[0].get("phone") if participants else None,
    )


def extract_profile(
    waiver: WaiverRecord,
    feed_domain: str,
    synthesize_placeholder: bool = True,
) -> CanonicalProfile | None:
    """
    Build the canonical profile for a waiver.

    Returns None only when the waiver has no email and placeholder synthesis
    is switched off; with the default settings every waiver yields a profile.
    """
    raw = waiver.raw
    participant = waiver.participant

    email = first_present(raw.get("email"), participant.get("email"))
    is_placeholder = False
    if not email:
        if not synthesize_placeholder:
            logger.debug(f"Waiver {waiver.waiver_id} has no email and placeholders are off")
            return None
        email = placeholder_email(waiver.waiver_id, feed_domain)
        is_placeholder = True

    first_name = first_present(raw.get("firstName"), participant.get("firstName"))
    last_name = first_present(raw.get("lastName"), participant.get("lastName"))
    date_of_birth = first_present(raw.get("dob"), participant.get("dateOfBirth"))

    return CanonicalProfile(
        email=email,
        first_name=first_name or UNKNOWN_NAME,
        last_name=last_name or UNKNOWN_NAME,
        phone=extract_phone(waiver),
        date_of_birth=date_of_birth or None,
        email_is_placeholder=is_placeholder,
    )
