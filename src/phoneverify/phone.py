"""E.164 phone number helpers."""

from __future__ import annotations

import re

import phonenumbers

from .exceptions import InvalidPhoneNumber

_COUNTRY_PREFIXES = [
    ("+1", "US/CA"),
    ("+32", "BE"),
    ("+33", "FR"),
    ("+49", "DE"),
    ("+31", "NL"),
    ("+44", "GB"),
    ("+34", "ES"),
    ("+39", "IT"),
]

_E164_DIGITS = re.compile(r"^[1-9]\d{6,14}$")
_COUNTRY_CODE = re.compile(r"^\+(\d{1,3})")
# North American numbers in the unassigned 555 area code, used for test accounts.
_FICTIONAL_NANP = re.compile(r"^555\d{7}$")


def is_e164(phone: str) -> bool:
    """Return True for ``+`` followed by 7-15 digits, first digit 1-9."""
    if not phone:
        return False
    clean = phone.strip().replace(" ", "")
    if not clean.startswith("+"):
        return False
    return bool(_E164_DIGITS.match(clean[1:]))


def _is_fictional(number: phonenumbers.PhoneNumber) -> bool:
    return number.country_code == 1 and bool(
        _FICTIONAL_NANP.match(phonenumbers.national_significant_number(number))
    )


def normalize_e164(
    phone: str,
    default_country: str = "CA",
    *,
    allow_fictional: bool = True,
) -> str:
    """Normalize user input to E.164.

    Numbers starting with ``+`` (or ``00``) are taken as international;
    anything else is read as a national number of ``default_country``.
    The result must be a valid number for its region. With
    ``allow_fictional``, North American numbers in the 555 area code are
    accepted as well.

    Raises:
        InvalidPhoneNumber: If the input is not a valid phone number.

    """
    if not phone or not isinstance(phone, str):
        raise InvalidPhoneNumber()

    cleaned = phone.strip()
    if cleaned.startswith("00"):
        cleaned = "+" + cleaned[2:]

    try:
        number = phonenumbers.parse(cleaned, default_country.upper())
    except phonenumbers.NumberParseException as e:
        raise InvalidPhoneNumber() from e

    if not phonenumbers.is_valid_number(number) and not (
        allow_fictional and _is_fictional(number)
    ):
        raise InvalidPhoneNumber()
    return phonenumbers.format_number(number, phonenumbers.PhoneNumberFormat.E164)


def mask_phone(phone: str | None) -> str:
    """Mask a phone number for logs, keeping the country code only.

    +32475123456 -> +32***
    """
    if not phone or len(phone) < 4:
        return "***"
    match = _COUNTRY_CODE.match(phone)
    if match:
        return f"+{match.group(1)}***"
    return "+***"


def mask_for_display(phone: str | None) -> str:
    """Mask a phone number for display, keeping the last four digits."""
    if not phone:
        return "your phone"
    digits = phone[-4:]
    return f"***-***-{digits}" if len(phone) > 4 else phone


def detect_country(phone: str) -> str:
    """Best-effort country label of an E.164 number, for log lines."""
    if not phone.startswith("+"):
        return "unknown"
    for prefix, country in _COUNTRY_PREFIXES:
        if phone.startswith(prefix):
            return country
    match = _COUNTRY_CODE.match(phone)
    return f"+{match.group(1)}" if match else "unknown"
