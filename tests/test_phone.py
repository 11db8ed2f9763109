"""Tests for phone number helpers."""

import pytest

from phoneverify import InvalidPhoneNumber
from phoneverify.phone import (
    detect_country,
    is_e164,
    mask_for_display,
    mask_phone,
    normalize_e164,
)


class TestNormalizeE164:
    """Test cases for normalize_e164."""

    @pytest.mark.parametrize(
        ("raw", "country", "expected"),
        [
            ("+15551234567", "CA", "+15551234567"),
            ("(555) 123-4567", "CA", "+15551234567"),
            ("1 555 123 4567", "US", "+15551234567"),
            ("0475 12 34 56", "BE", "+32475123456"),
            ("0032475123456", "CA", "+32475123456"),
            ("06 12 34 56 78", "FR", "+33612345678"),
            ("07400 123456", "GB", "+447400123456"),
            ("(201) 555-0123", "US", "+12015550123"),
        ],
    )
    def test_valid_numbers(self, raw: str, country: str, expected: str) -> None:
        """Test normalization of national and international input."""
        assert normalize_e164(raw, country) == expected

    @pytest.mark.parametrize(
        "raw",
        [
            "",
            "abc",
            "555-1234",
            "+1555123",
            "+0123456789",
            "12345678901234567",
            "+10000000000",
            "+4412345",
            "+99912345678",
        ],
    )
    def test_invalid_numbers(self, raw: str) -> None:
        """Test that malformed numbers are rejected."""
        with pytest.raises(InvalidPhoneNumber):
            normalize_e164(raw, "CA")

    def test_fictional_numbers_can_be_refused(self) -> None:
        """Test that 555 test numbers are only accepted when allowed."""
        assert normalize_e164("+15551234567") == "+15551234567"
        with pytest.raises(InvalidPhoneNumber):
            normalize_e164("+15551234567", allow_fictional=False)
        assert normalize_e164("+12015550123", allow_fictional=False) == "+12015550123"

    def test_unknown_default_country(self) -> None:
        """Test that national input needs a known default country."""
        with pytest.raises(InvalidPhoneNumber):
            normalize_e164("0612345678", "ZZ")


def test_is_e164() -> None:
    """Test the E.164 shape check."""
    assert is_e164("+15551234567")
    assert is_e164("+32475123456")
    assert not is_e164("15551234567")
    assert not is_e164("+0555123456")
    assert not is_e164("")


def test_mask_phone_keeps_country_code_only() -> None:
    """Test log masking."""
    assert mask_phone("+32475123456") == "+32***"
    assert mask_phone("+15551234567") == "+155***"
    assert mask_phone(None) == "***"


def test_mask_for_display_keeps_last_four() -> None:
    """Test display masking."""
    assert mask_for_display("+15551234567") == "***-***-4567"
    assert mask_for_display(None) == "your phone"


def test_detect_country() -> None:
    """Test best-effort country labels."""
    assert detect_country("+15551234567") == "US/CA"
    assert detect_country("+32475123456") == "BE"
    assert detect_country("+81312345678") == "+813"
    assert detect_country("5551234567") == "unknown"
