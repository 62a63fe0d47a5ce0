"""Shared validation utilities"""

import re
from decimal import Decimal
from typing import Optional


def validate_us_phone(phone: Optional[str]) -> Optional[str]:
    """
    Validate and normalize US phone number to E.164 format.

    Args:
        phone: Phone number string in various formats

    Returns:
        Normalized phone number in E.164 format (+1XXXXXXXXXX)

    Raises:
        ValueError: If phone number is invalid
    """
    if not phone:
        return phone

    digits = re.sub(r"\D", "", phone)

    if digits.startswith("1") and len(digits) == 11:
        digits = digits[1:]

    if len(digits) != 10:
        raise ValueError("Phone number must be 10 digits for US numbers")

    return f"+1{digits}"


def validate_email(email: Optional[str]) -> Optional[str]:
    """Lowercase and check the shape of a client or signer email"""
    if not email:
        return email

    email = email.strip().lower()

    email_pattern = r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"
    if not re.match(email_pattern, email):
        raise ValueError("Invalid email format")

    return email


def validate_percentage(value: Optional[Decimal], field: str) -> Optional[Decimal]:
    """
    Check a discount or gratuity percentage.

    Args:
        value: Percentage on a 0-100 scale with at most 2 decimal places
            (None passes through)
        field: Field name used in the error message

    Raises:
        ValueError: If the percentage is outside 0-100 or too precise
    """
    if value is not None and (value < 0 or value > 100):
        raise ValueError(f"{field} must be between 0 and 100")
    return validate_decimal_places(value, 2, field)


def validate_decimal_places(value: Optional[Decimal], places: int, field: str) -> Optional[Decimal]:
    """
    Reject values more precise than the column that stores them.

    Stored pricing inputs must reproduce the stored totals exactly, so a
    value the database would round is refused instead of silently rounded.
    """
    if value is None:
        return value
    if not value.is_finite():
        raise ValueError(f"{field} must be a finite number")
    if value != value.quantize(Decimal(1).scaleb(-places)):
        raise ValueError(f"{field} allows at most {places} decimal places")
    return value
