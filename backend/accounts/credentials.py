# accounts/credentials.py
"""
Initial credentials for provisioned school users.

Students with a usable date of birth get it as DDMMYYYY so staff can
hand it out without a lookup. Everyone else, and any student whose
date of birth cannot be read, gets a random credential.
"""
import logging
import re
import secrets
import string
from datetime import date, datetime
from typing import Optional, Tuple

from django.conf import settings
from django.contrib.auth.hashers import check_password, make_password

logger = logging.getLogger(__name__)

UPPER = string.ascii_uppercase
LOWER = string.ascii_lowercase
DIGITS = string.digits
ALPHABET = UPPER + LOWER + DIGITS

_EIGHT_DIGITS = re.compile(r"^\d{8}$")
_DATE_SEPARATORS = re.compile(r"[/\-.]")


def generate_credential(length: Optional[int] = None) -> str:
    """
    Random credential with at least one uppercase letter, one lowercase
    letter and one digit.
    """
    if length is None:
        length = getattr(settings, "CREDENTIAL_LENGTH", 8)
    if length < 3:
        raise ValueError("Credential length must be at least 3")

    chars = [secrets.choice(UPPER), secrets.choice(LOWER), secrets.choice(DIGITS)]
    chars += [secrets.choice(ALPHABET) for _ in range(length - 3)]
    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)


def credential_from_date_of_birth(value) -> Optional[str]:
    """
    Render a date of birth as DDMMYYYY.

    Accepts date/datetime values, 8-digit strings (taken as already
    DDMMYYYY), YYYY-MM-DD / YYYY/MM/DD and DD-MM-YYYY / DD/MM/YYYY with
    any of "/", "-" or "." as separator, and ISO datetimes. Returns None
    when the value cannot be read.
    """
    if value is None:
        return None
    if isinstance(value, (date, datetime)):
        return value.strftime("%d%m%Y")

    text = str(value).strip()
    if not text:
        return None
    if _EIGHT_DIGITS.match(text):
        return text

    parts = _DATE_SEPARATORS.split(text)
    if len(parts) == 3 and all(p.isdigit() for p in parts):
        if len(parts[0]) == 4:
            year, month, day = parts
        else:
            day, month, year = parts
        day, month = day.zfill(2), month.zfill(2)
        if 1 <= int(day) <= 31 and 1 <= int(month) <= 12 and 1900 <= int(year) <= 2100:
            return f"{day}{month}{year}"

    try:
        return datetime.fromisoformat(text).strftime("%d%m%Y")
    except ValueError:
        return None


def parse_date_of_birth(value) -> Optional[date]:
    """Date of birth as a date, or None if it is not a real calendar date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    rendered = credential_from_date_of_birth(value)
    if rendered is None:
        return None
    try:
        return date(int(rendered[4:]), int(rendered[2:4]), int(rendered[:2]))
    except ValueError:
        return None


def initial_credential(role: str, date_of_birth=None) -> Tuple[str, bool]:
    """
    Pick the first credential for a new user.

    Returns (plaintext, derived_from_date_of_birth).
    """
    if role == "student" and date_of_birth not in (None, ""):
        rendered = credential_from_date_of_birth(date_of_birth)
        if rendered is not None:
            return rendered, True
        logger.warning(
            "Could not parse date of birth, issuing random credential",
            extra={"role": role},
        )
    return generate_credential(), False


def hash_credential(plaintext: str) -> str:
    return make_password(plaintext)


def verify_credential_hash(plaintext: str, hashed: str) -> bool:
    return check_password(plaintext, hashed)
