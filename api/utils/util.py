import re
import secrets
import string
import unicodedata
import calendar
from datetime import date, datetime, timedelta
from typing import Optional, Tuple

SERIAL_PATTERN = re.compile(r"^[A-Za-z0-9:-]+$")

# Letters that do not decompose under NFKD.
_EXTRA_FOLDS = str.maketrans({"ł": "l", "Ł": "L", "đ": "d", "Đ": "D", "ø": "o", "Ø": "O"})


def generate_secure_password(length=12):
    """
    Generates a secure random password with the specified length.
    Includes uppercase, lowercase, digits, and special characters.
    """
    uppercase = string.ascii_uppercase
    lowercase = string.ascii_lowercase
    digits = string.digits
    special = "!@#$%^&*"

    # Ensure at least one character from each set
    password = [
        secrets.choice(uppercase),
        secrets.choice(lowercase),
        secrets.choice(digits),
        secrets.choice(special)
    ]

    all_chars = uppercase + lowercase + digits + special
    password.extend(secrets.choice(all_chars) for _ in range(length - 4))

    secrets.SystemRandom().shuffle(password)
    return ''.join(password)


def normalize_serial(value: Optional[str]) -> str:
    return (value or "").strip().upper()


def is_valid_serial(value: str) -> bool:
    return bool(SERIAL_PATTERN.match(value))


def normalize_search(value: Optional[str]) -> str:
    """Lower-case, strip diacritics and collapse whitespace for address search."""
    if not value:
        return ""
    folded = unicodedata.normalize("NFKD", value.translate(_EXTRA_FOLDS))
    stripped = "".join(ch for ch in folded if not unicodedata.combining(ch))
    return re.sub(r"\s+", " ", stripped).strip().lower()


def month_range(year: int, month: int) -> Tuple[date, date]:
    """First and last day of a month, both inclusive."""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def day_bounds(start: date, end: date) -> Tuple[datetime, datetime]:
    """Datetime range covering `start` 00:00 up to (excluding) the day after `end`."""
    return (
        datetime.combine(start, datetime.min.time()),
        datetime.combine(end + timedelta(days=1), datetime.min.time()),
    )


def parse_local_date(value: str) -> date:
    """Parse `YYYY-MM-DD` as a calendar date with no timezone shift."""
    return datetime.strptime(value.strip(), "%Y-%m-%d").date()
