"""Normalization functions for field-form CSV / XLSX ingestion.

All functions accept raw cell values (str, numbers, dates or None) and return
the appropriate type or None. None of them raise on bad input.
"""

from __future__ import annotations

import hashlib
import re
import unicodedata
from datetime import date, datetime, timedelta
from typing import Any

# Spreadsheet serial day 0 (accounts for the 1900 leap-year bug).
_SERIAL_EPOCH = date(1899, 12, 30)
_SERIAL_MAX = 2958465  # 9999-12-31

_ARABIC_DIGITS = str.maketrans(
    "٠١٢٣٤٥٦٧٨٩۰۱۲۳۴۵۶۷۸۹",
    "01234567890123456789",
)

PLACEHOLDER_VALUES = frozenset({"", "-", "--", "—", "null", "none", "undefined", "nan"})

# Status words that show up in date columns of hand-filled forms.
NON_DATE_TOKENS = frozenset({
    "closed", "open", "opened", "ongoing", "pending",
    "sprayed", "not sprayed",
    "comply", "not comply", "partially comply",
    "healthy", "sick", "sporadic cases", "under treatment",
    "yes", "no", "true", "false",
    "n/a", "na", "nil",
    "available", "not available",
    "easy", "difficult", "hard to reach",
    "مغلق", "مفتوح", "جاري", "معلق", "نعم", "لا", "غير محدد", "مرشوش", "غير مرشوش",
})

_MONTHS = {
    "jan": 1, "january": 1,
    "feb": 2, "february": 2,
    "mar": 3, "march": 3,
    "apr": 4, "april": 4,
    "may": 5,
    "jun": 6, "june": 6,
    "jul": 7, "july": 7,
    "aug": 8, "august": 8,
    "sep": 9, "sept": 9, "september": 9,
    "oct": 10, "october": 10,
    "nov": 11, "november": 11,
    "dec": 12, "december": 12,
}


# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: Any) -> str | None:
    """Stringify and strip; treat empty and placeholder values as None."""
    if value is None:
        return None
    v = str(value).strip()
    if v.lower() in PLACEHOLDER_VALUES:
        return None
    return v


# ---------------------------------------------------------------------------
# Rule 2: normalize_space
# ---------------------------------------------------------------------------

def normalize_space(value: Any) -> str | None:
    """Collapse internal runs of whitespace to single spaces, then trim."""
    v = trim(value)
    if v is None:
        return None
    return re.sub(r"\s+", " ", v)


# ---------------------------------------------------------------------------
# Rule 3: to_ascii_digits
# ---------------------------------------------------------------------------

def to_ascii_digits(value: str) -> str:
    """Replace Arabic-Indic and extended Arabic-Indic digits with ASCII digits."""
    return value.translate(_ARABIC_DIGITS).replace("٫", ".").replace("٬", ",")


# ---------------------------------------------------------------------------
# Rule 4: normalize_name  (for client / village lookup)
# ---------------------------------------------------------------------------

def normalize_name(value: Any) -> str | None:
    """Casefold, drop punctuation and diacritics, collapse spaces.

    Works for Latin and Arabic script; Arabic tashkeel marks are combining
    characters and are removed along with Latin accents.
    """
    v = trim(value)
    if v is None:
        return None
    v = unicodedata.normalize("NFKD", v)
    v = "".join(c for c in v if not unicodedata.combining(c))
    v = v.casefold()
    v = re.sub(r"[^\w\s]", "", v)
    v = re.sub(r"\s+", " ", v).strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 5: digits_only / normalize_phone
# ---------------------------------------------------------------------------

def digits_only(value: Any) -> str | None:
    """Return the ASCII digits of a value (integral floats keep their integer form)."""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    v = trim(value)
    if v is None:
        return None
    digits = re.sub(r"\D", "", to_ascii_digits(v))
    return digits or None


def normalize_phone(value: Any) -> str | None:
    """Return an E.164-style Saudi phone or None.

    9 digits starting with 5      -> +9665XXXXXXXX
    10 digits starting with 05    -> +9665XXXXXXXX
    12 digits starting with 966   -> +966XXXXXXXXX
    14 digits starting with 00966 -> +966XXXXXXXXX
    Other numbers with 10-15 digits are kept with a '+' prefix; anything
    shorter is treated as a data error.
    """
    digits = digits_only(value)
    if digits is None:
        return None
    if len(digits) == 14 and digits.startswith("00966"):
        digits = digits[2:]
    if len(digits) == 9 and digits.startswith("5"):
        return f"+966{digits}"
    if len(digits) == 10 and digits.startswith("05"):
        return f"+966{digits[1:]}"
    if len(digits) == 12 and digits.startswith("966"):
        return f"+{digits}"
    if 10 <= len(digits) <= 15:
        return f"+{digits}"
    return None


# ---------------------------------------------------------------------------
# Rule 6: numbers
# ---------------------------------------------------------------------------

def parse_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    v = trim(value)
    if v is None:
        return None
    v = to_ascii_digits(v).replace(",", "")
    try:
        return float(v)
    except ValueError:
        return None


def parse_int(value: Any) -> int | None:
    """Parse a whole number; '67', '67.0' and '٦٧' all give 67."""
    f = parse_float(value)
    if f is None or f != f or f in (float("inf"), float("-inf")):
        return None
    return int(f)


def parse_count(value: Any) -> int:
    """Parse an animal count; missing or negative counts are 0."""
    n = parse_int(value)
    return n if n is not None and n > 0 else 0


_TRUE_TOKENS = frozenset({"true", "yes", "y", "1", "نعم", "صح", "required", "مطلوب"})


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    v = trim(value)
    if v is None:
        return False
    return v.casefold() in _TRUE_TOKENS


# ---------------------------------------------------------------------------
# Rule 7: parse_date
# ---------------------------------------------------------------------------

_SERIAL_RE = re.compile(r"^\d+(\.\d+)?$")
_DAY_MON_RE = re.compile(r"^(\d{1,2})[-\s/]([A-Za-z]{3,9})\.?(?:[-\s/,]+(\d{2}|\d{4}))?$")
_MON_DAY_RE = re.compile(r"^([A-Za-z]{3,9})\.?\s+(\d{1,2}),?\s+(\d{4})$")
_SLASH_DMY_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_SLASH_YMD_RE = re.compile(r"^(\d{4})/(\d{1,2})/(\d{1,2})$")
_DASH_YMD_RE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})(?:[T\s].*)?$")
_DASH_DMY_RE = re.compile(r"^(\d{1,2})[-.](\d{1,2})[-.](\d{4})$")


def _make_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _day_month(year: int, first: int, second: int) -> date | None:
    """Day-first unless only the month-first reading is a valid date."""
    return _make_date(year, second, first) or _make_date(year, first, second)


def _from_serial(serial: float) -> date | None:
    if not 1 <= serial <= _SERIAL_MAX:
        return None
    return _SERIAL_EPOCH + timedelta(days=int(serial))


def _month_number(name: str) -> int | None:
    return _MONTHS.get(name.lower())


def parse_date(value: Any, today: date | None = None) -> date | None:
    """Return the calendar date a raw cell denotes, or None.

    Recognized families: date/datetime objects, spreadsheet serial numbers,
    'D-Mon' (current year), 'D-Mon-YYYY', 'Mon D, YYYY', 'DD/MM/YYYY' with an
    MM/DD/YYYY fallback, 'YYYY/MM/DD', 'YYYY-MM-DD' with a YYYY-DD-MM fallback,
    'DD-MM-YYYY' and 'DD.MM.YYYY'. Arabic-Indic digits are accepted anywhere.
    Status words from neighbouring columns ('Closed', 'not comply', ...) give
    None rather than a bogus date.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)):
        return _from_serial(value)

    v = normalize_space(value)
    if v is None:
        return None
    if v.casefold() in NON_DATE_TOKENS:
        return None
    v = to_ascii_digits(v)

    if _SERIAL_RE.match(v):
        return _from_serial(float(v))

    m = _DAY_MON_RE.match(v)
    if m:
        month = _month_number(m.group(2))
        if month is None:
            return None
        if m.group(3) is None:
            year = (today or date.today()).year
        else:
            year = int(m.group(3))
            if year < 100:
                year += 2000
        return _make_date(year, month, int(m.group(1)))

    m = _MON_DAY_RE.match(v)
    if m:
        month = _month_number(m.group(1))
        if month is None:
            return None
        return _make_date(int(m.group(3)), month, int(m.group(2)))

    m = _SLASH_DMY_RE.match(v)
    if m:
        return _day_month(int(m.group(3)), int(m.group(1)), int(m.group(2)))

    m = _SLASH_YMD_RE.match(v) or _DASH_YMD_RE.match(v)
    if m:
        year, first, second = int(m.group(1)), int(m.group(2)), int(m.group(3))
        return _make_date(year, first, second) or _make_date(year, second, first)

    m = _DASH_DMY_RE.match(v)
    if m:
        return _day_month(int(m.group(3)), int(m.group(1)), int(m.group(2)))

    return None


# ---------------------------------------------------------------------------
# Helper: stable_digits  (deterministic synthesized identifiers)
# ---------------------------------------------------------------------------

def stable_digits(key: str, length: int) -> str:
    """Return `length` decimal digits derived from a sha256 of `key`."""
    number = int(hashlib.sha256(key.encode("utf-8")).hexdigest(), 16)
    return str(number % (10 ** length)).zfill(length)


def stable_hex(key: str, length: int = 8) -> str:
    """Return `length` upper-case hex characters derived from a sha256 of `key`."""
    return hashlib.sha256(key.encode("utf-8")).hexdigest()[:length].upper()
