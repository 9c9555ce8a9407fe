from datetime import datetime, date
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional

from ..errors import AmountOutOfRange

CENT = Decimal("0.01")
# Largest value a Numeric(14, 2) column holds
MAX_AMOUNT = Decimal("999999999999.99")

# Arabic-Indic and Eastern Arabic-Indic digits, Arabic separators, NBSP
_TRANSLATE_MAP = str.maketrans({
    "٠": "0", "١": "1", "٢": "2", "٣": "3", "٤": "4",
    "٥": "5", "٦": "6", "٧": "7", "٨": "8", "٩": "9",
    "۰": "0", "۱": "1", "۲": "2", "۳": "3", "۴": "4",
    "۵": "5", "۶": "6", "۷": "7", "۸": "8", "۹": "9",
    "٫": ".",  # U+066B ARABIC DECIMAL SEPARATOR
    "٬": "",   # U+066C ARABIC THOUSANDS SEPARATOR
    "،": "",   # U+060C ARABIC COMMA
    " ": "",
})


def normalize_number_string(value: object) -> str:
    """Normalize user-entered numeric strings including Arabic-Indic digits and separators.

    Converts Arabic digits to ASCII, removes thousands separators and currency
    labels, and ensures a '.' decimal. Returns "0" for empty input.
    """
    if value is None:
        return "0"
    s = str(value).strip()
    if not s:
        return "0"
    s = s.translate(_TRANSLATE_MAP)
    for label in ("AED", "aed", "د.إ"):
        s = s.replace(label, "")
    # A single comma with no dot is a decimal comma; otherwise commas group thousands
    if "," in s:
        if "." not in s and s.count(",") == 1:
            left, right = s.split(",", 1)
            if 1 <= len(right) <= 2:
                s = f"{left}.{right}"
            else:
                s = s.replace(",", "")
        else:
            s = s.replace(",", "")
    s = s.replace(" ", "")
    return s or "0"


def to_decimal(value: object) -> Decimal:
    """Parse an amount, counting anything unparseable as zero."""
    if isinstance(value, Decimal):
        return value if value.is_finite() else Decimal("0")
    if isinstance(value, bool):
        return Decimal("0")
    if isinstance(value, (int, float)):
        try:
            result = Decimal(str(value))
        except InvalidOperation:
            return Decimal("0")
        return result if result.is_finite() else Decimal("0")
    try:
        result = Decimal(normalize_number_string(value))
    except InvalidOperation:
        return Decimal("0")
    return result if result.is_finite() else Decimal("0")


def money(value: object) -> Decimal:
    """Round to fils (2 places), half-up.

    Raises ``AmountOutOfRange`` for values a money column cannot store.
    """
    amount = to_decimal(value)
    if abs(amount) > MAX_AMOUNT:
        raise AmountOutOfRange(amount)
    try:
        return amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise AmountOutOfRange(amount)


def parse_date(value: object) -> Optional[datetime]:
    """Accept ISO dates/datetimes (``2024-03-31`` or ``2024-03-31T10:00:00Z``)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    s = str(value).strip()
    if s.endswith("Z"):
        s = s[:-1]
    try:
        parsed = datetime.fromisoformat(s)
    except ValueError:
        return None
    return parsed.replace(tzinfo=None)


def end_of_day(value: Optional[datetime]) -> Optional[datetime]:
    """Make a date-only upper bound inclusive of the whole day."""
    if value is None:
        return None
    if value.hour == 0 and value.minute == 0 and value.second == 0 and value.microsecond == 0:
        return value.replace(hour=23, minute=59, second=59, microsecond=999999)
    return value
