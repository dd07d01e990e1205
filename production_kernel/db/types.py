"""
Module: production_kernel.db.types
Responsibility: Quantity precision and parsing helpers shared by
    models, domain code and services.  Centralizes precision and rounding so
    that every volume and percentage is quantized the same way.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/ and selectors/.  MUST NOT import from any of those layers.

CRITICAL: No floats anywhere in the production kernel.  Volumes, work amounts
and percentages are Decimal with explicit precision.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

VOLUME_DECIMAL_PLACES = 9
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def quantize(value: Decimal, places: int = VOLUME_DECIMAL_PLACES) -> Decimal:
    """
    Round a quantity to a fixed number of decimal places (ROUND_HALF_UP).

    The ONLY sanctioned rounding function for stored quantities.
    """
    return value.quantize(Decimal(1).scaleb(-places), rounding=DEFAULT_ROUNDING)


def decimal_from(value: object) -> Decimal | None:
    """
    Parse a user-supplied number into Decimal.

    Accepts Decimal, int and numeric strings (comma or dot decimal separator).
    Floats are converted through ``str`` so that 0.1 stays 0.1.  Blank
    strings and None give None; anything unparseable raises ValueError.
    """
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Cannot parse quantity from {value!r}")
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    text = str(value).strip().replace(",", ".")
    if not text:
        return None
    try:
        return Decimal(text)
    except InvalidOperation as exc:
        raise ValueError(f"Cannot parse quantity from {value!r}") from exc


def parse_pieces(value: str | None) -> int | None:
    """
    Parse a string-encoded piece count.

    Returns None when the unit has no countable pieces (null, blank, "-",
    or a non-integer such as a range).
    """
    if value is None:
        return None
    text = value.strip()
    if not text or not text.lstrip("-").isdigit():
        return None
    return int(text)
