"""Amount parsing utilities."""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
import re
from typing import Optional

# ISO 4217 currencies whose minor unit is not hundredths
CURRENCY_EXPONENTS = {
    "BIF": 0,
    "CLP": 0,
    "DJF": 0,
    "GNF": 0,
    "ISK": 0,
    "JPY": 0,
    "KMF": 0,
    "KRW": 0,
    "PYG": 0,
    "RWF": 0,
    "UGX": 0,
    "VND": 0,
    "VUV": 0,
    "XAF": 0,
    "XOF": 0,
    "XPF": 0,
    "BHD": 3,
    "IQD": 3,
    "JOD": 3,
    "KWD": 3,
    "LYD": 3,
    "OMR": 3,
    "TND": 3,
}
DEFAULT_EXPONENT = 2

DECIMAL_COMMA_FORMAT = "1.234,56"


def parse_amount(amount_str: str, number_format: Optional[str] = None) -> Decimal:
    """Parse an amount string into a Decimal.

    Handles various formats:
    - "123.45"
    - "$123.45"
    - "-123.45"
    - "-$123.45"
    - "1,234.56"
    - "(123.45)" (negative in parentheses)
    - "123.45-" (trailing minus)
    - "EUR 1.234,56" with number_format "1.234,56"

    Args:
        amount_str: Amount string
        number_format: Optional sample of the grouping/decimal convention;
            "1.234,56" selects decimal comma, anything else decimal point

    Returns:
        Decimal amount, sign preserved

    Raises:
        ValueError: If amount string cannot be parsed
    """
    if not amount_str or not amount_str.strip():
        raise ValueError("Empty amount string")

    # Remove whitespace
    amount_str = amount_str.strip()

    # Handle parentheses notation (negative)
    is_negative = False
    if amount_str.startswith("(") and amount_str.endswith(")"):
        is_negative = True
        amount_str = amount_str[1:-1]

    if amount_str.endswith("-"):
        is_negative = not is_negative
        amount_str = amount_str[:-1]

    # Remove currency symbols and ISO codes
    amount_str = re.sub(r"[$€£¥₹₩]", "", amount_str)
    amount_str = re.sub(r"^[A-Za-z]{3}\s*|\s*[A-Za-z]{3}$", "", amount_str.strip())

    # Remove group separators
    amount_str = re.sub(r"[\s' ]", "", amount_str)
    if number_format == DECIMAL_COMMA_FORMAT:
        amount_str = amount_str.replace(".", "").replace(",", ".")
    else:
        amount_str = amount_str.replace(",", "")

    try:
        amount = Decimal(amount_str)
    except InvalidOperation:
        raise ValueError(f"Could not parse amount '{amount_str}'")
    if not amount.is_finite():
        raise ValueError(f"Could not parse amount '{amount_str}'")
    if is_negative:
        amount = -amount
    return amount


def currency_exponent(currency: Optional[str]) -> int:
    """Number of minor-unit digits for a currency code."""
    if not currency:
        return DEFAULT_EXPONENT
    return CURRENCY_EXPONENTS.get(currency.strip().upper(), DEFAULT_EXPONENT)


def to_minor_units(amount: Decimal | float | int, currency: Optional[str] = None) -> int:
    """Convert an amount to an integer count of the currency's minor units.

    Float inputs go through their shortest repr, so ``100.1`` becomes
    ``10010`` rather than ``10009``.
    """
    if not isinstance(amount, Decimal):
        amount = Decimal(str(amount))
    scaled = amount.scaleb(currency_exponent(currency))
    return int(scaled.quantize(Decimal(1), rounding=ROUND_HALF_UP))
