import re

from errors import (
    AmountOverflow,
    InvalidAmount,
    InvalidAmountPrecision,
    InvalidCurrencyCode,
)

MAX_MINOR = 2**63 - 1

_AMOUNT_RE = re.compile(r"^-?\d*\.?\d*$")

# ISO 4217 minor units that differ from the usual two decimals.
CURRENCY_EXPONENTS: dict[str, int] = {
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
    "UYI": 0,
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
    "CLF": 4,
    "UYW": 4,
}
DEFAULT_EXPONENT = 2


def normalize_currency_code(code: str) -> str:
    normalized = (code or "").strip().upper()
    if len(normalized) != 3 or not all("A" <= ch <= "Z" for ch in normalized):
        raise InvalidCurrencyCode(f"Invalid currency code: {code!r}")
    return normalized


def currency_exponent(code: str) -> int:
    return CURRENCY_EXPONENTS.get(normalize_currency_code(code), DEFAULT_EXPONENT)


def check_minor_range(value: int) -> int:
    if value > MAX_MINOR or value < -MAX_MINOR - 1:
        raise AmountOverflow("Amount exceeds the 63-bit minor unit range")
    return value


def parse_amount(value: str, currency_code: str) -> int:
    """Parse a decimal major-unit string into integer minor units.

    "12.5" in USD becomes 1250, "1200" in JPY stays 1200. Scaling is done on
    the digit strings, so no precision is ever lost to floating point.
    """
    raw = (value or "").strip()
    if not raw or not _AMOUNT_RE.match(raw) or not any(ch.isdigit() for ch in raw):
        raise InvalidAmount(f"Invalid amount: {value!r}")
    if raw.startswith("-"):
        raise InvalidAmount("Amount must not be negative")

    exponent = currency_exponent(currency_code)
    integer_part, _, fraction_part = raw.partition(".")
    if len(fraction_part) > exponent:
        raise InvalidAmountPrecision(
            f"{normalize_currency_code(currency_code)} allows at most "
            f"{exponent} decimal places"
        )

    digits = (integer_part or "0") + fraction_part.ljust(exponent, "0")
    minor = int(digits)
    if minor > MAX_MINOR:
        raise AmountOverflow("Amount exceeds the 63-bit minor unit range")
    return minor


def format_amount(amount_minor: int, currency_code: str) -> str:
    exponent = currency_exponent(currency_code)
    sign = "-" if amount_minor < 0 else ""
    digits = str(abs(amount_minor))
    if exponent == 0:
        return sign + digits
    digits = digits.rjust(exponent + 1, "0")
    return f"{sign}{digits[:-exponent]}.{digits[-exponent:]}"
