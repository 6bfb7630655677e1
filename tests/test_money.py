import pytest

from errors import AmountOverflow, InvalidAmount, InvalidAmountPrecision, InvalidCurrencyCode
from money import MAX_MINOR, currency_exponent, format_amount, parse_amount


def test_parse_amount_scales_by_currency_exponent() -> None:
    assert parse_amount("12.5", "USD") == 1250
    assert parse_amount("12.50", "usd") == 1250
    assert parse_amount("1200", "JPY") == 1200
    assert parse_amount("1.234", "BHD") == 1234
    assert parse_amount("0.0001", "CLF") == 1
    assert parse_amount(".5", "USD") == 50
    assert parse_amount("5.", "USD") == 500


@pytest.mark.parametrize("raw", ["", "abc", "1.2.3", ".", "-", "1,50", "1e3"])
def test_parse_amount_rejects_malformed_input(raw: str) -> None:
    with pytest.raises(InvalidAmount):
        parse_amount(raw, "USD")


def test_parse_amount_rejects_negative_values() -> None:
    with pytest.raises(InvalidAmount):
        parse_amount("-1.00", "USD")


def test_parse_amount_enforces_precision() -> None:
    with pytest.raises(InvalidAmountPrecision):
        parse_amount("1.234", "USD")
    with pytest.raises(InvalidAmountPrecision):
        parse_amount("1.5", "JPY")
    with pytest.raises(InvalidAmountPrecision):
        parse_amount("1.00", "JPY")


def test_parse_amount_detects_overflow() -> None:
    assert parse_amount("92233720368547758.07", "USD") == MAX_MINOR
    with pytest.raises(AmountOverflow):
        parse_amount("92233720368547758.08", "USD")


@pytest.mark.parametrize("code", ["US", "USDX", "U5D", "", "€UR"])
def test_unrecognized_currency_codes_fail(code: str) -> None:
    with pytest.raises(InvalidCurrencyCode):
        parse_amount("1", code)


def test_currency_exponents() -> None:
    assert currency_exponent("jpy") == 0
    assert currency_exponent("USD") == 2
    assert currency_exponent("BHD") == 3
    assert currency_exponent("CLF") == 4


def test_format_amount() -> None:
    assert format_amount(1250, "USD") == "12.50"
    assert format_amount(5, "USD") == "0.05"
    assert format_amount(-5, "USD") == "-0.05"
    assert format_amount(1200, "JPY") == "1200"
    assert format_amount(1, "CLF") == "0.0001"


@pytest.mark.parametrize(
    "amount_minor,code",
    [(7, "JPY"), (1001, "BHD"), (MAX_MINOR, "CLF")],
)
def test_formatted_amounts_parse_back(amount_minor: int, code: str) -> None:
    assert parse_amount(format_amount(amount_minor, code), code) == amount_minor
