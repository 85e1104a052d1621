import pytest

from bbcli.validation import (
    to_symbol,
    validate_book_depth,
    validate_category,
    validate_positive_number,
    validate_symbol,
)


def test_symbol_is_trimmed_and_uppercased():
    assert validate_symbol("  btcusdt ") == "BTCUSDT"
    assert validate_symbol("1000PEPEUSDT") == "1000PEPEUSDT"


@pytest.mark.parametrize("value", ["", "   ", "BTC-USDT", "btc/usdt", "BTC USDT"])
def test_bad_symbols_rejected(value):
    with pytest.raises(ValueError):
        validate_symbol(value)


def test_category():
    assert validate_category("spot") == "spot"
    with pytest.raises(ValueError, match="Must be one of"):
        validate_category("futures")


def test_positive_number_keeps_text():
    assert validate_positive_number("0.010", "size") == "0.010"


@pytest.mark.parametrize("value, message", [
    ("", "valid number"),
    ("abc", "valid number"),
    ("inf", "valid number"),
    ("nan", "valid number"),
    ("0", "positive"),
    ("-1", "positive"),
])
def test_positive_number_rejects(value, message):
    with pytest.raises(ValueError, match=message):
        validate_positive_number(value, "size")


def test_book_depth():
    assert validate_book_depth(200) == 200
    with pytest.raises(ValueError):
        validate_book_depth(7)


def test_to_symbol():
    assert to_symbol("btc", "linear") == "BTCUSDT"
    assert to_symbol("BTCUSDT", "linear") == "BTCUSDT"
    assert to_symbol("BTCUSD", "inverse") == "BTCUSD"
    assert to_symbol("BTCPERP", "linear") == "BTCPERP"
    assert to_symbol("btc", "spot") == "BTC"
