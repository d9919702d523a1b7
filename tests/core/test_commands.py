import pytest
from tuckshop.core.commands import (
    Back,
    FreeText,
    GlobalReset,
    Help,
    NumericChoice,
    parse_command,
)


@pytest.mark.parametrize("text", ["menu", "MENU", " Home ", "hi", "Start"])
def test_reset_words(text):
    assert parse_command(text) == GlobalReset()


def test_help():
    assert parse_command("HELP") == Help()


def test_zero_is_back():
    assert parse_command("0") == Back()
    assert parse_command(" 0 ") == Back()


def test_numeric_choice():
    assert parse_command("3") == NumericChoice(3)
    assert parse_command("12") == NumericChoice(12)


def test_free_text_keeps_original_text():
    cmd = parse_command("  ORD-ABC-1234 ")
    assert isinstance(cmd, FreeText)
    assert cmd.text == "ORD-ABC-1234"
    assert parse_command("Cart").word == "cart"


def test_negative_and_decimal_are_free_text():
    assert isinstance(parse_command("-1"), FreeText)
    assert isinstance(parse_command("1.5"), FreeText)
    assert isinstance(parse_command(""), FreeText)


@pytest.mark.parametrize("text", ["²", "①", "3³", "١"])
def test_non_ascii_digits_are_free_text(text):
    assert isinstance(parse_command(text), FreeText)
