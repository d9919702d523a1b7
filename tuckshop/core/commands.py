"""
Inbound text -> typed command.

Parsing happens once, before the state machine, so step handlers never re-inspect
raw strings for navigation keywords.
"""
from dataclasses import dataclass
from typing import Union

RESET_WORDS = frozenset({"menu", "home", "hi", "start"})
HELP_WORDS = frozenset({"help"})
BACK_TOKEN = "0"


@dataclass(frozen=True)
class NumericChoice:
    n: int


@dataclass(frozen=True)
class Back:
    pass


@dataclass(frozen=True)
class GlobalReset:
    pass


@dataclass(frozen=True)
class Help:
    pass


@dataclass(frozen=True)
class FreeText:
    text: str

    @property
    def word(self) -> str:
        return self.text.strip().lower()


@dataclass(frozen=True)
class Render:
    """Synthetic command used by the driver to show a step's prompt without input."""


Command = Union[NumericChoice, Back, GlobalReset, Help, FreeText, Render]


def parse_command(text: str) -> Command:
    raw = (text or "").strip()
    word = raw.lower()

    if word in RESET_WORDS:
        return GlobalReset()
    if word in HELP_WORDS:
        return Help()
    if raw == BACK_TOKEN:
        return Back()
    # ASCII only: str.isdigit() also accepts superscripts and circled digits int() rejects
    if raw.isascii() and raw.isdigit():
        return NumericChoice(int(raw))
    return FreeText(raw)
