from __future__ import annotations

import re
from typing import Callable


Confirm = Callable[[str], bool]

YES_RE = re.compile(r"y(?:es)?", re.IGNORECASE)
NO_RE = re.compile(r"no?", re.IGNORECASE)

EXPORT_QUESTION = """
About to export keytabs:

    WARNING: re-exporting keytabs will invalidate all currently existing keytabs for these principals.

    Are you sure that you want to export keytabs?"""

RSYNC_QUESTION = "\nWould you like to rsync keytabs to hosts?"


def parse_answer(value: str) -> bool:
    value = value.strip()
    if YES_RE.fullmatch(value):
        return True
    if NO_RE.fullmatch(value):
        return False
    raise ValueError(f"must be 'yes' or 'no', got {value!r}")


def fixed(answer: bool) -> Confirm:
    """Pre-answered prompt (--export-keytabs / --rsync-keytabs)."""
    def confirm(question: str) -> bool:
        return answer
    return confirm


def interactive(reader: Callable[[str], str] = input) -> Confirm:
    """Ask on the terminal. Anything but y/yes, including EOF, is a no."""
    def confirm(question: str) -> bool:
        try:
            response = reader(f"{question}(y/N) ")
        except EOFError:
            return False
        return bool(YES_RE.fullmatch(response.strip()))
    return confirm


def confirmer(preset: bool | None, reader: Callable[[str], str] = input) -> Confirm:
    return interactive(reader) if preset is None else fixed(preset)
