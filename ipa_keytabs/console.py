from __future__ import annotations

import sys
from typing import TextIO


QUIET = 0
NORMAL = 1
VERBOSE = 2
DEBUG = 3


class Console:
    """
    Verbosity-gated output in the usual toolbox style:

      [+] progress      (level >= 1)
      [*] detail        (level >= 2)
          commands      (level >= 3)
      [!] warnings and errors, always, on stderr
    """

    def __init__(self, verbosity: int = VERBOSE, out: TextIO | None = None, err: TextIO | None = None):
        self.verbosity = verbosity
        self.out = out or sys.stdout
        self.err = err or sys.stderr

    def info(self, msg: str) -> None:
        if self.verbosity >= NORMAL:
            print(f"[+] {msg}", file=self.out, flush=True)

    def detail(self, msg: str) -> None:
        if self.verbosity >= VERBOSE:
            print(f"[*] {msg}", file=self.out, flush=True)

    def debug(self, msg: str) -> None:
        if self.verbosity >= DEBUG:
            print(f"    {msg}", file=self.out, flush=True)

    def warn(self, msg: str) -> None:
        print(f"[!] WARNING: {msg}", file=self.err, flush=True)

    def error(self, msg: str) -> None:
        print(f"[!] ERROR: {msg}", file=self.err, flush=True)

    def say(self, msg: str = "") -> None:
        # Unprefixed, for prompts' surrounding text and summaries.
        print(msg, file=self.out, flush=True)
