from __future__ import annotations

import shlex
import subprocess

from .console import Console
from .errors import CollaboratorError


REDACTED = "********"


def redact(cmd: list[str], secrets) -> list[str]:
    secrets = {s for s in secrets if s}
    return [REDACTED if arg in secrets else arg for arg in cmd]


class CommandRunner:
    """
    Runs external collaborators (ipa, ipa-getkeytab, klist, ssh, rsync).

    Every call blocks. A non-zero exit raises CollaboratorError. With
    dry_run set, commands flagged as mutating are only reported.
    """

    def __init__(self, console: Console, dry_run: bool = False):
        self.console = console
        self.dry_run = dry_run

    def run(self, cmd: list[str], mutating: bool = False, secrets=()) -> str:
        shown = redact(cmd, secrets)
        if mutating and self.dry_run:
            self.console.info(f"(dry-run) would run: {shlex.join(shown)}")
            return ""

        self.console.debug(shlex.join(shown))
        try:
            proc = subprocess.run(cmd, text=True, capture_output=True, check=False)
        except OSError as e:
            raise CollaboratorError(shown, None, str(e)) from e

        if proc.returncode != 0:
            raise CollaboratorError(shown, proc.returncode, proc.stderr or proc.stdout)
        return proc.stdout or ""

    def succeeds(self, cmd: list[str]) -> bool:
        """Status check: True on exit 0, False otherwise. Never raises for a non-zero exit."""
        self.console.debug(shlex.join(cmd))
        try:
            proc = subprocess.run(cmd, text=True, capture_output=True, check=False)
        except OSError as e:
            raise CollaboratorError(list(cmd), None, str(e)) from e
        return proc.returncode == 0
