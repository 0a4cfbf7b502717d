from __future__ import annotations


class KeytabToolError(Exception):
    """Base class for every fatal error raised by ipa-keytabs."""

    exit_code = 1


# -------------------------
# Input errors (raised before any side effect)
# -------------------------

class RecordError(KeytabToolError):
    def __init__(self, line_no: int, field: str, value: str, expected: str, line: str = ""):
        self.line_no = line_no
        self.field = field
        self.value = value
        self.expected = expected
        self.line = line
        super().__init__(self._message())

    def _message(self) -> str:
        msg = f"invalid {self.field} {self.value!r} on line {self.line_no}"
        if self.line:
            msg += f": {self.line!r}"
        return f"{msg} - expected {self.expected}"


class FormatError(RecordError):
    def _message(self) -> str:
        return (
            f"invalid CSV format detected on line {self.line_no}: {self.line!r} "
            f"(expected {self.expected})"
        )


class ValidationError(RecordError):
    pass


class ConsistencyError(RecordError):
    def _message(self) -> str:
        return (
            f"host component {self.value!r} of the principal on line {self.line_no} "
            f"does not match host {self.expected!r}: {self.line!r}"
        )


class ConflictError(KeytabToolError):
    pass


class ConfigError(KeytabToolError):
    exit_code = 2


# -------------------------
# Runtime errors (raised once mutation may have begun)
# -------------------------

class CollaboratorError(KeytabToolError):
    def __init__(self, command: list[str], returncode: int | None, stderr: str = ""):
        self.command = command
        self.returncode = returncode
        self.stderr = (stderr or "").strip()
        what = " ".join(command)
        if returncode is None:
            msg = f"failed to execute {what!r}"
        else:
            msg = f"command {what!r} exited non-zero: {returncode}"
        if self.stderr:
            msg += f"\n{self.stderr}"
        super().__init__(msg)


class CredentialsError(KeytabToolError):
    pass


class KeytabPermissionError(KeytabToolError, PermissionError):
    pass


class KeytabFileError(KeytabToolError):
    """A keytab could not be backed up, moved or copied."""


class RunTimeout(KeytabToolError):
    pass


class ResolutionWarning(UserWarning):
    """An owner or group name did not resolve; the superuser id was used instead."""
