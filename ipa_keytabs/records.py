"""
Principal CSV ingestion.

Each line of the CSV exported by the Ambari 'Enable Security' wizard (or
written by hand for other distributions) has exactly 8 fields:

  host,description,principal,keytab name,keytab dir,owner,group,octal perms

e.g.

  node1.example.com,NameNode,nn/node1.example.com@EXAMPLE.COM,nn.service.keytab,/etc/security/keytabs,hdfs,hadoop,0400

There is no header, no quoting and no escaping. Any bad line aborts the
whole read so a broken CSV never reaches the directory.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path

from .errors import ConfigError, ConsistencyError, FormatError, ValidationError


FIELDS = (
    "host",
    "description",
    "principal",
    "keytab name",
    "keytab dir",
    "owner",
    "group",
    "perm",
)

_LABEL = r"[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?"
HOST_RE = re.compile(rf"{_LABEL}(?:\.{_LABEL})*")
ACCOUNT_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_.-]{0,31}\$?")
DESCRIPTION_RE = re.compile(r"[A-Za-z0-9 _-]+")
FILENAME_RE = re.compile(r"[A-Za-z0-9_.+-]+")
PATH_RE = re.compile(r"/?[A-Za-z0-9_.+-]+(?:/[A-Za-z0-9_.+-]+)*/?|/")
PERM_RE = re.compile(r"0?[0-7]{3}")

# Human readable names of the patterns above, used in error messages.
EXPECTED = {
    "host": "a hostname (e.g. node1.example.com)",
    "description": "alphanumeric characters, spaces, '_' or '-'",
    "principal": "user[/host]@REALM",
    "keytab name": "a file name of letters, digits, '_', '.', '+' or '-'",
    "keytab dir": "a directory path (e.g. /etc/security/keytabs)",
    "owner": "a unix account name",
    "group": "a unix group name",
    "perm": "3 octal digits with an optional leading zero (e.g. 0400)",
}


@dataclass(frozen=True)
class PrincipalRecord:
    host: str
    description: str
    principal: str
    user: str
    host_component: str | None
    domain: str
    keytab_name: str
    keytab_dir: str
    owner: str
    group: str
    perm: str
    line_no: int = 0

    @property
    def is_service(self) -> bool:
        return "/" in self.principal

    @property
    def keytab_path(self) -> str:
        """Where the keytab finally lives on its host."""
        return os.path.join(self.keytab_dir, self.keytab_name)

    @property
    def export_dir(self) -> str:
        return os.path.join(self.keytab_dir, self.host)

    @property
    def export_path(self) -> str:
        """Where the keytab is staged on this machine after export."""
        return os.path.join(self.export_dir, self.keytab_name)

    @property
    def mode(self) -> int:
        return int(self.perm, 8)


def split_principal(principal: str) -> tuple[str, str | None, str] | None:
    """
    Split user[/host]@REALM into its components.
    Returns None if the structure is wrong or a component fails its syntax.
    """
    name, sep, realm = principal.rpartition("@")
    if not sep:
        return None

    user, sep, host_component = name.partition("/")
    if not sep:
        host_component = None
    elif not HOST_RE.fullmatch(host_component):
        return None

    if not ACCOUNT_RE.fullmatch(user) or not HOST_RE.fullmatch(realm):
        return None

    return user, host_component, realm


def _check(pattern: re.Pattern[str], value: str, field: str, line_no: int, line: str) -> str:
    if not pattern.fullmatch(value):
        raise ValidationError(line_no, field, value, EXPECTED[field], line)
    return value


def _check_path(value: str, field: str, line_no: int, line: str) -> str:
    pattern = FILENAME_RE if field == "keytab name" else PATH_RE
    _check(pattern, value, field, line_no, line)
    if any(part in (".", "..") for part in value.split("/")):
        raise ValidationError(line_no, field, value, EXPECTED[field], line)
    return value


def parse_line(line: str, line_no: int) -> PrincipalRecord:
    """Parse and validate one CSV line into a PrincipalRecord."""
    line = line.rstrip("\r\n")
    fields = [f.strip() for f in line.split(",")]
    if len(fields) != len(FIELDS) or not all(fields):
        raise FormatError(line_no, "line", line, f"{len(FIELDS)} comma separated fields", line)

    host, description, principal, keytab_name, keytab_dir, owner, group, perm = fields

    _check(HOST_RE, host, "host", line_no, line)
    _check(DESCRIPTION_RE, description, "description", line_no, line)

    parts = split_principal(principal)
    if parts is None:
        raise ValidationError(line_no, "principal", principal, EXPECTED["principal"], line)
    user, host_component, domain = parts
    if host_component is not None and host_component != host:
        raise ConsistencyError(line_no, "principal", host_component, host, line)

    _check_path(keytab_name, "keytab name", line_no, line)
    _check_path(keytab_dir, "keytab dir", line_no, line)
    _check(ACCOUNT_RE, owner, "owner", line_no, line)
    _check(ACCOUNT_RE, group, "group", line_no, line)
    _check(PERM_RE, perm, "perm", line_no, line)

    return PrincipalRecord(
        host=host,
        description=description,
        principal=principal,
        user=user,
        host_component=host_component,
        domain=domain,
        keytab_name=keytab_name,
        keytab_dir=keytab_dir,
        owner=owner,
        group=group,
        perm=perm,
        line_no=line_no,
    )


def parse_lines(lines) -> list[PrincipalRecord]:
    records: list[PrincipalRecord] = []
    for line_no, line in enumerate(lines, start=1):
        if not line.strip():
            continue
        records.append(parse_line(line, line_no))
    return records


def read_records(path: Path) -> list[PrincipalRecord]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return parse_lines(f)
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"unable to read principals CSV {path}: {e}") from e
