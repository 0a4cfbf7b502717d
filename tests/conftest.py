from __future__ import annotations

import io
import os

import pytest

from ipa_keytabs.config import Config
from ipa_keytabs.console import Console
from ipa_keytabs.errors import CollaboratorError
from ipa_keytabs.ipa import IpaClient


HOST_FIND = """\
--------------
2 hosts matched
--------------
  Host name: ipa1.example.com
  Platform: x86_64
  Operating system: 3.10.0

  Host name: node1.example.com
----------------------------
Number of entries returned 2
----------------------------
"""

USER_FIND = """\
---------------
2 users matched
---------------
  User login: admin
  Last name: Administrator
  Home directory: /home/admin

  User login: hdfs
  First name: HDFS
  Last name: HDFS
----------------------------
Number of entries returned 2
----------------------------
"""

SERVICE_FIND = """\
-----------------
2 services matched
-----------------
  Principal name: HTTP/ipa1.example.com@EXAMPLE.COM
  Keytab: True

  Principal: nn/node1.example.com@EXAMPLE.COM
  Keytab: True
----------------------------
Number of entries returned 2
----------------------------
"""


class FakeRunner:
    """
    Stands in for CommandRunner: records every argv and answers from
    canned output. `ipa-getkeytab` writes a small fake keytab to its -k path.
    """

    def __init__(self, outputs=None, failing=(), ticket=True, dry_run=False):
        self.outputs = dict(outputs or {})
        self.failing = set(failing)
        self.ticket = ticket
        self.dry_run = dry_run
        self.calls: list[list[str]] = []

    @staticmethod
    def key(cmd):
        name = os.path.basename(cmd[0])
        if name == "ipa" and len(cmd) > 1:
            return cmd[1]
        return name

    def run(self, cmd, mutating=False, secrets=()):
        self.calls.append(list(cmd))
        key = self.key(cmd)
        if key in self.failing:
            raise CollaboratorError(list(cmd), 1, f"{key} failed")
        if mutating and self.dry_run:
            return ""
        if key == "ipa-getkeytab":
            path = cmd[cmd.index("-k") + 1]
            principal = cmd[cmd.index("-p") + 1]
            with open(path, "wb") as f:
                f.write(b"\x05\x02" + principal.encode())
        return self.outputs.get(key, "")

    def succeeds(self, cmd):
        self.calls.append(list(cmd))
        return self.ticket

    def called(self, key):
        return [c for c in self.calls if self.key(c) == key]


@pytest.fixture
def console():
    return Console(verbosity=3, out=io.StringIO(), err=io.StringIO())


@pytest.fixture
def config():
    return Config(
        server="ipa1.example.com",
        bind_dn="uid=admin,cn=users,cn=accounts,dc=example,dc=com",
        bind_password="s3cret",
        local_host="ipa1.example.com",
    )


@pytest.fixture
def runner():
    return FakeRunner(outputs={"host-find": HOST_FIND, "user-find": USER_FIND, "service-find": SERVICE_FIND})


@pytest.fixture
def client(config, runner):
    return IpaClient(config, runner)


@pytest.fixture
def keytab_dir(tmp_path):
    d = tmp_path / "keytabs"
    d.mkdir()
    return str(d)


@pytest.fixture
def chowns(monkeypatch):
    """Record os.chown calls instead of performing them (tests run unprivileged)."""
    calls = []
    monkeypatch.setattr(os, "chown", lambda path, uid, gid: calls.append((str(path), uid, gid)))
    return calls
