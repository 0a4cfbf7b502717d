import subprocess

import pytest

from ipa_keytabs.errors import CollaboratorError
from ipa_keytabs.runner import REDACTED, CommandRunner, redact


def completed(cmd, returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr=stderr)


def test_redact():
    assert redact(["ipa-getkeytab", "-w", "s3cret", "-k", "x"], ["s3cret", None]) == [
        "ipa-getkeytab", "-w", REDACTED, "-k", "x",
    ]


def test_run_returns_stdout_and_echoes_redacted_command(console, monkeypatch):
    seen = []

    def fake_run(cmd, **kwargs):
        seen.append(cmd)
        return completed(cmd, stdout="ok\n")

    monkeypatch.setattr(subprocess, "run", fake_run)

    out = CommandRunner(console).run(["ipa-getkeytab", "-w", "s3cret"], secrets=["s3cret"])

    assert out == "ok\n"
    assert seen == [["ipa-getkeytab", "-w", "s3cret"]]
    assert "s3cret" not in console.out.getvalue()
    assert REDACTED in console.out.getvalue()


def test_non_zero_exit_raises(console, monkeypatch):
    monkeypatch.setattr(subprocess, "run", lambda cmd, **kw: completed(cmd, 1, stderr="ipa: ERROR: no such entry"))

    with pytest.raises(CollaboratorError) as exc:
        CommandRunner(console).run(["ipa", "host-find"])

    assert exc.value.returncode == 1
    assert "no such entry" in str(exc.value)


def test_missing_executable_raises(console, monkeypatch):
    def fake_run(cmd, **kwargs):
        raise FileNotFoundError(2, "No such file or directory")

    monkeypatch.setattr(subprocess, "run", fake_run)

    with pytest.raises(CollaboratorError) as exc:
        CommandRunner(console).run(["ipa", "host-find"])
    assert exc.value.returncode is None


def test_dry_run_skips_mutating_commands_only(console, monkeypatch):
    seen = []
    monkeypatch.setattr(subprocess, "run", lambda cmd, **kw: seen.append(cmd) or completed(cmd, stdout="x"))
    runner = CommandRunner(console, dry_run=True)

    assert runner.run(["ipa", "host-add", "--force", "node1.example.com"], mutating=True) == ""
    assert runner.run(["ipa", "host-find"]) == "x"

    assert seen == [["ipa", "host-find"]]
    assert "(dry-run) would run: ipa host-add --force node1.example.com" in console.out.getvalue()


def test_succeeds(console, monkeypatch):
    monkeypatch.setattr(subprocess, "run", lambda cmd, **kw: completed(cmd, 1))
    assert CommandRunner(console).succeeds(["klist", "-s"]) is False

    monkeypatch.setattr(subprocess, "run", lambda cmd, **kw: completed(cmd, 0))
    assert CommandRunner(console).succeeds(["klist", "-s"]) is True
