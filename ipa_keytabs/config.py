from __future__ import annotations

import os
import re
import shutil
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Mapping

import yaml  # pip install pyyaml

from .errors import ConfigError
from .records import HOST_RE


ENV_VARS = {
    "server": "IPA_SERVER",
    "bind_dn": "IPA_BIND_DN",
    "bind_password": "IPA_BIND_PASSWORD",
}

DEFAULT_COMMANDS = {
    "ipa": "ipa",
    "ipa-getkeytab": "ipa-getkeytab",
    "klist": "klist",
    "ssh": "ssh",
    "rsync": "rsync",
}

# Public key only so a missing key fails instead of hanging on a password prompt.
DEFAULT_SSH_OPTIONS = ["-o", "PreferredAuthentications=publickey"]

LDAP_DN_RE = re.compile(
    r"[A-Za-z][A-Za-z0-9-]*=[^,=]+(?:\s*,\s*[A-Za-z][A-Za-z0-9-]*=[^,=]+)*"
)


@dataclass(frozen=True)
class Config:
    server: str = "localhost"
    bind_dn: str | None = None
    bind_password: str | None = None
    # Fake email keeps IPA user creation happy when the realm is not a
    # valid mail domain (e.g. LOCALDOMAIN). Unset: user@domain.
    email: str | None = None
    timeout: int = 600
    verbosity: int = 2
    dry_run: bool = False
    local_host: str | None = None
    ssh_options: list[str] = field(default_factory=lambda: list(DEFAULT_SSH_OPTIONS))
    commands: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_COMMANDS))

    def command(self, name: str) -> str:
        return self.commands.get(name, name)

    def email_for(self, user: str, domain: str) -> str:
        return self.email or f"{user}@{domain.lower()}"


# Keys accepted in the YAML file; the rest are run options, not settings.
FILE_KEYS = {"server", "bind_dn", "bind_password", "email", "timeout", "ssh_options", "commands"}
STRING_KEYS = {"server", "bind_dn", "bind_password", "email"}


def load_config_file(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"unable to read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"config file {path} is not valid YAML: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must contain a mapping at the top level")

    unknown = sorted(set(data) - FILE_KEYS)
    if unknown:
        raise ConfigError(f"unknown key(s) in config file {path}: {', '.join(unknown)}")

    # YAML reads `bind_password: 12345678` as an int
    for key in STRING_KEYS & set(data):
        value = data[key]
        if value is None:
            del data[key]
        elif isinstance(value, (str, int, float)) and not isinstance(value, bool):
            data[key] = str(value)
        else:
            raise ConfigError(f"'{key}' in config file {path} must be a single value, not {type(value).__name__}")

    if "commands" in data:
        commands = data["commands"]
        if not isinstance(commands, dict):
            raise ConfigError("'commands' must be a mapping of command name to executable")
        unknown = sorted(set(commands) - set(DEFAULT_COMMANDS))
        if unknown:
            raise ConfigError(f"unknown command(s) in config file {path}: {', '.join(unknown)}")
        data["commands"] = {**DEFAULT_COMMANDS, **{k: str(v) for k, v in commands.items()}}

    if "ssh_options" in data:
        opts = data["ssh_options"]
        if isinstance(opts, str):
            opts = opts.split()
        if not isinstance(opts, list):
            raise ConfigError("'ssh_options' must be a list or a string")
        data["ssh_options"] = [str(o) for o in opts]

    if "timeout" in data:
        try:
            data["timeout"] = int(data["timeout"])
        except (TypeError, ValueError) as e:
            raise ConfigError(f"'timeout' must be an integer number of seconds: {data['timeout']!r}") from e

    return data


def from_env(environ: Mapping[str, str]) -> dict[str, str]:
    return {key: environ[var] for key, var in ENV_VARS.items() if environ.get(var)}


def build_config(
    overrides: Mapping[str, Any] | None = None,
    config_file: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> Config:
    """
    Defaults < config file < environment < command line.
    `overrides` holds command line values; None means "not given".
    """
    environ = os.environ if environ is None else environ
    settings: dict[str, Any] = {}
    if config_file:
        settings.update(load_config_file(config_file))
    settings.update(from_env(environ))
    settings.update({k: v for k, v in (overrides or {}).items() if v is not None})

    known = {f.name for f in fields(Config)}
    unknown = sorted(set(settings) - known)
    if unknown:
        raise ConfigError(f"unknown setting(s): {', '.join(unknown)}")

    cfg = replace(Config(), **settings)
    if cfg.timeout < 0:
        raise ConfigError(f"timeout must not be negative: {cfg.timeout}")
    return cfg


def validate_export_settings(cfg: Config) -> None:
    """Checks needed before talking to the IPA server over LDAPS."""
    server = cfg.server
    if not HOST_RE.fullmatch(server):
        raise ConfigError(f"invalid IPA server {server!r}")
    # The LDAP SSL certificate is only validated against an FQDN;
    # anything else results in 'Simple bind failed'.
    if server != "localhost" and "." not in server:
        raise ConfigError(f"IPA server must be given as an FQDN (or localhost), got {server!r}")
    if cfg.bind_dn and not LDAP_DN_RE.fullmatch(cfg.bind_dn):
        raise ConfigError(f"invalid IPA bind DN {cfg.bind_dn!r}")
    if cfg.bind_dn and not cfg.bind_password:
        raise ConfigError("IPA bind DN given without a bind password")


def missing_commands(cfg: Config, names) -> list[str]:
    return [cfg.command(n) for n in names if not shutil.which(cfg.command(n))]
