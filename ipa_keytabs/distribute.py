"""
Keytab distribution.

Exported keytabs are staged under <keytab dir>/<host>/ on this machine and
land in <keytab dir>/ on their host. Existing keytabs on the destination
are copied into <keytab dir>/keytab-backups-<timestamp>/ first.

Remote hosts are reached with ssh + rsync using public key authentication
only, so root ssh keys must already be deployed.
"""
from __future__ import annotations

import os
import shlex
import shutil
from collections import defaultdict
from dataclasses import dataclass, field

from .config import Config
from .console import Console
from .errors import KeytabFileError
from .export import backup_dir_name, check_duplicates, fs_call
from .records import PrincipalRecord
from .runner import CommandRunner


# Run by the remote login shell; must stay POSIX sh.
REMOTE_BACKUP_SCRIPT = """\
set -eu
keytab_dir={keytab_dir}
backup_dir={backup_dir}
if [ -e "$keytab_dir" ]; then
    if [ -d "$keytab_dir" ]; then
        set -- "$keytab_dir"/*.keytab
        if [ -e "$1" ]; then
            echo "Backing up remote keytabs in dir $keytab_dir => $backup_dir/"
            mkdir -p -m 0700 "$backup_dir"
            cp -p "$@" "$backup_dir/"
        fi
    else
        echo "ERROR: $keytab_dir is not a directory" >&2
        exit 1
    fi
fi
"""


def remote_backup_script(keytab_dir: str, backup_dir: str) -> str:
    return REMOTE_BACKUP_SCRIPT.format(
        keytab_dir=shlex.quote(keytab_dir),
        backup_dir=shlex.quote(backup_dir),
    )


def is_local(host: str, local_host: str | None) -> bool:
    return bool(local_host) and host.lower() == local_host.lower()


def plan_distribution(
    records: list[PrincipalRecord], local_host: str | None
) -> tuple[list[PrincipalRecord], dict[str, dict[str, list[str]]]]:
    """
    Split records into local ones and a remote plan of
    host -> keytab dir -> [keytab names] (deduplicated, CSV order).
    """
    local: list[PrincipalRecord] = []
    remote: dict[str, dict[str, list[str]]] = defaultdict(lambda: defaultdict(list))
    for rec in records:
        if is_local(rec.host, local_host):
            local.append(rec)
            continue
        names = remote[rec.host][rec.keytab_dir]
        if rec.keytab_name not in names:
            names.append(rec.keytab_name)
    return local, {host: dict(dirs) for host, dirs in remote.items()}


@dataclass
class DistributeResult:
    local: list[str] = field(default_factory=list)
    hosts: list[str] = field(default_factory=list)


class KeytabDistributor:
    def __init__(self, config: Config, runner: CommandRunner, console: Console, timestamp: str):
        self.config = config
        self.runner = runner
        self.console = console
        self.backup_name = backup_dir_name(timestamp)

    @property
    def ssh(self) -> list[str]:
        return [self.config.command("ssh"), *self.config.ssh_options]

    def distribute(self, records: list[PrincipalRecord], result: DistributeResult | None = None) -> DistributeResult:
        result = result if result is not None else DistributeResult()
        # Export may have been declined, so the keytab layout is checked here too.
        check_duplicates(records, self.console)
        local, remote = plan_distribution(records, self.config.local_host)

        installed: set[str] = set()
        for rec in local:
            if rec.keytab_path in installed:
                continue
            self.install_local(rec)
            installed.add(rec.keytab_path)
            result.local.append(rec.keytab_path)

        for host in sorted(remote):
            self.console.info(f"Copying keytabs to host {host}")
            for keytab_dir in sorted(remote[host]):
                self.backup_remote(host, keytab_dir)
                self.rsync(host, keytab_dir, remote[host][keytab_dir])
            result.hosts.append(host)
        return result

    # -------------------------
    # Local host
    # -------------------------

    def install_local(self, rec: PrincipalRecord) -> None:
        src, dest = rec.export_path, rec.keytab_path
        backup_dir = os.path.join(rec.keytab_dir, self.backup_name)

        if self.config.dry_run:
            if os.path.isfile(dest):
                self.console.info(f"(dry-run) would back up '{dest}' => '{backup_dir}/'")
            self.console.info(f"(dry-run) would copy '{src}' => '{dest}'")
            return

        if not os.path.isfile(src):
            raise KeytabFileError(f"exported keytab '{src}' not found (export keytabs first)")

        if os.path.isfile(dest):
            if not os.path.isdir(backup_dir):
                fs_call(os.makedirs, backup_dir, 0o700, what=f"failed to create backup directory '{backup_dir}'")
            self.console.detail(f"backing up existing keytab '{dest}' => '{backup_dir}/'")
            fs_call(shutil.copy2, dest, backup_dir, what=f"failed to back up existing keytab '{dest}'")

        self.console.detail(f"copying '{src}' => '{dest}'")
        fs_call(shutil.copy2, src, dest, what=f"failed to copy '{src}' => '{dest}'")
        st = os.stat(src)
        fs_call(os.chown, dest, st.st_uid, st.st_gid, what=f"failed to set ownership of '{dest}'")

    # -------------------------
    # Remote hosts
    # -------------------------

    def backup_remote(self, host: str, keytab_dir: str) -> None:
        backup_dir = os.path.join(keytab_dir, self.backup_name)
        self.console.detail(f"backing up any existing keytabs on {host} in {keytab_dir} => {backup_dir}/")
        script = remote_backup_script(keytab_dir, backup_dir)
        out = self.runner.run([*self.ssh, host, script], mutating=True)
        for line in out.splitlines():
            self.console.debug(line)

    def rsync(self, host: str, keytab_dir: str, names: list[str]) -> None:
        files = [os.path.join(keytab_dir, host, name) for name in names]
        cmd = [
            self.config.command("rsync"),
            "-av",
            "-e",
            shlex.join(self.ssh),
            *files,
            f"{host}:{keytab_dir.rstrip('/')}/",
        ]
        out = self.runner.run(cmd, mutating=True)
        for line in out.splitlines():
            self.console.debug(line)
