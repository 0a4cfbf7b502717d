"""
Keytab export.

Re-exporting a keytab invalidates every existing keytab for that
principal, so an existing file is always moved into a per-run backup
directory first:

  <keytab dir>/<host>/<keytab name>
  <keytab dir>/<host>/keytab-backups-<timestamp>/<keytab name>
"""
from __future__ import annotations

import datetime as dt
import grp
import os
import pwd
import shutil
import tempfile
from dataclasses import dataclass, field
from typing import Callable

from .config import Config, validate_export_settings
from .console import DEBUG, Console
from .errors import ConflictError, KeytabFileError, KeytabPermissionError, ResolutionWarning
from .ipa import IpaClient
from .records import PrincipalRecord


def run_timestamp(now: dt.datetime | None = None) -> str:
    return (now or dt.datetime.now()).strftime("%Y-%m-%d_%H%M%S")


def backup_dir_name(timestamp: str) -> str:
    return f"keytab-backups-{timestamp}"


def fs_call(func, *args, what: str):
    """Run a filesystem operation, turning OSError into KeytabFileError."""
    try:
        return func(*args)
    except OSError as e:
        raise KeytabFileError(f"{what}: {e}") from e


def lookup_uid(name: str) -> int | None:
    try:
        return pwd.getpwnam(name).pw_uid
    except KeyError:
        return None


def lookup_gid(name: str) -> int | None:
    try:
        return grp.getgrnam(name).gr_gid
    except KeyError:
        return None


def check_duplicates(records: list[PrincipalRecord], console: Console) -> None:
    """
    A principal may appear more than once (headless keytabs are usually
    listed for every host) but only with the same keytab path, owner, group
    and perms. Anything else would need two different exports of one
    principal, and the second would invalidate the first. Likewise one
    keytab file holds exactly one principal.
    """
    seen: dict[str, PrincipalRecord] = {}
    by_path: dict[str, PrincipalRecord] = {}
    for rec in records:
        holder = by_path.setdefault(rec.export_path, rec)
        if holder.principal != rec.principal:
            raise ConflictError(
                f"keytab '{rec.export_path}' is listed for two different principals "
                f"('{holder.principal}' on line {holder.line_no} vs '{rec.principal}' on line {rec.line_no})"
            )
        first = seen.setdefault(rec.principal, rec)
        if first is rec:
            continue
        if first.keytab_path != rec.keytab_path:
            raise ConflictError(
                f"duplicate principal '{rec.principal}' detected with differing keytabs "
                f"('{first.keytab_path}' on line {first.line_no} vs '{rec.keytab_path}' on line {rec.line_no})"
            )
        if (first.owner, first.group, first.perm) != (rec.owner, rec.group, rec.perm):
            raise ConflictError(
                f"duplicate principal '{rec.principal}' for keytab '{rec.keytab_path}' detected with "
                f"differing ownership/permissions ({first.owner}:{first.group} {first.perm} on line "
                f"{first.line_no} vs {rec.owner}:{rec.group} {rec.perm} on line {rec.line_no})"
            )
        if console.verbosity >= DEBUG:
            console.warn(
                f"duplicate principal '{rec.principal}' detected ({rec.description}), but keytab is "
                f"the same '{rec.keytab_path}' so this shouldn't cause problems"
            )


@dataclass
class ExportResult:
    exported: list[str] = field(default_factory=list)
    backups: list[str] = field(default_factory=list)
    warnings: list[ResolutionWarning] = field(default_factory=list)


class KeytabExporter:
    def __init__(
        self,
        config: Config,
        client: IpaClient,
        console: Console,
        timestamp: str,
        uid_for: Callable[[str], int | None] = lookup_uid,
        gid_for: Callable[[str], int | None] = lookup_gid,
    ):
        self.config = config
        self.client = client
        self.console = console
        self.backup_name = backup_dir_name(timestamp)
        self.uid_for = uid_for
        self.gid_for = gid_for

    def export(self, records: list[PrincipalRecord], result: ExportResult | None = None) -> ExportResult:
        result = result if result is not None else ExportResult()

        # Everything that can be checked up front is, before touching any keytab.
        check_duplicates(records, self.console)
        validate_export_settings(self.config)

        self.console.info(f"Exporting IPA Kerberos keytabs from IPA server '{self.config.server}' via LDAPS")
        self.console.detail(
            f"will back up any existing keytabs to sub-directory {self.backup_name} at same location as originals"
        )

        # principal -> first keytab exported for it this run
        exported: dict[str, str] = {}
        written: set[str] = set()
        for rec in records:
            if rec.export_path in written:
                continue
            self.export_one(rec, exported.get(rec.principal), result)
            exported.setdefault(rec.principal, rec.export_path)
            written.add(rec.export_path)
        return result

    def export_one(self, rec: PrincipalRecord, source: str | None, result: ExportResult) -> None:
        """
        Export one record's keytab. With `source` set the principal was
        already exported this run and that keytab is copied instead.
        """
        target = rec.export_path
        if self.config.dry_run:
            self._report_plan(rec, source)
            return

        self._ensure_dir(rec.export_dir)
        if os.path.isfile(target):
            result.backups.append(self._backup(rec))

        tmpdir = tempfile.mkdtemp(prefix=".keytab.", dir=rec.export_dir)
        try:
            tmp = os.path.join(tmpdir, rec.keytab_name)
            if source:
                self.console.detail(f"copying keytab for principal '{rec.principal}' '{source}' => '{target}'")
                fs_call(shutil.copyfile, source, tmp, what=f"failed to copy '{source}' to '{tmp}'")
            else:
                self.console.detail(f"exporting keytab for principal '{rec.principal}' to '{target}'")
                self.client.get_keytab(rec.principal, tmp)
            fs_call(os.replace, tmp, target, what=f"failed to move temp file '{tmp}' to '{target}'")
        finally:
            shutil.rmtree(tmpdir, ignore_errors=True)

        self._set_permissions(rec, result)
        result.exported.append(target)

    # -------------------------
    # Steps
    # -------------------------

    def _ensure_dir(self, path: str) -> None:
        if os.path.isdir(path):
            if not os.access(path, os.W_OK):
                raise KeytabPermissionError(f"keytab directory '{path}' is not writeable!")
            return
        self.console.detail(f"creating keytab directory '{path}'")
        fs_call(os.makedirs, path, 0o700, what=f"failed to create directory '{path}'")

    def _backup(self, rec: PrincipalRecord) -> str:
        backup_dir = os.path.join(rec.export_dir, self.backup_name)
        if not os.path.isdir(backup_dir):
            fs_call(os.makedirs, backup_dir, 0o700, what=f"failed to create backup directory '{backup_dir}'")
        dest = os.path.join(backup_dir, rec.keytab_name)
        self.console.detail(f"backing up existing keytab '{rec.export_path}' => '{backup_dir}/'")
        fs_call(os.replace, rec.export_path, dest, what=f"failed to back up existing keytab '{rec.export_path}'")
        return dest

    def _set_permissions(self, rec: PrincipalRecord, result: ExportResult) -> None:
        target = rec.export_path
        uid = self.uid_for(rec.owner)
        gid = self.gid_for(rec.group)
        if uid is None:
            self._warn(result, f"failed to resolve UID for user '{rec.owner}', defaulting to UID 0 for keytab '{target}'")
            uid = 0
        if gid is None:
            self._warn(result, f"failed to resolve GID for group '{rec.group}', defaulting to GID 0 for keytab '{target}'")
            gid = 0

        try:
            os.chown(target, uid, gid)
        except OSError as e:
            raise KeytabPermissionError(f"failed to chown keytab '{target}' to {uid}:{gid}: {e}") from e
        try:
            os.chmod(target, rec.mode)
        except OSError as e:
            raise KeytabPermissionError(f"failed to chmod keytab '{target}' to {rec.perm}: {e}") from e

    def _warn(self, result: ExportResult, msg: str) -> None:
        result.warnings.append(ResolutionWarning(msg))
        self.console.warn(msg)

    def _report_plan(self, rec: PrincipalRecord, source: str | None) -> None:
        target = rec.export_path
        if not os.path.isdir(rec.export_dir):
            self.console.info(f"(dry-run) would create keytab directory '{rec.export_dir}'")
        if os.path.isfile(target):
            self.console.info(
                f"(dry-run) would back up '{target}' => '{os.path.join(rec.export_dir, self.backup_name)}/'"
            )
        if source:
            self.console.info(f"(dry-run) would copy '{source}' => '{target}'")
        else:
            self.console.info(f"(dry-run) would export keytab for principal '{rec.principal}' to '{target}'")
        self.console.info(f"(dry-run) would set '{target}' to {rec.owner}:{rec.group} {rec.perm}")
