"""
ipa-keytabs

Generate Ambari / Hadoop Kerberos principals and keytabs in FreeIPA / Red Hat
IdM, then distribute the keytabs to their hosts.

MAKE SURE YOU 'export KRB5CCNAME=/tmp/blah; kinit' BEFORE RUNNING - a valid
Kerberos ticket is needed to create IPA hosts, services and users.

Input
-----
The CSV exported by the Ambari 'Enable Security' wizard. Any CSV in the
same format works for other distributions:

  Host,Description,Principal,Keytab Name,Export Dir,User,Group,Octal perms

Steps
-----
1. Create missing IPA hosts, service principals and users (`ipa`).
2. Export keytabs (`ipa-getkeytab` over LDAPS, needs bind credentials).
   Re-exporting invalidates existing keytabs, so this asks first and backs
   up existing files to <dir>/<host>/keytab-backups-<timestamp>/.
3. rsync keytabs to their hosts over ssh (public key only), backing up
   existing remote keytabs first. This also asks first.

This host should resolve the Hadoop users and groups from IPA, otherwise
keytabs are chowned to root:root (with a warning).

Examples:

  export IPA_BIND_DN=uid=admin,cn=users,cn=accounts,dc=example,dc=com
  export IPA_BIND_PASSWORD=...
  ipa-keytabs -f ambari_principals.csv -s ipa1.example.com

  # Non-interactive, see what would happen first
  ipa-keytabs -f principals.csv --export-keytabs yes --rsync-keytabs no --dry-run
"""
from __future__ import annotations

import argparse
import signal
import socket
import sys
from contextlib import contextmanager
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable

from .config import Config, build_config, missing_commands
from .confirm import EXPORT_QUESTION, RSYNC_QUESTION, Confirm, confirmer, parse_answer
from .console import Console
from .distribute import DistributeResult, KeytabDistributor
from .errors import ConfigError, CredentialsError, KeytabToolError, RunTimeout
from .export import ExportResult, KeytabExporter, run_timestamp
from .ipa import IpaClient, fetch_inventory
from .reconcile import ReconcileResult, Reconciler
from .records import PrincipalRecord, read_records
from .runner import CommandRunner


@dataclass
class RunReport:
    reconcile: ReconcileResult | None = None
    export: ExportResult | None = None
    distribute: DistributeResult | None = None


def yes_no(value: str) -> bool:
    try:
        return parse_answer(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def positive_int(value: str) -> int:
    try:
        n = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {value!r}")
    if n < 0:
        raise argparse.ArgumentTypeError(f"must not be negative: {n}")
    return n


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="ipa-keytabs",
        description="Create Kerberos principals in FreeIPA from an Ambari CSV, export their keytabs and rsync them to hosts.",
    )
    p.add_argument(
        "-f",
        "--file",
        required=True,
        help="CSV file exported from Ambari 'Enable Security' containing the list of Kerberos principals and hosts",
    )
    p.add_argument("-c", "--config", help="YAML config file (server, bind_dn, bind_password, email, timeout, ssh_options, commands)")
    p.add_argument(
        "-s",
        "--server",
        help="IPA server to export the keytabs from via LDAP. Must be an FQDN unless localhost, "
        "for LDAP SSL certificate validation (default: localhost, $IPA_SERVER)",
    )
    p.add_argument("-d", "--bind-dn", help="IPA LDAP bind DN for exporting keytabs ($IPA_BIND_DN)")
    p.add_argument("-p", "--bind-password", help="IPA LDAP bind password for exporting keytabs ($IPA_BIND_PASSWORD)")
    p.add_argument("-e", "--email", help="Email address for created IPA users (default: <user>@<domain>)")
    p.add_argument(
        "--export-keytabs",
        type=yes_no,
        default=None,
        metavar="yes|no",
        help="Export keytabs without prompting. WARNING: will invalidate existing keytabs",
    )
    p.add_argument(
        "--rsync-keytabs",
        type=yes_no,
        default=None,
        metavar="yes|no",
        help="Rsync keytabs without prompting. Existing keytabs on the hosts are backed up first",
    )
    p.add_argument("--local-host", help="FQDN of this host; its keytabs are copied locally instead of rsynced (default: detected)")
    p.add_argument("--timeout", type=positive_int, help="Abort the whole run after this many seconds, 0 to disable (default: 600)")
    p.add_argument("--dry-run", action="store_true", default=None, help="Query IPA but only print what would be created, exported and copied")
    p.add_argument("-q", "--quiet", action="count", default=0, help="Quiet mode")
    p.add_argument("-v", "--verbose", action="count", default=0, help="Verbose mode (repeat for the commands run)")
    return p


def verbosity_from(ns: argparse.Namespace) -> int:
    return max(0, 2 + ns.verbose - ns.quiet)


def config_from_args(ns: argparse.Namespace, environ=None) -> Config:
    overrides = {
        "server": ns.server,
        "bind_dn": ns.bind_dn,
        "bind_password": ns.bind_password,
        "email": ns.email,
        "timeout": ns.timeout,
        "local_host": ns.local_host,
        "dry_run": ns.dry_run,
        "verbosity": verbosity_from(ns),
    }
    return build_config(overrides, config_file=Path(ns.config) if ns.config else None, environ=environ)


def require_commands(config: Config, names) -> None:
    missing = missing_commands(config, names)
    if missing:
        raise ConfigError(f"required command(s) not found in PATH: {', '.join(missing)}")


def detect_local_host(console: Console) -> str:
    fqdn = socket.getfqdn()
    if "." not in fqdn:
        console.warn(f"unable to determine FQDN of this host (got {fqdn!r}), will ssh+rsync back to self")
    return fqdn


@contextmanager
def watchdog(seconds: int):
    """Abort the whole run with RunTimeout after `seconds` (0 disables)."""
    if not seconds or not hasattr(signal, "SIGALRM"):
        yield
        return

    def expired(signum, frame):
        raise RunTimeout(f"run did not complete within {seconds} seconds")

    previous = signal.signal(signal.SIGALRM, expired)
    signal.alarm(seconds)
    try:
        yield
    finally:
        signal.alarm(0)
        signal.signal(signal.SIGALRM, previous)


def run(
    config: Config,
    records: list[PrincipalRecord],
    client: IpaClient,
    runner: CommandRunner,
    console: Console,
    confirm_export: Confirm,
    confirm_rsync: Confirm,
    has_ticket: Callable[[], bool],
    timestamp: str,
    report: RunReport | None = None,
) -> RunReport:
    """
    Reconcile, export and distribute. Stops at the first error; whatever
    completed before it is left in place and recorded in `report`.
    """
    report = report if report is not None else RunReport()

    if not has_ticket():
        raise CredentialsError(
            "no valid Kerberos ticket in the credential cache - run 'kinit' "
            "(with KRB5CCNAME exported) before running this program"
        )

    inventory = fetch_inventory(client, console)
    report.reconcile = ReconcileResult()
    Reconciler(config, client, inventory, console).reconcile(records, report.reconcile)

    if confirm_export(EXPORT_QUESTION):
        require_commands(config, ["ipa-getkeytab"])
        report.export = ExportResult()
        KeytabExporter(config, client, console, timestamp).export(records, report.export)
    else:
        console.say("not exporting keytabs")

    if confirm_rsync(RSYNC_QUESTION):
        require_commands(config, ["ssh", "rsync"])
        report.distribute = DistributeResult()
        KeytabDistributor(config, runner, console, timestamp).distribute(records, report.distribute)
    else:
        console.say("not rsyncing keytabs")

    return report


def summarize(report: RunReport, console: Console) -> None:
    r = report.reconcile
    if r is not None:
        console.info(
            f"IPA: created {len(r.created_hosts)} host(s), {len(r.created_services)} service principal(s), "
            f"{len(r.created_users)} user(s); {r.skipped} already present"
        )
    e = report.export
    if e is not None:
        console.info(f"Keytabs: {len(e.exported)} exported, {len(e.backups)} existing backed up")
        if e.warnings:
            console.warn(f"{len(e.warnings)} owner/group name(s) did not resolve, those keytabs are owned by root")
    d = report.distribute
    if d is not None:
        console.info(f"Distribution: {len(d.local)} keytab(s) installed locally, {len(d.hosts)} host(s) rsynced")


def main(argv: list[str]) -> int:
    ns = build_parser().parse_args(argv)
    console = Console(verbosity_from(ns))
    report = RunReport()

    try:
        config = config_from_args(ns)
        csv_path = Path(ns.file).expanduser()
        if not csv_path.is_file():
            raise ConfigError(f"principals CSV does not exist or is not a file: {csv_path}")

        # The whole CSV is validated before anything external is touched.
        records = read_records(csv_path)
        console.detail(f"read {len(records)} principal(s) from {csv_path}")

        require_commands(config, ["ipa", "klist"])
        if not config.local_host:
            config = replace(config, local_host=detect_local_host(console))

        runner = CommandRunner(console, dry_run=config.dry_run)
        client = IpaClient(config, runner)

        with watchdog(config.timeout):
            run(
                config,
                records,
                client,
                runner,
                console,
                confirm_export=confirmer(ns.export_keytabs),
                confirm_rsync=confirmer(ns.rsync_keytabs),
                has_ticket=client.has_ticket,
                timestamp=run_timestamp(),
                report=report,
            )
    except KeytabToolError as e:
        summarize(report, console)
        console.error(str(e))
        return e.exit_code
    except KeyboardInterrupt:
        summarize(report, console)
        console.error("interrupted")
        return 130

    summarize(report, console)
    console.say("Complete")
    return 0


def entrypoint() -> None:
    raise SystemExit(main(sys.argv[1:]))
