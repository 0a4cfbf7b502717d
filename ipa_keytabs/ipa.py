"""
Thin adapter over the FreeIPA command line tools.

Everything that knows about `ipa` / `ipa-getkeytab` / `klist` argv layout
or scrapes their text output lives here, so the rest of the tool only
deals in names and sets.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from .config import Config
from .console import Console
from .runner import CommandRunner


HOSTS = "host"
USERS = "user"
SERVICES = "service"

# `ipa <kind>-find` prints one "  Label: value" line per attribute.
FIND_LABELS = {
    HOSTS: ("Host name",),
    USERS: ("User login",),
    # "Principal" on IPA 3.x, "Principal name" on 4.x
    SERVICES: ("Principal", "Principal name"),
}


def parse_find_output(text: str, kind: str) -> set[str]:
    """Collect the entity names out of `ipa <kind>-find` output."""
    labels = FIND_LABELS[kind]
    names: set[str] = set()
    for line in text.splitlines():
        label, sep, value = line.partition(":")
        if not sep:
            continue
        value = value.strip()
        if label.strip() in labels and value:
            names.add(value)
    return names


@dataclass
class DirectoryInventory:
    """Snapshot of what already exists in IPA, taken once per run."""

    hosts: set[str] = field(default_factory=set)
    users: set[str] = field(default_factory=set)
    services: set[str] = field(default_factory=set)


class IpaClient:
    def __init__(self, config: Config, runner: CommandRunner):
        self.config = config
        self.runner = runner

    @property
    def ipa(self) -> str:
        return self.config.command("ipa")

    # -------------------------
    # Queries
    # -------------------------

    def find(self, kind: str) -> set[str]:
        # --sizelimit=0 lifts the default 100 entry cap
        out = self.runner.run([self.ipa, f"{kind}-find", "--sizelimit=0"])
        return parse_find_output(out, kind)

    def has_ticket(self) -> bool:
        return self.runner.succeeds([self.config.command("klist"), "-s"])

    # -------------------------
    # Creation
    # -------------------------

    def add_host(self, host: str) -> None:
        # --force: don't require DNS records for the host
        self.runner.run([self.ipa, "host-add", "--force", host], mutating=True)

    def add_service(self, principal: str) -> None:
        self.runner.run([self.ipa, "service-add", "--force", principal], mutating=True)

    def add_user(self, user: str, principal: str, description: str, email: str) -> None:
        self.runner.run(
            [
                self.ipa,
                "user-add",
                f"--first={description}",
                f"--last={description}",
                f"--displayname={principal}",
                f"--email={email}",
                f"--principal={principal}",
                "--random",
                user,
            ],
            mutating=True,
        )

    # -------------------------
    # Keytabs
    # -------------------------

    def get_keytab(self, principal: str, keytab: str) -> None:
        """
        Retrieve a fresh keytab into `keytab`, which must not exist yet
        (ipa-getkeytab appends to existing files). Invalidates every
        previously exported keytab for the principal.
        """
        cfg = self.config
        cmd = [cfg.command("ipa-getkeytab"), "-s", cfg.server, "-p", principal]
        if cfg.bind_dn:
            cmd.extend(["-D", cfg.bind_dn, "-w", cfg.bind_password or ""])
        cmd.extend(["-k", keytab])
        self.runner.run(cmd, mutating=True, secrets=[cfg.bind_password])


def fetch_inventory(client: IpaClient, console: Console) -> DirectoryInventory:
    inventory = DirectoryInventory()
    for kind, names in ((HOSTS, inventory.hosts), (USERS, inventory.users), (SERVICES, inventory.services)):
        console.detail(f"fetching IPA {kind} list")
        names.update(client.find(kind))
        console.debug(f"{len(names)} {kind}(s) found")
    return inventory
