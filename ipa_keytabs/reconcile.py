from __future__ import annotations

from dataclasses import dataclass, field

from .config import Config
from .console import Console
from .ipa import DirectoryInventory, IpaClient
from .records import PrincipalRecord


@dataclass
class ReconcileResult:
    created_hosts: list[str] = field(default_factory=list)
    created_services: list[str] = field(default_factory=list)
    created_users: list[str] = field(default_factory=list)
    skipped: int = 0

    @property
    def created(self) -> int:
        return len(self.created_hosts) + len(self.created_services) + len(self.created_users)


class Reconciler:
    """
    Creates the hosts, service principals and users missing from IPA.

    Existence is decided against the inventory snapshot, which is updated
    right after each creation so a record repeated later in the CSV is
    not created twice. Any failed creation stops the run.
    """

    def __init__(self, config: Config, client: IpaClient, inventory: DirectoryInventory, console: Console):
        self.config = config
        self.client = client
        self.inventory = inventory
        self.console = console

    def reconcile(self, records: list[PrincipalRecord], result: ReconcileResult | None = None) -> ReconcileResult:
        # Callers may pass their own result to keep partial progress on failure.
        result = result if result is not None else ReconcileResult()
        self.console.info("Creating IPA Kerberos principals")
        for rec in records:
            if rec.is_service:
                self._ensure_host(rec.host, result)
                self._ensure_service(rec.principal, result)
            else:
                self._ensure_user(rec, result)
        return result

    def _ensure_host(self, host: str, result: ReconcileResult) -> None:
        if host in self.inventory.hosts:
            self.console.debug(f"IPA host '{host}' already exists, skipping...")
            result.skipped += 1
            return
        self.console.detail(f"creating host '{host}' in IPA")
        self.client.add_host(host)
        self.inventory.hosts.add(host)
        result.created_hosts.append(host)

    def _ensure_service(self, principal: str, result: ReconcileResult) -> None:
        if principal in self.inventory.services:
            self.console.detail(f"service principal '{principal}' already exists, skipping...")
            result.skipped += 1
            return
        self.console.detail(f"creating host service principal '{principal}'")
        self.client.add_service(principal)
        self.inventory.services.add(principal)
        result.created_services.append(principal)

    def _ensure_user(self, rec: PrincipalRecord, result: ReconcileResult) -> None:
        if rec.user in self.inventory.users:
            self.console.detail(f"user principal '{rec.principal}' already exists, skipping...")
            result.skipped += 1
            return
        self.console.detail(f"creating user principal '{rec.principal}'")
        self.client.add_user(
            user=rec.user,
            principal=rec.principal,
            description=rec.description,
            email=self.config.email_for(rec.user, rec.domain),
        )
        self.inventory.users.add(rec.user)
        result.created_users.append(rec.user)
