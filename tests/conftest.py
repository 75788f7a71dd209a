"""Pytest shared fixtures: in-memory Azure DevOps and directory fakes."""
import itertools
import pathlib
import sys
from datetime import datetime, timezone
from typing import Optional

# Add project root to Python path
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest
import requests

from license_manager.core import audit
from license_manager.core.azure_devops.exceptions import UserEntitlementNotFoundError
from license_manager.core.models import (
    AccessLevel,
    AssignmentSource,
    DirectoryIdentity,
    EntitlementRecord,
    GroupEntitlement,
    License,
    LicenseRule,
)
from license_manager.core.policy import compute_cutoffs

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


# ─────────────────────────────────────────────────────────────────────────────
# Network Guard Rails
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture(autouse=True)
def _block_network(monkeypatch):
    """Unit tests never reach Azure DevOps or Graph."""
    def _blocked(self, method, url, *args, **kwargs):
        raise RuntimeError(f"Unexpected HTTP {method} in unit test: {url}")

    monkeypatch.setattr(requests.Session, "request", _blocked)


@pytest.fixture(autouse=True)
def _isolated_audit_log(monkeypatch, tmp_path):
    """Keep audit events out of the working tree."""
    audit_dir = tmp_path / "audit"
    monkeypatch.setattr(audit, "AUDIT_LOG_DIR", audit_dir)
    monkeypatch.setattr(audit, "AUDIT_LOG_FILE", audit_dir / "license-events.jsonl")
    monkeypatch.delenv("AUDIT_LOG_SIGNING_KEY", raising=False)
    monkeypatch.delenv("AUDIT_LOG_SIGNING_KEY_FILE", raising=False)
    return audit_dir


# ─────────────────────────────────────────────────────────────────────────────
# Records
# ─────────────────────────────────────────────────────────────────────────────
def make_record(
    principal_name: str = "alice@contoso.com",
    display_name: Optional[str] = None,
    license_name: str = "Basic",
    source: AssignmentSource = AssignmentSource.GROUP_RULE,
    last_accessed: Optional[datetime] = NOW,
    date_created: Optional[datetime] = datetime(2020, 1, 1, tzinfo=timezone.utc),
    group_assignments: Optional[list] = None,
    user_id: Optional[str] = None,
) -> EntitlementRecord:
    return EntitlementRecord(
        id=user_id or f"id-{principal_name}",
        principal_name=principal_name,
        display_name=display_name or principal_name.split("@")[0].title(),
        access_level=AccessLevel(
            license=License.from_display_name(license_name),
            license_display_name=license_name,
            assignment_source=source,
        ),
        date_created=date_created,
        last_accessed=last_accessed,
        group_assignments=list(group_assignments or []),
    )


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def cutoffs():
    """180 / 90 / 30 days before 2024-06-01."""
    return compute_cutoffs(NOW, 180, 90, 30)


@pytest.fixture
def record_factory():
    return make_record


# ─────────────────────────────────────────────────────────────────────────────
# In-memory Azure DevOps organization
# ─────────────────────────────────────────────────────────────────────────────
class FakeEntitlementService:
    """Stand-in for EntitlementService backed by dictionaries.

    Group membership follows the remote rules closely enough for convergence:
    a group-rule user takes the tier of the group it last joined, and dropping
    a direct assignment hands the user over to its group memberships.
    """

    def __init__(self, organization: str = "contoso", dry_run: bool = False):
        self.organization = organization
        self.dry_run = dry_run
        self.groups: dict[str, GroupEntitlement] = {}
        self.users: dict[str, dict] = {}
        self.calls: list[tuple] = []
        self.skipped: list[tuple] = []
        self.fail_on: dict[tuple, Exception] = {}
        self._ids = itertools.count(1)

    # setup helpers
    def add_group(self, license: License, display_name: str) -> GroupEntitlement:
        group = GroupEntitlement(
            id=f"group-{next(self._ids)}",
            display_name=display_name,
            license_rule=LicenseRule.for_license(license),
        )
        self.groups[group.id] = group
        return group

    def add_user(
        self,
        principal_name: str,
        license_name: str = "Basic",
        source: AssignmentSource = AssignmentSource.DIRECT,
        last_accessed: Optional[datetime] = NOW,
        date_created: Optional[datetime] = datetime(2020, 1, 1, tzinfo=timezone.utc),
        display_name: Optional[str] = None,
        groups: tuple = (),
    ) -> str:
        user_id = f"user-{next(self._ids)}"
        self.users[user_id] = {
            "principal_name": principal_name,
            "display_name": display_name or principal_name.split("@")[0].title(),
            "license_name": license_name,
            "source": source,
            "last_accessed": last_accessed,
            "date_created": date_created,
            "groups": [g.id for g in groups],
        }
        return user_id

    def record(self, user_id: str) -> EntitlementRecord:
        state = self.users[user_id]
        return make_record(
            principal_name=state["principal_name"],
            display_name=state["display_name"],
            license_name=state["license_name"],
            source=state["source"],
            last_accessed=state["last_accessed"],
            date_created=state["date_created"],
            group_assignments=[self.groups[gid] for gid in state["groups"]],
            user_id=user_id,
        )

    def _mutating(self, *call) -> bool:
        if call in self.fail_on:
            raise self.fail_on[call]
        if self.dry_run:
            self.skipped.append(call)
            return False
        self.calls.append(call)
        return True

    # EntitlementService interface
    def list_group_entitlements(self):
        return list(self.groups.values())

    def create_group_entitlement(self, display_name, license_rule):
        if not self._mutating("create_group", display_name):
            return GroupEntitlement(id=None, display_name=display_name, license_rule=license_rule)
        group = GroupEntitlement(id=f"group-{next(self._ids)}", display_name=display_name, license_rule=license_rule)
        self.groups[group.id] = group
        return group

    def list_user_entitlements(self, top=10000):
        return [self.record(user_id) for user_id in self.users]

    def get_user_entitlement(self, user_id):
        if user_id not in self.users:
            raise UserEntitlementNotFoundError(f"User entitlement '{user_id}' not found")
        return self.record(user_id)

    def add_group_member(self, group_id, user_id):
        if not self._mutating("add_member", group_id, user_id):
            return False
        state = self.users[user_id]
        if group_id not in state["groups"]:
            state["groups"].append(group_id)
        if state["source"] is AssignmentSource.GROUP_RULE:
            state["license_name"] = self.groups[group_id].license_rule.license_display_name
        return True

    def remove_group_member(self, group_id, user_id):
        if not self._mutating("remove_member", group_id, user_id):
            return False
        state = self.users[user_id]
        if group_id in state["groups"]:
            state["groups"].remove(group_id)
        if state["source"] is AssignmentSource.GROUP_RULE and state["groups"]:
            state["license_name"] = self.groups[state["groups"][-1]].license_rule.license_display_name
        return True

    def remove_direct_assignment(self, user_id):
        if not self._mutating("remove_direct", user_id):
            return False
        state = self.users[user_id]
        if state["groups"]:
            state["source"] = AssignmentSource.GROUP_RULE
            state["license_name"] = self.groups[state["groups"][-1]].license_rule.license_display_name
        return True

    def delete_user_entitlement(self, user_id):
        if not self._mutating("delete_user", user_id):
            return False
        self.users.pop(user_id, None)
        return True

    def trigger_rule_reevaluation(self):
        return self._mutating("reevaluate")


class FakeDirectoryService:
    """Stand-in for DirectoryService. Unknown principals are active accounts."""

    def __init__(self, dry_run: bool = False):
        self.dry_run = dry_run
        self.identities: dict[str, DirectoryIdentity] = {}
        self.errors: dict[str, Exception] = {}
        self.lookups: list[str] = []
        self.deleted: list[str] = []

    def set_identity(self, principal_name: str, **fields) -> DirectoryIdentity:
        fields.setdefault("found", True)
        fields.setdefault("enabled", True)
        identity = DirectoryIdentity(principal_name=principal_name, **fields)
        self.identities[principal_name] = identity
        return identity

    def get_identity(self, principal_name):
        self.lookups.append(principal_name)
        if principal_name in self.errors:
            raise self.errors[principal_name]
        return self.identities.get(principal_name) or DirectoryIdentity(
            principal_name=principal_name, found=True, enabled=True
        )

    def delete_identity(self, principal_name):
        if self.dry_run:
            return False
        self.deleted.append(principal_name)
        return True


@pytest.fixture
def fake_entitlements():
    return FakeEntitlementService()


@pytest.fixture
def fake_directory():
    return FakeDirectoryService()


@pytest.fixture
def managed_groups(fake_entitlements):
    """Create the four policy-managed groups with the default prefix."""
    from license_manager.core.catalog import group_display_name

    return {
        license: fake_entitlements.add_group(license, group_display_name(license, "License-"))
        for license in License
    }


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (requires live Azure services)"
    )


# ─────────────────────────────────────────────────────────────────────────────
# Settings
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture
def app_config_factory():
    """Build an AppConfig without touching the environment."""
    from license_manager.config.settings import AppConfig

    def _make(**overrides):
        base = dict(
            organization="contoso",
            personal_access_token="pat",
            graph_tenant_id="tenant",
            graph_client_id="client",
            graph_client_secret="secret",
            reconcile_trigger_token="trigger-token",
        )
        base.update(overrides)
        return AppConfig(**base)

    return _make
