"""Domain models for entitlement reconciliation.

Wire formats follow the Azure DevOps entitlement API (camelCase JSON) and the
Microsoft Graph user resource. Parsing is tolerant: unknown fields are ignored,
missing optional fields become None.
"""
from __future__ import annotations
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

_FRACTION_PATTERN = re.compile(r"\.(\d+)")


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp as returned by Azure DevOps or Graph.

    Azure DevOps emits up to seven fractional digits and a trailing ``Z``;
    both are normalized before ``datetime.fromisoformat``. Naive values are
    taken as UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    text = str(value).strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    text = _FRACTION_PATTERN.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class License(str, Enum):
    """License tiers managed through group entitlements."""

    BASIC = "Basic"
    BASIC_TEST_PLANS = "Basic + Test Plans"
    STAKEHOLDER = "Stakeholder"
    VISUAL_STUDIO_SUBSCRIBER = "Visual Studio Subscriber"

    @property
    def display_name(self) -> str:
        return self.value

    @property
    def is_visual_studio(self) -> bool:
        return self is License.VISUAL_STUDIO_SUBSCRIBER

    @classmethod
    def from_display_name(cls, name: Optional[str]) -> Optional["License"]:
        """Map a remote license display name onto a tier.

        Exact names win. Every Visual Studio flavour ("Visual Studio Enterprise
        subscription", ...) collapses onto the subscriber tier. Anything else
        returns None.
        """
        if not name:
            return None
        for member in cls:
            if member.value == name:
                return member
        if "visual studio" in name.lower():
            return cls.VISUAL_STUDIO_SUBSCRIBER
        return None


class AssignmentSource(str, Enum):
    DIRECT = "direct"
    GROUP_RULE = "group-rule"

    @classmethod
    def from_api(cls, value: Optional[str]) -> "AssignmentSource":
        if value and value.replace("-", "").lower() == "grouprule":
            return cls.GROUP_RULE
        return cls.DIRECT


# Remote codes per tier: (licensingSource, accountLicenseType, msdnLicenseType)
_LICENSE_CODES = {
    License.BASIC: ("1", "2", "0"),
    License.BASIC_TEST_PLANS: ("1", "4", "0"),
    License.STAKEHOLDER: ("1", "5", "0"),
    License.VISUAL_STUDIO_SUBSCRIBER: ("2", "0", "1"),
}


@dataclass
class LicenseRule:
    """License rule attached to a group entitlement. Opaque apart from the tier name."""

    licensing_source: str
    account_license_type: str
    msdn_license_type: str
    license_display_name: str
    status: str = "0"
    status_message: str = ""
    assignment_source: str = "1"

    @classmethod
    def for_license(cls, license: License) -> "LicenseRule":
        licensing_source, account_license_type, msdn_license_type = _LICENSE_CODES[license]
        return cls(
            licensing_source=licensing_source,
            account_license_type=account_license_type,
            msdn_license_type=msdn_license_type,
            license_display_name=license.display_name,
        )

    @classmethod
    def from_api(cls, payload: Optional[dict]) -> "LicenseRule":
        payload = payload or {}
        return cls(
            licensing_source=str(payload.get("licensingSource", "")),
            account_license_type=str(payload.get("accountLicenseType", "")),
            msdn_license_type=str(payload.get("msdnLicenseType", "")),
            license_display_name=payload.get("licenseDisplayName") or "",
            status=str(payload.get("status", "")),
            status_message=payload.get("statusMessage") or "",
            assignment_source=str(payload.get("assignmentSource", "")),
        )

    def to_api(self) -> dict:
        return {
            "licensingSource": self.licensing_source,
            "accountLicenseType": self.account_license_type,
            "msdnLicenseType": self.msdn_license_type,
            "licenseDisplayName": self.license_display_name,
            "status": self.status,
            "statusMessage": self.status_message,
            "assignmentSource": self.assignment_source,
        }


@dataclass
class GroupEntitlement:
    """A group whose membership confers one license tier."""

    id: Optional[str]
    display_name: str
    license_rule: Optional[LicenseRule] = None
    status: Optional[str] = None
    last_executed: Optional[datetime] = None

    @classmethod
    def from_api(cls, payload: dict) -> "GroupEntitlement":
        group = payload.get("group") or {}
        status = payload.get("status")
        return cls(
            id=payload.get("id") or group.get("id") or payload.get("groupId"),
            display_name=group.get("displayName") or payload.get("displayName") or "",
            license_rule=LicenseRule.from_api(payload.get("licenseRule")) if payload.get("licenseRule") else None,
            status=str(status) if status is not None else None,
            last_executed=parse_datetime(payload.get("lastExecuted")),
        )

    def to_create_payload(self) -> dict:
        return {
            "group": {
                "displayName": self.display_name,
                "origin": "vsts",
                "subjectKind": "group",
            },
            "licenseRule": self.license_rule.to_api() if self.license_rule else None,
        }


@dataclass
class AccessLevel:
    license: Optional[License]
    license_display_name: str
    assignment_source: AssignmentSource

    @classmethod
    def from_api(cls, payload: Optional[dict]) -> "AccessLevel":
        payload = payload or {}
        name = payload.get("licenseDisplayName") or ""
        return cls(
            license=License.from_display_name(name),
            license_display_name=name,
            assignment_source=AssignmentSource.from_api(payload.get("assignmentSource")),
        )


@dataclass
class EntitlementRecord:
    """One user's grant in the Azure DevOps organization.

    ``group_assignments`` is a cache of the user's group entitlements. It is
    only ever replaced from a remote read, never patched locally.
    """

    id: str
    principal_name: str
    display_name: str
    access_level: AccessLevel
    date_created: Optional[datetime] = None
    last_accessed: Optional[datetime] = None
    group_assignments: list[GroupEntitlement] = field(default_factory=list)

    @classmethod
    def from_api(cls, payload: dict) -> "EntitlementRecord":
        user = payload.get("user") or {}
        assignments = payload.get("groupAssignments")
        if assignments is None:
            assignments = payload.get("GroupAssignments") or []
        return cls(
            id=payload["id"],
            principal_name=user.get("principalName") or user.get("mailAddress") or "",
            display_name=user.get("displayName") or "",
            access_level=AccessLevel.from_api(payload.get("accessLevel")),
            date_created=parse_datetime(payload.get("dateCreated")),
            last_accessed=parse_datetime(payload.get("lastAccessedDate")),
            group_assignments=[GroupEntitlement.from_api(item) for item in assignments],
        )

    @property
    def license(self) -> Optional[License]:
        return self.access_level.license

    @property
    def assignment_source(self) -> AssignmentSource:
        return self.access_level.assignment_source

    def group_assignment(self, display_name: str) -> Optional[GroupEntitlement]:
        return next((g for g in self.group_assignments if g.display_name == display_name), None)

    def refresh_from(self, fetched: "EntitlementRecord") -> None:
        """Adopt access level and memberships from a re-fetched copy of this record."""
        self.access_level = replace(fetched.access_level)
        self.group_assignments = list(fetched.group_assignments)
        if fetched.last_accessed is not None:
            self.last_accessed = fetched.last_accessed


@dataclass
class DirectoryIdentity:
    """The directory's verdict on one account."""

    principal_name: str
    found: bool
    enabled: Optional[bool] = None
    deleted_at: Optional[datetime] = None
    last_sign_in: Optional[datetime] = None
    created_at: Optional[datetime] = None
    id: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def from_graph(cls, principal_name: str, payload: dict) -> "DirectoryIdentity":
        sign_in = payload.get("signInActivity") or {}
        return cls(
            principal_name=payload.get("userPrincipalName") or principal_name,
            found=True,
            enabled=payload.get("accountEnabled"),
            deleted_at=parse_datetime(payload.get("deletedDateTime")),
            last_sign_in=parse_datetime(sign_in.get("lastSignInDateTime")),
            created_at=parse_datetime(payload.get("createdDateTime")),
            id=payload.get("id"),
        )

    @classmethod
    def not_found(cls, principal_name: str, error_code: Optional[str] = None) -> "DirectoryIdentity":
        return cls(principal_name=principal_name, found=False, error_code=error_code)

    @property
    def is_active(self) -> bool:
        return self.found and self.enabled is not False and self.deleted_at is None

    def inactive_reason(self) -> Optional[str]:
        if not self.found:
            return "not found in directory"
        if self.enabled is False:
            return "account disabled in directory"
        if self.deleted_at is not None:
            return f"deleted from directory on {self.deleted_at.isoformat()}"
        return None
