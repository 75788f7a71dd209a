"""Azure DevOps user and group entitlement operations."""
from __future__ import annotations
import logging
from typing import Optional

from ..models import EntitlementRecord, GroupEntitlement, LicenseRule
from .client import AzureDevOpsClient
from .exceptions import AzureDevOpsAPIError, UserEntitlementNotFoundError

logger = logging.getLogger(__name__)

GROUP_ENTITLEMENTS_API_VERSION = "6.0-preview.1"
GROUP_ENTITLEMENTS_CREATE_API_VERSION = "6.1-preview.1"
# Newer versions of the listing API drop top/continuationToken support
USER_ENTITLEMENTS_LIST_API_VERSION = "4.1-preview.1"
USER_ENTITLEMENTS_API_VERSION = "6.1-preview.3"
MEM_INTERNAL_API_VERSION = "5.0-preview.1"
DEFAULT_PAGE_SIZE = 10000


def _items(payload) -> list[dict]:
    """Entitlement list endpoints answer either {"value": [...]} or a bare list."""
    if payload is None:
        return []
    if isinstance(payload, list):
        return payload
    for key in ("value", "members", "items"):
        if key in payload:
            return payload[key] or []
    return []


class EntitlementService:
    """Service for the Azure DevOps entitlement API."""

    def __init__(self, client: AzureDevOpsClient):
        """Initialize entitlement service.

        Args:
            client: Azure DevOps client bound to one organization
        """
        self.client = client

    @property
    def dry_run(self) -> bool:
        return self.client.dry_run

    @property
    def organization(self) -> str:
        return self.client.organization

    def list_group_entitlements(self) -> list[GroupEntitlement]:
        """Return every group entitlement of the organization."""
        resp = self.client.get("_apis/groupentitlements", params={"api-version": GROUP_ENTITLEMENTS_API_VERSION})
        return [GroupEntitlement.from_api(item) for item in _items(resp.json())]

    def create_group_entitlement(self, display_name: str, license_rule: LicenseRule) -> GroupEntitlement:
        """Create a vsts group carrying the given license rule.

        In dry-run mode nothing is sent and an unsaved entitlement (id None)
        is returned so callers can keep planning against it.
        """
        requested = GroupEntitlement(id=None, display_name=display_name, license_rule=license_rule)
        resp = self.client.post(
            "_apis/groupentitlements",
            json=requested.to_create_payload(),
            params={"api-version": GROUP_ENTITLEMENTS_CREATE_API_VERSION},
        )
        if resp is None:
            return requested

        body = resp.json() or {}
        # The create call answers with an operation reference wrapping the entitlement
        result = body.get("result") or body
        if isinstance(result, dict) and isinstance(result.get("result"), dict):
            result = result["result"]
        created = GroupEntitlement.from_api(result) if isinstance(result, dict) else requested
        if not created.display_name:
            created.display_name = display_name
        if created.license_rule is None:
            created.license_rule = license_rule
        return created

    def list_user_entitlements(self, top: int = DEFAULT_PAGE_SIZE) -> list[EntitlementRecord]:
        """Return the organization's user entitlements, including group assignments."""
        resp = self.client.get(
            "_apis/userentitlements",
            params={
                "api-version": USER_ENTITLEMENTS_LIST_API_VERSION,
                "top": top,
                "select": "Grouprules",
            },
        )
        return [EntitlementRecord.from_api(item) for item in _items(resp.json())]

    def get_user_entitlement(self, user_id: str) -> EntitlementRecord:
        """Fetch one user entitlement.

        Raises:
            UserEntitlementNotFoundError: If the entitlement no longer exists
        """
        try:
            resp = self.client.get(
                f"_apis/userentitlements/{user_id}",
                params={"api-version": USER_ENTITLEMENTS_API_VERSION},
            )
        except AzureDevOpsAPIError as exc:
            if exc.status_code == 404:
                raise UserEntitlementNotFoundError(f"User entitlement '{user_id}' not found") from exc
            raise
        body = resp.json()
        if not body:
            raise UserEntitlementNotFoundError(f"User entitlement '{user_id}' not found")
        return EntitlementRecord.from_api(body)

    def add_group_member(self, group_id: str, user_id: str) -> bool:
        """Add a user to a group entitlement (idempotent at the remote).

        Returns:
            True if the request was sent, False in dry-run mode
        """
        resp = self.client.put(
            f"_apis/GroupEntitlements/{group_id}/members/{user_id}",
            params={"api-version": GROUP_ENTITLEMENTS_API_VERSION},
        )
        return resp is not None

    def remove_group_member(self, group_id: str, user_id: str) -> bool:
        """Remove a user from a group entitlement.

        Returns:
            True if the request was sent, False in dry-run mode
        """
        resp = self.client.delete(
            f"_apis/GroupEntitlements/{group_id}/members/{user_id}",
            params={"api-version": GROUP_ENTITLEMENTS_API_VERSION},
        )
        return resp is not None

    def remove_direct_assignment(self, user_id: str) -> bool:
        """Drop the explicit (direct) license assignment of a user.

        Uses an undocumented endpoint; it is a no-op for users without one.
        """
        resp = self.client.post(
            "_apis/MEMInternal/RemoveExplicitAssignment",
            json=[user_id],
            params={"ruleOption": 0, "api-version": MEM_INTERNAL_API_VERSION},
        )
        return resp is not None

    def delete_user_entitlement(self, user_id: str) -> bool:
        """Delete a user from the organization."""
        resp = self.client.delete(
            f"_apis/userentitlements/{user_id}",
            params={"api-version": USER_ENTITLEMENTS_API_VERSION},
        )
        return resp is not None

    def trigger_rule_reevaluation(self) -> bool:
        """Ask the organization to re-apply all group entitlement rules.

        Uses an undocumented endpoint.
        """
        resp = self.client.post(
            "_apis/MEMInternal/GroupEntitlementUserApplication",
            params={"ruleOption": 0, "api-version": MEM_INTERNAL_API_VERSION},
        )
        return resp is not None
