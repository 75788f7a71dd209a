"""Unit tests for the Azure DevOps entitlement client and service."""
import base64
from unittest.mock import MagicMock

import pytest

from license_manager.core.azure_devops import (
    AzureDevOpsAPIError,
    AzureDevOpsClient,
    EntitlementService,
    REQUEST_TIMEOUT,
    UserEntitlementNotFoundError,
)
from license_manager.core.models import AssignmentSource, License, LicenseRule


class _StubResponse:
    def __init__(self, payload=None, status_code=200, url="https://vsaex.dev.azure.com/contoso/_apis"):
        self._payload = payload
        self.status_code = status_code
        self.url = url
        self.text = "" if payload is None else str(payload)

    def json(self):
        return self._payload


def make_service(*responses, dry_run=False):
    session = MagicMock()
    session.request.side_effect = list(responses)
    client = AzureDevOpsClient("contoso", "secret-pat", base_url="https://vsaex.dev.azure.com/", dry_run=dry_run,
                               session=session)
    return EntitlementService(client), session


def sent(session, index=0):
    args, kwargs = session.request.call_args_list[index]
    return args[0], args[1], kwargs


def test_client_uses_pat_basic_auth():
    service, session = make_service(_StubResponse({"value": []}))

    service.list_group_entitlements()

    method, url, kwargs = sent(session)
    expected = base64.b64encode(b"PAT:secret-pat").decode("ascii")
    assert method == "GET"
    assert url == "https://vsaex.dev.azure.com/contoso/_apis/groupentitlements"
    assert kwargs["headers"]["Authorization"] == f"Basic {expected}"
    assert kwargs["params"] == {"api-version": "6.0-preview.1"}
    assert kwargs["timeout"] == REQUEST_TIMEOUT


def test_list_group_entitlements_parses_groups():
    service, _ = make_service(_StubResponse([
        {"id": "g1", "group": {"displayName": "License-Basic"}, "licenseRule": {"licenseDisplayName": "Basic"}},
        {"id": "g2", "group": {"displayName": "Other"}},
    ]))

    groups = service.list_group_entitlements()

    assert [(g.id, g.display_name) for g in groups] == [("g1", "License-Basic"), ("g2", "Other")]
    assert groups[0].license_rule.license_display_name == "Basic"
    assert groups[1].license_rule is None


def test_create_group_entitlement_posts_vsts_group():
    service, session = make_service(_StubResponse({
        "isSuccess": True,
        "result": {"id": "g-new", "group": {"displayName": "License-Stakeholder"}},
    }))

    group = service.create_group_entitlement("License-Stakeholder", LicenseRule.for_license(License.STAKEHOLDER))

    method, url, kwargs = sent(session)
    assert method == "POST"
    assert url.endswith("/contoso/_apis/groupentitlements")
    assert kwargs["params"] == {"api-version": "6.1-preview.1"}
    assert kwargs["json"]["group"]["origin"] == "vsts"
    assert kwargs["json"]["licenseRule"]["accountLicenseType"] == "5"
    assert group.id == "g-new"
    assert group.license_rule.license_display_name == "Stakeholder"


def test_create_group_entitlement_in_dry_run_returns_placeholder():
    service, session = make_service(dry_run=True)

    group = service.create_group_entitlement("License-Basic", LicenseRule.for_license(License.BASIC))

    session.request.assert_not_called()
    assert group.id is None
    assert group.display_name == "License-Basic"


def test_list_user_entitlements_requests_group_rules():
    service, session = make_service(_StubResponse({"members": [{
        "id": "u1",
        "user": {"principalName": "alice@contoso.com", "displayName": "Alice"},
        "accessLevel": {"licenseDisplayName": "Basic", "assignmentSource": "unknown"},
        "lastAccessedDate": "2024-05-01T00:00:00Z",
    }]}))

    records = service.list_user_entitlements()

    _, url, kwargs = sent(session)
    assert url.endswith("/_apis/userentitlements")
    assert kwargs["params"] == {"api-version": "4.1-preview.1", "top": 10000, "select": "Grouprules"}
    assert records[0].principal_name == "alice@contoso.com"
    assert records[0].assignment_source is AssignmentSource.DIRECT


def test_get_user_entitlement_404_is_not_found():
    service, _ = make_service(_StubResponse({"message": "missing"}, status_code=404))

    with pytest.raises(UserEntitlementNotFoundError):
        service.get_user_entitlement("u1")


def test_get_user_entitlement_other_errors_propagate():
    service, _ = make_service(_StubResponse({"message": "denied"}, status_code=401))

    with pytest.raises(AzureDevOpsAPIError) as exc:
        service.get_user_entitlement("u1")

    assert exc.value.status_code == 401


def test_membership_and_deletion_endpoints():
    service, session = make_service(*[_StubResponse({}) for _ in range(5)])

    assert service.add_group_member("g1", "u1")
    assert service.remove_group_member("g1", "u1")
    assert service.remove_direct_assignment("u1")
    assert service.delete_user_entitlement("u1")
    assert service.trigger_rule_reevaluation()

    calls = [sent(session, i) for i in range(5)]
    assert [(m, u.split("/contoso/")[1]) for m, u, _ in calls] == [
        ("PUT", "_apis/GroupEntitlements/g1/members/u1"),
        ("DELETE", "_apis/GroupEntitlements/g1/members/u1"),
        ("POST", "_apis/MEMInternal/RemoveExplicitAssignment"),
        ("DELETE", "_apis/userentitlements/u1"),
        ("POST", "_apis/MEMInternal/GroupEntitlementUserApplication"),
    ]
    assert calls[2][2]["json"] == ["u1"]
    assert calls[2][2]["params"] == {"ruleOption": 0, "api-version": "5.0-preview.1"}
    assert calls[3][2]["params"] == {"api-version": "6.1-preview.3"}


def test_dry_run_skips_every_mutation():
    service, session = make_service(dry_run=True)

    assert not service.add_group_member("g1", "u1")
    assert not service.remove_group_member("g1", "u1")
    assert not service.remove_direct_assignment("u1")
    assert not service.delete_user_entitlement("u1")
    assert not service.trigger_rule_reevaluation()
    session.request.assert_not_called()


def test_dry_run_still_reads():
    service, session = make_service(_StubResponse({"value": []}), dry_run=True)

    assert service.list_group_entitlements() == []
    session.request.assert_called_once()


def test_http_error_raises_api_error():
    service, _ = make_service(_StubResponse("throttled", status_code=500, url="https://x/_apis/groupentitlements"))

    with pytest.raises(AzureDevOpsAPIError) as exc:
        service.list_group_entitlements()

    assert exc.value.status_code == 500
    assert exc.value.endpoint == "https://x/_apis/groupentitlements"
