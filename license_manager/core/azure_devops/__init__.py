"""Azure DevOps entitlement API client library.

Architecture:
- client.py: HTTP client with PAT authentication, retries and dry-run switch
- entitlements.py: user and group entitlement operations
- exceptions.py: typed exceptions for error handling

Usage:
    from license_manager.core.azure_devops import AzureDevOpsClient, EntitlementService

    client = AzureDevOpsClient("contoso", pat, dry_run=True)
    service = EntitlementService(client)
    groups = service.list_group_entitlements()
"""
from .client import AzureDevOpsClient, build_session, REQUEST_TIMEOUT
from .entitlements import EntitlementService
from .exceptions import (
    AzureDevOpsError,
    AzureDevOpsAPIError,
    UserEntitlementNotFoundError,
    GroupEntitlementNotFoundError,
)

__all__ = [
    "AzureDevOpsClient",
    "build_session",
    "REQUEST_TIMEOUT",
    "EntitlementService",
    "AzureDevOpsError",
    "AzureDevOpsAPIError",
    "UserEntitlementNotFoundError",
    "GroupEntitlementNotFoundError",
]
