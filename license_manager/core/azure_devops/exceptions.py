"""Azure DevOps-specific exceptions for error handling."""


class AzureDevOpsError(Exception):
    """Base exception for all Azure DevOps operations."""
    pass


class AzureDevOpsAPIError(AzureDevOpsError):
    """HTTP error from the Azure DevOps entitlement API.
    
    Attributes:
        status_code: HTTP status code
        message: Error message from response
        endpoint: API endpoint that failed
    """
    
    def __init__(self, status_code: int, message: str, endpoint: str):
        self.status_code = status_code
        self.message = message
        self.endpoint = endpoint
        super().__init__(f"[{status_code}] {endpoint}: {message}")


class UserEntitlementNotFoundError(AzureDevOpsError):
    """User entitlement does not exist in the organization."""
    pass


class GroupEntitlementNotFoundError(AzureDevOpsError):
    """A policy-managed group entitlement is missing from the organization."""
    pass
