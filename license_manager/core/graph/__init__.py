"""Microsoft Graph client library for directory lookups.

Architecture:
- client.py: HTTP client with client credentials flow and auto-refresh
- users.py: identity verdicts and deletion
- exceptions.py: typed exceptions for error handling
"""
from .client import GraphClient, REQUEST_TIMEOUT
from .users import DirectoryService, RESOURCE_NOT_FOUND
from .exceptions import GraphError, GraphAPIError, GraphAuthenticationError

__all__ = [
    "GraphClient",
    "REQUEST_TIMEOUT",
    "DirectoryService",
    "RESOURCE_NOT_FOUND",
    "GraphError",
    "GraphAPIError",
    "GraphAuthenticationError",
]
