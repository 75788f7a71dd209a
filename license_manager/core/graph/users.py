"""Directory (Entra ID) user lookups and deletion."""
from __future__ import annotations
import logging
from urllib.parse import quote

from ..models import DirectoryIdentity
from .client import GraphClient
from .exceptions import GraphAPIError

logger = logging.getLogger(__name__)

RESOURCE_NOT_FOUND = "Request_ResourceNotFound"
# signInActivity is only exposed on the beta endpoint
IDENTITY_SELECT = "id,accountEnabled,deletedDateTime,userPrincipalName,signInActivity,createdDateTime"


def _user_path(version: str, principal_name: str) -> str:
    return f"/{version}/users/{quote(principal_name, safe='@')}"


class DirectoryService:
    """Service answering account-validity questions against the directory."""

    def __init__(self, client: GraphClient):
        """Initialize directory service.

        Args:
            client: Graph client with User.Read.All (and User.ReadWrite.All for deletion)
        """
        self.client = client

    @property
    def dry_run(self) -> bool:
        return self.client.dry_run

    def get_identity(self, principal_name: str) -> DirectoryIdentity:
        """Return the directory verdict for one principal name.

        A 404 is a verdict (not found), not an error. Any other failure
        raises GraphAPIError.
        """
        try:
            resp = self.client.get(_user_path("beta", principal_name), params={"$select": IDENTITY_SELECT})
        except GraphAPIError as exc:
            if exc.status_code == 404 or exc.error_code == RESOURCE_NOT_FOUND:
                logger.info("User '%s' cannot be found in the directory.", principal_name)
                return DirectoryIdentity.not_found(principal_name, exc.error_code or RESOURCE_NOT_FOUND)
            raise

        identity = DirectoryIdentity.from_graph(principal_name, resp.json() or {})
        reason = identity.inactive_reason()
        if reason:
            logger.info("User '%s' is inactive: %s.", principal_name, reason)
        return identity

    def delete_identity(self, principal_name: str) -> bool:
        """Delete a user from the directory (soft delete, restorable for 30 days).

        Returns:
            True if the request was sent, False in dry-run mode
        """
        resp = self.client.delete(_user_path("v1.0", principal_name))
        return resp is not None
