"""Low-level HTTP client for Microsoft Graph.

Handles the client credentials flow, token refresh and the dry-run switch.
"""
from __future__ import annotations
import logging
import os
from datetime import datetime, timedelta
from typing import Optional, Dict, Any

import requests

from ..azure_devops.client import build_session
from .exceptions import GraphAPIError, GraphAuthenticationError

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 100
MAX_RETRIES = 3
DEFAULT_AUTHORITY_URL = "https://login.microsoftonline.com"
DEFAULT_GRAPH_URL = "https://graph.microsoft.com"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"
# Refresh this long before the token actually expires
TOKEN_REFRESH_LEEWAY = timedelta(seconds=60)


class GraphClient:
    """HTTP client for Microsoft Graph with automatic token management.

    Usage:
        client = GraphClient(tenant_id, client_id, client_secret)
        response = client.get("/v1.0/users/alice@contoso.com")
    """

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        authority_url: Optional[str] = None,
        api_url: Optional[str] = None,
        dry_run: bool = False,
        session: Optional[requests.Session] = None,
    ):
        """Initialize Graph client.

        Args:
            tenant_id: Directory (tenant) id
            client_id: Application (client) id of the app registration
            client_secret: Client secret of the app registration
            authority_url: OAuth authority (defaults to GRAPH_AUTHORITY_URL env var)
            api_url: Graph base URL (defaults to GRAPH_API_URL env var)
            dry_run: Skip every mutating request
            session: Optional pre-configured requests session
        """
        self.tenant_id = tenant_id
        self.client_id = client_id
        self._client_secret = client_secret
        self.authority_url = (authority_url or os.environ.get("GRAPH_AUTHORITY_URL", DEFAULT_AUTHORITY_URL)).rstrip("/")
        self.api_url = (api_url or os.environ.get("GRAPH_API_URL", DEFAULT_GRAPH_URL)).rstrip("/")
        self.dry_run = dry_run
        self.session = session or build_session(MAX_RETRIES)
        self._token: Optional[str] = None
        self._token_expires_at: Optional[datetime] = None

    def authenticate(self) -> str:
        """Fetch an application token using the client credentials flow.

        Raises:
            GraphAuthenticationError: If the authority rejects the credentials
        """
        url = f"{self.authority_url}/{self.tenant_id}/oauth2/v2.0/token"
        data = {
            "client_id": self.client_id,
            "client_secret": self._client_secret,
            "scope": GRAPH_SCOPE,
            "grant_type": "client_credentials",
        }
        resp = self.session.post(url, data=data, timeout=REQUEST_TIMEOUT)
        if resp.status_code != 200:
            raise GraphAuthenticationError(f"[{resp.status_code}] {url}: {resp.text}")
        body = resp.json()
        self._token = body["access_token"]
        expires_in = int(body.get("expires_in", 3600))
        self._token_expires_at = datetime.now() + timedelta(seconds=expires_in)
        return self._token

    def _ensure_authenticated(self) -> None:
        """Ensure we have a valid token, refreshing if necessary."""
        if not self._token or not self._token_expires_at:
            self.authenticate()
        elif datetime.now() >= self._token_expires_at - TOKEN_REFRESH_LEEWAY:
            self.authenticate()

    def get(self, path: str, params: Optional[Dict] = None) -> requests.Response:
        """Execute GET request with automatic authentication.

        Raises:
            GraphAPIError: On HTTP error
        """
        return self._request("GET", path, params=params)

    def delete(self, path: str) -> Optional[requests.Response]:
        """Execute DELETE request. Returns None in dry-run mode."""
        if self.dry_run:
            logger.info("[dry-run] Skipping DELETE %s%s", self.api_url, path)
            return None
        return self._request("DELETE", path)

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        self._ensure_authenticated()
        url = f"{self.api_url}{path}"
        headers = {"Authorization": f"Bearer {self._token}", "Accept": "application/json"}
        resp = self.session.request(method, url, headers=headers, timeout=REQUEST_TIMEOUT, **kwargs)
        self._handle_error(resp)
        return resp

    def _handle_error(self, resp: requests.Response) -> None:
        """Raise GraphAPIError carrying the Graph error code when present."""
        if resp.status_code < 400:
            return
        error_code = None
        message = resp.text
        try:
            error = (resp.json() or {}).get("error") or {}
            error_code = error.get("code")
            message = error.get("message") or message
        except ValueError:
            pass
        raise GraphAPIError(resp.status_code, message, resp.url, error_code)
