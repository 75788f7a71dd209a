"""Low-level HTTP client for the Azure DevOps entitlement API (vsaex).

Handles PAT authentication, retries and the dry-run switch for mutating calls.
"""
from __future__ import annotations
import base64
import logging
import os
from typing import Optional, Dict, Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .exceptions import AzureDevOpsAPIError

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 100
MAX_RETRIES = 10
DEFAULT_VSAEX_URL = "https://vsaex.dev.azure.com"


def build_session(max_retries: int = MAX_RETRIES) -> requests.Session:
    """Return a session that retries throttled and transient failures."""
    retry = Retry(
        total=max_retries,
        backoff_factor=1,
        status_forcelist=(429, 500, 502, 503, 504),
        respect_retry_after_header=True,
        raise_on_status=False,
    )
    session = requests.Session()
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


class AzureDevOpsClient:
    """HTTP client for one Azure DevOps organization.

    Features:
    - Basic authentication with a personal access token
    - Centralized error handling
    - Dry-run mode: POST/PUT/DELETE are logged and skipped

    Usage:
        client = AzureDevOpsClient("contoso", pat)
        response = client.get("_apis/groupentitlements", params={"api-version": "6.0-preview.1"})
    """

    def __init__(
        self,
        organization: str,
        personal_access_token: str,
        base_url: Optional[str] = None,
        dry_run: bool = False,
        session: Optional[requests.Session] = None,
    ):
        """Initialize Azure DevOps client.

        Args:
            organization: Organization name (e.g. "contoso")
            personal_access_token: PAT with Project Collection Administrator rights
            base_url: Entitlement API base URL (defaults to AZURE_DEVOPS_VSAEX_URL env var)
            dry_run: Skip every mutating request
            session: Optional pre-configured requests session
        """
        root = (base_url or os.environ.get("AZURE_DEVOPS_VSAEX_URL", DEFAULT_VSAEX_URL)).rstrip("/")
        self.organization = organization
        self.base_url = f"{root}/{organization}"
        self.dry_run = dry_run
        self.session = session or build_session()
        credentials = base64.b64encode(f"PAT:{personal_access_token}".encode("utf-8")).decode("ascii")
        self._headers = {
            "Authorization": f"Basic {credentials}",
            "Accept": "application/json",
        }

    def get(self, path: str, params: Optional[Dict] = None) -> requests.Response:
        """Execute GET request.

        Raises:
            AzureDevOpsAPIError: On HTTP error
        """
        return self._request("GET", path, params=params)

    def post(self, path: str, json: Any = None, params: Optional[Dict] = None) -> Optional[requests.Response]:
        """Execute POST request. Returns None in dry-run mode."""
        return self._mutate("POST", path, json=json, params=params)

    def put(self, path: str, json: Any = None, params: Optional[Dict] = None) -> Optional[requests.Response]:
        """Execute PUT request. Returns None in dry-run mode."""
        return self._mutate("PUT", path, json=json, params=params)

    def delete(self, path: str, params: Optional[Dict] = None) -> Optional[requests.Response]:
        """Execute DELETE request. Returns None in dry-run mode."""
        return self._mutate("DELETE", path, params=params)

    def url_for(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _mutate(self, method: str, path: str, **kwargs) -> Optional[requests.Response]:
        if self.dry_run:
            logger.info("[dry-run] Skipping %s %s", method, self.url_for(path))
            return None
        return self._request(method, path, **kwargs)

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = self.url_for(path)
        headers = dict(self._headers)
        if kwargs.get("json") is not None:
            headers["Content-Type"] = "application/json"
        resp = self.session.request(method, url, headers=headers, timeout=REQUEST_TIMEOUT, **kwargs)
        self._handle_error(resp)
        return resp

    def _handle_error(self, resp: requests.Response) -> None:
        """Raise AzureDevOpsAPIError if response status indicates an error."""
        if resp.status_code >= 400:
            raise AzureDevOpsAPIError(resp.status_code, resp.text, resp.url)
