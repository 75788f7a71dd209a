"""Microsoft Graph exceptions."""


class GraphError(Exception):
    """Base exception for all Microsoft Graph operations."""
    pass


class GraphAPIError(GraphError):
    """HTTP error from Microsoft Graph.
    
    Attributes:
        status_code: HTTP status code
        message: Error message from response
        endpoint: API endpoint that failed
        error_code: Graph error code (e.g. Request_ResourceNotFound), if any
    """
    
    def __init__(self, status_code: int, message: str, endpoint: str, error_code: str | None = None):
        self.status_code = status_code
        self.message = message
        self.endpoint = endpoint
        self.error_code = error_code
        super().__init__(f"[{status_code}] {endpoint}: {message}")


class GraphAuthenticationError(GraphError):
    """Client credentials flow against the directory failed."""
    pass
