"""Exception hierarchy for the FuelSync dashboard."""


class FuelSyncError(Exception):
    """Base exception for all dashboard errors."""


class ApiError(FuelSyncError):
    """Backend returned an error response (non-2xx)."""

    def __init__(self, message, *, status_code=500, code=None, details=None, endpoint=""):
        self.message = message
        self.status_code = status_code
        self.code = code
        self.details = details or []
        self.endpoint = endpoint
        super().__init__(message)


class NetworkError(ApiError):
    """Backend could not be reached (connection refused, timeout, DNS)."""

    def __init__(self, message="Network error - unable to connect to server", *, endpoint=""):
        super().__init__(message, status_code=0, code="NETWORK_ERROR", endpoint=endpoint)


class AuthExpiredError(ApiError):
    """Token rejected by the backend (HTTP 401).

    The app-level handler catches this, logs the user out and sends them
    back to the login page.
    """


class ValidationError(FuelSyncError):
    def __init__(self, messages):
        if isinstance(messages, str):
            messages = [messages]
        self.messages = list(messages)
        super().__init__("; ".join(self.messages))
