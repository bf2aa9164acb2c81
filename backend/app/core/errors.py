############################################################
#
# switchyard - Messages API Translation Gateway
#
# errors.py: Gateway error taxonomy with status codes
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Gateway error types.

Every error carries the HTTP status it maps to and the Messages API error
``type`` string. Errors raised before the downstream response is committed are
rendered as ordinary JSON error responses; errors discovered while streaming
are folded into a single ``error`` stream event by the relay.
"""

from typing import Any, Dict, Optional


class GatewayError(Exception):
    """Base exception for gateway errors."""

    status_code: int = 500
    error_type: str = "api_error"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_type: Optional[str] = None,
        provider: Optional[str] = None,
    ):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_type is not None:
            self.error_type = error_type
        self.provider = provider
        super().__init__(message)

    def to_body(self) -> Dict[str, Any]:
        """Render as a Messages API error body."""
        return {
            "type": "error",
            "error": {"type": self.error_type, "message": self.message},
        }


class InvalidRequestError(GatewayError):
    """Raised when the inbound body is not a valid Messages request."""

    status_code = 400
    error_type = "invalid_request_error"


class UnknownProviderError(GatewayError):
    """Raised when a model string names a provider outside the known set."""

    status_code = 400
    error_type = "invalid_request_error"

    def __init__(self, hint: str):
        super().__init__(f"Unknown provider '{hint}'")
        self.hint = hint


class MissingCredentialError(GatewayError):
    """Raised when the resolved provider has no credential configured."""

    status_code = 401
    error_type = "authentication_error"


class UpstreamTransportError(GatewayError):
    """Connection refused/reset or timeout talking to a backend."""

    status_code = 502
    error_type = "api_error"


class UpstreamProtocolError(GatewayError):
    """Backend sent a payload the translator could not decode."""

    status_code = 502
    error_type = "api_error"


class UpstreamStatusError(GatewayError):
    """Backend answered with an HTTP error status."""

    def __init__(self, message: str, status_code: int, provider: Optional[str] = None):
        super().__init__(
            message,
            status_code=status_code,
            error_type=error_type_for_status(status_code),
            provider=provider,
        )


class DownstreamDisconnect(Exception):
    """Caller went away mid-stream. Internal only; never reported."""


_STATUS_ERROR_TYPES = {
    400: "invalid_request_error",
    401: "authentication_error",
    402: "billing_error",
    403: "permission_error",
    404: "not_found_error",
    408: "timeout_error",
    413: "request_too_large",
    429: "rate_limit_error",
    529: "overloaded_error",
}


def error_type_for_status(status_code: int) -> str:
    """Map an upstream HTTP status to a Messages API error type."""
    if status_code in _STATUS_ERROR_TYPES:
        return _STATUS_ERROR_TYPES[status_code]
    if status_code == 503:
        return "overloaded_error"
    if 400 <= status_code < 500:
        return "invalid_request_error"
    return "api_error"
