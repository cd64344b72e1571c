# OAuth 2.1 protocol errors.
# Created: 2026-10-19

from __future__ import annotations

INVALID_REQUEST = "invalid_request"
INVALID_CLIENT = "invalid_client"
INVALID_GRANT = "invalid_grant"
UNAUTHORIZED_CLIENT = "unauthorized_client"
ACCESS_DENIED = "access_denied"
UNSUPPORTED_RESPONSE_TYPE = "unsupported_response_type"
INVALID_SCOPE = "invalid_scope"
UNSUPPORTED_GRANT_TYPE = "unsupported_grant_type"
SERVER_ERROR = "server_error"


class OAuthError(Exception):
    """Protocol error returned to the client as JSON or as redirect query params.

    ``redirectable`` is False for errors found before the redirect_uri has been
    confirmed against the client registration; those must be shown directly.
    """

    def __init__(
        self,
        error: str,
        description: str = "",
        *,
        status_code: int = 400,
        redirectable: bool = True,
    ):
        super().__init__(f"{error}: {description}" if description else error)
        self.error = error
        self.description = description
        self.status_code = status_code
        self.redirectable = redirectable

    def to_dict(self) -> dict[str, str]:
        body = {"error": self.error}
        if self.description:
            body["error_description"] = self.description
        return body
