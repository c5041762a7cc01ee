"""Custom exceptions for the script relay.

Every error carries a `kind` (the class name) and the HTTP status code the
API layer answers with, so failures can be rendered as structured bodies.
"""

from __future__ import annotations

from typing import Any


class RelayError(Exception):
    """Base exception for all relay errors."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict[str, Any]:
        """Structured description for API responses."""
        return {"error": self.kind, "detail": self.message}


class ConfigurationError(RelayError):
    """Raised when the client identity is missing or malformed."""

    def __init__(self, message: str, missing_field: str | None = None) -> None:
        super().__init__(message)
        self.missing_field = missing_field

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.missing_field:
            data["field"] = self.missing_field
        return data


class NotInitializedError(RelayError):
    """Raised when the token manager has no client identity loaded."""

    def __init__(self, message: str = "Auth not initialized") -> None:
        super().__init__(message)


class NotAuthenticatedError(RelayError):
    """Raised when no usable credential exists. Resolve via /authorize."""

    def __init__(self, message: str = "Not authenticated. Complete the authorization flow.") -> None:
        super().__init__(message)


class InvalidRequestError(RelayError):
    """Raised when a caller omits a required parameter."""

    status_code = 400

    def __init__(self, field: str, message: str | None = None) -> None:
        super().__init__(message or f"Missing required field: {field}")
        self.field = field

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "field": self.field}


class MissingCodeError(InvalidRequestError):
    """Raised when the authorization callback has no code."""

    def __init__(self) -> None:
        super().__init__("code", "Authorization code required")


class TokenExchangeError(RelayError):
    """Raised when the authorization code could not be exchanged."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"Failed to get access token: {reason}")
        self.reason = reason


class InvalidTokenResponseError(RelayError):
    """Raised when the token endpoint answers without an access token."""

    def __init__(self, message: str = "No access token received from Google OAuth") -> None:
        super().__init__(message)


class CredentialStoreError(RelayError):
    """Raised when the persisted credential file cannot be read or parsed."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Invalid credential file {path}: {reason}")
        self.path = path
        self.reason = reason


class RemoteOperationError(RelayError):
    """Raised when a privileged call fails after authentication succeeded."""

    def __init__(
        self,
        operation: str,
        parameters: dict[str, Any],
        reason: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(f"{operation} failed: {reason}")
        self.operation = operation
        self.parameters = parameters
        self.reason = reason
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        data = {
            **super().to_dict(),
            "operation": self.operation,
            "parameters": self.parameters,
            "reason": self.reason,
        }
        # Script exceptions carry the platform's error object (type, stack)
        if self.details:
            data["details"] = self.details
        return data
