"""script_relay - credentialed relay for Google Apps Script automation.

Holds one operator's OAuth credential and uses it to create, push and run
Apps Script projects on their behalf.
"""

__version__ = "1.0.0"

from script_relay.credential_store import ClientIdentity, Credential, CredentialStore
from script_relay.exceptions import (
    ConfigurationError,
    CredentialStoreError,
    InvalidRequestError,
    InvalidTokenResponseError,
    MissingCodeError,
    NotAuthenticatedError,
    NotInitializedError,
    RelayError,
    RemoteOperationError,
    TokenExchangeError,
)
from script_relay.gateway import Gateway
from script_relay.oauth import AuthorizationFlow
from script_relay.status import StatusReporter
from script_relay.token_manager import TokenManager

__all__ = [
    "AuthorizationFlow",
    "ClientIdentity",
    "ConfigurationError",
    "Credential",
    "CredentialStore",
    "CredentialStoreError",
    "Gateway",
    "InvalidRequestError",
    "InvalidTokenResponseError",
    "MissingCodeError",
    "NotAuthenticatedError",
    "NotInitializedError",
    "RelayError",
    "RemoteOperationError",
    "StatusReporter",
    "TokenExchangeError",
    "TokenManager",
    "__version__",
]
