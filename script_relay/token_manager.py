"""Token lifecycle management.

TokenManager owns the single in-memory Credential. It hydrates it from the
CredentialStore at startup, adopts new token sets produced by the
authorization flow, and refreshes expired access tokens explicitly before
privileged calls instead of leaving that to the HTTP client.

Dependencies are injected via constructor for testability.
"""

from __future__ import annotations

import functools
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Any

from google.auth.exceptions import RefreshError
from google.auth.exceptions import TransportError as GoogleTransportError
from google.auth.transport import requests as google_requests
from google.oauth2.credentials import Credentials as GoogleCredentials
from loguru import logger

from script_relay.credential_store import ClientIdentity, Credential, CredentialStore
from script_relay.exceptions import (
    CredentialStoreError,
    InvalidTokenResponseError,
    NotAuthenticatedError,
    NotInitializedError,
)
from script_relay.logging import (
    audit_token_adopted,
    audit_token_refresh_failed,
    audit_token_refreshed,
    mask_secret,
)

TOKEN_URI = "https://oauth2.googleapis.com/token"

# Refresh access tokens this many seconds before they expire
EXPIRY_BUFFER_SECONDS = 60

DEFAULT_TIMEOUT = 60.0


@dataclass(frozen=True)
class AdoptionResult:
    """Outcome of adopting a freshly granted credential."""

    credential: Credential
    token_saved: bool


class TokenManager:
    """Owns the OAuth credential and decides whether it is usable.

    Args:
        store: Where the identity is read from and the credential persisted.
        credentials_class: Google credentials class used for refresh
            (injectable for testing).
        request_factory: Factory for the google-auth HTTP request adapter
            (injectable for testing).
        timeout: Seconds allowed for a refresh round trip.
    """

    def __init__(
        self,
        store: CredentialStore,
        credentials_class: type = GoogleCredentials,
        request_factory: Callable[[], Any] = google_requests.Request,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._store = store
        self._credentials_class = credentials_class
        # One adapter (and its requests.Session) for every refresh
        self._http_request = request_factory()
        self._timeout = timeout
        self._identity: ClientIdentity | None = None
        self._credential: Credential | None = None

    @property
    def store(self) -> CredentialStore:
        return self._store

    @property
    def identity(self) -> ClientIdentity | None:
        return self._identity

    @property
    def is_initialized(self) -> bool:
        return self._identity is not None

    @property
    def is_authenticated(self) -> bool:
        """True iff a credential with a usable access token is held."""
        credential = self._credential
        return credential is not None and bool(credential.access_token)

    def initialize(self) -> None:
        """Load the client identity, then hydrate and check any stored credential.

        A missing or unusable stored credential leaves the manager initialized
        but unauthenticated.

        Raises:
            ConfigurationError: If the client identity is missing or malformed.
        """
        self._identity = None
        self._credential = None

        self._identity = self._store.load_identity()
        logger.info(
            "Client identity loaded",
            extra={
                "client_id": mask_secret(self._identity.client_id, 20),
                "redirect_uri": self._identity.redirect_uri,
            },
        )

        try:
            credential = self._store.load_credential()
        except CredentialStoreError as e:
            logger.error("Existing token is unreadable, authorization needed", extra={"error": str(e)})
            return

        if credential is None:
            logger.info("No existing token found, authorization needed")
            return

        self._credential = credential
        logger.info("Existing token loaded", extra={"scopes": list(credential.scopes)})

        try:
            self.fresh_credential()
        except NotAuthenticatedError as e:
            logger.warning("Stored token is not usable, reauthorization needed", extra={"reason": str(e)})
        except GoogleTransportError as e:
            self._credential = credential.without_access_token()
            logger.warning("Could not verify stored token, reauthorization needed", extra={"error": str(e)})
        else:
            logger.info("Token is valid and ready")

    def close(self) -> None:
        """Release the HTTP session used for refreshes."""
        session = getattr(self._http_request, "session", None)
        if session is not None:
            session.close()

    def require_identity(self) -> ClientIdentity:
        if self._identity is None:
            raise NotInitializedError()
        return self._identity

    def current_credential(self) -> Credential:
        """Return the held credential without any network I/O."""
        if self._credential is None:
            raise NotAuthenticatedError()
        return self._credential

    def fresh_credential(self) -> Credential:
        """Return the credential, refreshing the access token first if expired.

        Raises:
            NotAuthenticatedError: If there is no credential, or the refresh
                was rejected (the access token is dropped; the refresh token
                is kept).
            google.auth.exceptions.TransportError: If the token endpoint
                could not be reached.
        """
        credential = self.current_credential()
        if credential.access_token and not credential.is_expired(EXPIRY_BUFFER_SECONDS):
            return credential

        if not credential.refresh_token:
            self._credential = credential.without_access_token()
            raise NotAuthenticatedError("Access token expired and no refresh token is available")

        identity = self.require_identity()
        try:
            refreshed = self._refresh(identity, credential)
        except RefreshError as e:
            audit_token_refresh_failed(str(e))
            self._credential = credential.without_access_token()
            raise NotAuthenticatedError(f"Token refresh rejected: {e}") from e

        self._credential = refreshed
        self._persist(refreshed)
        audit_token_refreshed(refreshed.expiry.isoformat() if refreshed.expiry else None)
        return refreshed

    def mark_access_token_stale(self) -> None:
        """Force a refresh before the next call (the platform rejected the token)."""
        credential = self._credential
        if credential is not None and credential.access_token:
            self._credential = replace(credential, expiry=datetime.now(UTC))

    def adopt_new_credential(self, tokens: Mapping[str, Any]) -> AdoptionResult:
        """Install a token set obtained from the authorization exchange.

        The credential is persisted before returning. A persistence failure is
        logged and reported through `token_saved` but the in-memory
        credential is kept.

        Raises:
            InvalidTokenResponseError: If the response has no access token.
        """
        if not tokens or not tokens.get("access_token"):
            raise InvalidTokenResponseError()

        credential = Credential.from_token_response(tokens, previous=self._credential)
        self._credential = credential
        token_saved = self._persist(credential)

        audit_token_adopted(list(credential.scopes), token_saved)
        return AdoptionResult(credential=credential, token_saved=token_saved)

    def _refresh(self, identity: ClientIdentity, credential: Credential) -> Credential:
        google_creds = self._credentials_class(
            token=credential.access_token,
            refresh_token=credential.refresh_token,
            token_uri=TOKEN_URI,
            client_id=identity.client_id,
            client_secret=identity.client_secret,
        )
        request = functools.partial(self._http_request, timeout=self._timeout)
        google_creds.refresh(request)

        # google-auth reports expiry as a naive UTC datetime
        expiry = google_creds.expiry
        if expiry is not None and expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=UTC)

        return Credential(
            access_token=google_creds.token,
            refresh_token=google_creds.refresh_token or credential.refresh_token,
            expiry=expiry,
            scopes=credential.scopes,
        )

    def _persist(self, credential: Credential) -> bool:
        try:
            self._store.save_credential(credential)
        except OSError:
            logger.exception(
                "Failed to persist credential",
                extra={"token_path": str(self._store.token_path)},
            )
            return False
        logger.info("Credential saved", extra={"token_path": str(self._store.token_path)})
        return True
