"""Durable storage for the client identity and the granted credential.

The identity (client id, secret, redirect address) is provided by the
operator out of band, either inline in configuration or as a Google client
secrets file. The credential is written to a JSON token file that is
overwritten wholesale whenever a new token set is obtained.
"""

from __future__ import annotations

import json
import stat
from collections.abc import Mapping
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from script_relay.exceptions import ConfigurationError, CredentialStoreError


@dataclass(frozen=True)
class ClientIdentity:
    """OAuth client identity. Immutable for the lifetime of the process."""

    client_id: str
    client_secret: str
    redirect_uri: str


@dataclass(frozen=True)
class Credential:
    """Granted OAuth token set.

    Attributes:
        access_token: Bearer token for API calls, None once dropped.
        refresh_token: Long-lived token used to mint new access tokens.
        expiry: Timezone-aware UTC expiry of the access token, if known.
        scopes: Scopes granted to the token.
    """

    access_token: str | None
    refresh_token: str | None
    expiry: datetime | None = None
    scopes: tuple[str, ...] = ()

    def is_expired(self, buffer_seconds: int = 60) -> bool:
        """Check if the access token is expired or about to expire."""
        if self.expiry is None:
            return False
        return datetime.now(UTC) >= self.expiry - timedelta(seconds=buffer_seconds)

    def without_access_token(self) -> Credential:
        """Return a copy that keeps the refresh token but drops the access token."""
        return replace(self, access_token=None, expiry=None)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the persisted record format."""
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expiry": self.expiry.isoformat() if self.expiry else None,
            "scopes": list(self.scopes),
            "token_type": "Bearer",
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Credential:
        """Create Credential from a persisted record.

        Also reads the legacy token file layout, which stores `expiry_date` in
        epoch milliseconds and `scope` as a space separated string.
        """
        if not isinstance(data, Mapping):
            raise ValueError("credential record must be a JSON object")

        expiry: datetime | None = None
        if data.get("expiry"):
            expiry = datetime.fromisoformat(data["expiry"])
            if expiry.tzinfo is None:
                expiry = expiry.replace(tzinfo=UTC)
        elif data.get("expiry_date"):
            expiry = datetime.fromtimestamp(float(data["expiry_date"]) / 1000, tz=UTC)

        return cls(
            access_token=data.get("access_token") or None,
            refresh_token=data.get("refresh_token") or None,
            expiry=expiry,
            scopes=_parse_scopes(data.get("scopes", data.get("scope"))),
        )

    @classmethod
    def from_token_response(
        cls, tokens: Mapping[str, Any], previous: Credential | None = None
    ) -> Credential:
        """Create Credential from an OAuth token endpoint response.

        Google omits the refresh token when consent was already granted, in
        which case the previously held refresh token is kept.
        """
        expiry: datetime | None = None
        if tokens.get("expires_at"):
            expiry = datetime.fromtimestamp(float(tokens["expires_at"]), tz=UTC)
        elif tokens.get("expires_in"):
            expiry = datetime.now(UTC) + timedelta(seconds=int(tokens["expires_in"]))

        refresh_token = tokens.get("refresh_token") or None
        if refresh_token is None and previous is not None:
            refresh_token = previous.refresh_token

        return cls(
            access_token=tokens.get("access_token") or None,
            refresh_token=refresh_token,
            expiry=expiry,
            scopes=_parse_scopes(tokens.get("scope", tokens.get("scopes"))),
        )


def _parse_scopes(value: Any) -> tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        return tuple(value.split())
    return tuple(str(s) for s in value)


class CredentialStore:
    """File-backed store for the client identity and the credential.

    Args:
        token_path: Where the credential record is persisted.
        identity_path: Google client secrets file.
        inline_identity: Client secrets JSON text; wins over identity_path.
        redirect_uri: Callback address overriding the file's redirect_uris.
    """

    def __init__(
        self,
        token_path: str | Path,
        identity_path: str | Path | None = None,
        inline_identity: str | None = None,
        redirect_uri: str | None = None,
    ) -> None:
        self._token_path = Path(token_path)
        self._identity_path = Path(identity_path) if identity_path else None
        self._inline_identity = inline_identity or None
        self._redirect_uri = redirect_uri or None

    @property
    def token_path(self) -> Path:
        return self._token_path

    def identity_present(self) -> bool:
        """Check whether an identity source is configured and exists."""
        if self._inline_identity:
            return True
        return self._identity_path is not None and self._identity_path.exists()

    def credential_present(self) -> bool:
        return self._token_path.exists()

    # =========================================================================
    # Client Identity
    # =========================================================================

    def load_identity(self) -> ClientIdentity:
        """Load and validate the client identity.

        Raises:
            ConfigurationError: If the identity is missing, unparseable, or
                lacks a required field (named in `missing_field`).
        """
        data = self._read_identity_json()

        section = data.get("installed") or data.get("web")
        if not isinstance(section, dict):
            found = ", ".join(sorted(data)) or "none"
            raise ConfigurationError(
                f"Invalid credentials format: expected an 'installed' or 'web' section "
                f"(found keys: {found})",
                missing_field="installed",
            )

        client_id = section.get("client_id")
        client_secret = section.get("client_secret")
        redirect_uris = section.get("redirect_uris") or []
        if not isinstance(redirect_uris, list):
            raise ConfigurationError(
                "Client identity field redirect_uris must be a list of URLs",
                missing_field="redirect_uris",
            )
        redirect_uri = self._redirect_uri or (redirect_uris[0] if redirect_uris else None)

        for name, value in (
            ("client_id", client_id),
            ("client_secret", client_secret),
            ("redirect_uris", redirect_uri),
        ):
            if not value or not isinstance(value, str):
                raise ConfigurationError(
                    f"Client identity is missing required field: {name}",
                    missing_field=name,
                )

        return ClientIdentity(
            client_id=client_id,
            client_secret=client_secret,
            redirect_uri=redirect_uri,
        )

    def _read_identity_json(self) -> dict[str, Any]:
        if self._inline_identity:
            source = "GOOGLE_CLIENT_CREDENTIALS"
            text = self._inline_identity
        else:
            if self._identity_path is None or not self._identity_path.exists():
                raise ConfigurationError(
                    f"Client credentials file not found: {self._identity_path}. "
                    "Download OAuth 2.0 credentials from Google Cloud Console."
                )
            source = str(self._identity_path)
            try:
                text = self._identity_path.read_text(encoding="utf-8")
            except OSError as e:
                raise ConfigurationError(f"Cannot read {source}: {e}") from e

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"{source} is not valid JSON: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"{source} must contain a JSON object")
        return data

    # =========================================================================
    # Credential
    # =========================================================================

    def load_credential(self) -> Credential | None:
        """Load the persisted credential, or None if no token file exists.

        Raises:
            CredentialStoreError: If the token file exists but is unreadable.
        """
        if not self._token_path.exists():
            return None

        try:
            data = json.loads(self._token_path.read_text(encoding="utf-8"))
            return Credential.from_dict(data)
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise CredentialStoreError(str(self._token_path), str(e)) from e

    def save_credential(self, credential: Credential) -> None:
        """Overwrite the token file with owner-only permissions.

        Raises:
            OSError: If the file cannot be written.
        """
        self._token_path.parent.mkdir(parents=True, exist_ok=True)

        # Write to temp file, set permissions, then rename atomically
        temp_path = self._token_path.with_suffix(".tmp")
        temp_path.write_text(json.dumps(credential.to_dict(), indent=2), encoding="utf-8")
        temp_path.chmod(stat.S_IRUSR | stat.S_IWUSR)  # 0600
        temp_path.replace(self._token_path)
