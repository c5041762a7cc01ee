"""Unit tests for the credential store."""

import json
import stat
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from script_relay.credential_store import Credential, CredentialStore
from script_relay.exceptions import ConfigurationError, CredentialStoreError
from tests.fakes import CLIENT_SECRETS, valid_credential


class TestCredential:
    """Tests for Credential dataclass."""

    def test_is_expired_with_future_expiry(self) -> None:
        """Credential with future expiry is not expired."""
        credential = valid_credential(expiry=datetime.now(UTC) + timedelta(hours=1))
        assert credential.is_expired() is False

    def test_is_expired_with_past_expiry(self) -> None:
        credential = valid_credential(expiry=datetime.now(UTC) - timedelta(seconds=5))
        assert credential.is_expired() is True

    def test_is_expired_respects_buffer(self) -> None:
        """Credential expiring within buffer period counts as expired."""
        credential = valid_credential(expiry=datetime.now(UTC) + timedelta(seconds=30))
        assert credential.is_expired(buffer_seconds=60) is True
        assert credential.is_expired(buffer_seconds=10) is False

    def test_unknown_expiry_is_not_expired(self) -> None:
        assert valid_credential(expiry=None).is_expired() is False

    def test_without_access_token_keeps_refresh_token(self) -> None:
        dropped = valid_credential().without_access_token()
        assert dropped.access_token is None
        assert dropped.refresh_token == "stored-refresh-token"

    def test_from_dict_reads_legacy_token_format(self) -> None:
        """Legacy token files with epoch-millisecond expiry are still readable."""
        credential = Credential.from_dict(
            {
                "access_token": "ya29.legacy",
                "refresh_token": "1//legacy",
                "scope": "https://www.googleapis.com/auth/drive https://www.googleapis.com/auth/spreadsheets",
                "token_type": "Bearer",
                "expiry_date": 1700000000000,
            }
        )
        assert credential.access_token == "ya29.legacy"
        assert credential.expiry == datetime.fromtimestamp(1700000000, tz=UTC)
        assert credential.scopes == (
            "https://www.googleapis.com/auth/drive",
            "https://www.googleapis.com/auth/spreadsheets",
        )

    def test_from_token_response_uses_expires_at(self) -> None:
        credential = Credential.from_token_response(
            {"access_token": "a", "refresh_token": "r", "expires_at": 1700000000.0, "scope": ["s1"]}
        )
        assert credential.expiry == datetime.fromtimestamp(1700000000, tz=UTC)
        assert credential.scopes == ("s1",)

    def test_from_token_response_keeps_previous_refresh_token(self) -> None:
        previous = valid_credential(refresh_token="old-refresh")
        credential = Credential.from_token_response({"access_token": "new"}, previous=previous)
        assert credential.refresh_token == "old-refresh"


class TestClientIdentity:
    def test_load_from_file(self, store: CredentialStore) -> None:
        identity = store.load_identity()
        assert identity.client_id == CLIENT_SECRETS["installed"]["client_id"]
        assert identity.client_secret == "GOCSPX-test-secret"
        assert identity.redirect_uri == "http://localhost"

    def test_web_section_is_accepted(self, tmp_path: Path) -> None:
        inline = json.dumps({"web": CLIENT_SECRETS["installed"]})
        store = CredentialStore(token_path=tmp_path / "t.json", inline_identity=inline)
        assert store.load_identity().client_secret == "GOCSPX-test-secret"

    def test_inline_identity_wins_over_file(self, identity_path: Path, tmp_path: Path) -> None:
        inline = json.dumps({"installed": {**CLIENT_SECRETS["installed"], "client_id": "inline-id"}})
        store = CredentialStore(
            token_path=tmp_path / "t.json", identity_path=identity_path, inline_identity=inline
        )
        assert store.load_identity().client_id == "inline-id"

    def test_redirect_override(self, identity_path: Path, tmp_path: Path) -> None:
        store = CredentialStore(
            token_path=tmp_path / "t.json",
            identity_path=identity_path,
            redirect_uri="https://relay.example.com/callback",
        )
        assert store.load_identity().redirect_uri == "https://relay.example.com/callback"

    def test_missing_file(self, tmp_path: Path) -> None:
        store = CredentialStore(token_path=tmp_path / "t.json", identity_path=tmp_path / "nope.json")
        assert store.identity_present() is False
        with pytest.raises(ConfigurationError, match="not found"):
            store.load_identity()

    def test_invalid_json(self, tmp_path: Path) -> None:
        store = CredentialStore(token_path=tmp_path / "t.json", inline_identity="{not json")
        with pytest.raises(ConfigurationError, match="not valid JSON"):
            store.load_identity()

    def test_missing_section(self, tmp_path: Path) -> None:
        store = CredentialStore(token_path=tmp_path / "t.json", inline_identity='{"other": {}}')
        with pytest.raises(ConfigurationError) as exc_info:
            store.load_identity()
        assert "other" in exc_info.value.message

    @pytest.mark.parametrize("field", ["client_id", "client_secret", "redirect_uris"])
    def test_missing_field_is_named(self, tmp_path: Path, field: str) -> None:
        section = {k: v for k, v in CLIENT_SECRETS["installed"].items() if k != field}
        store = CredentialStore(
            token_path=tmp_path / "t.json", inline_identity=json.dumps({"installed": section})
        )
        with pytest.raises(ConfigurationError) as exc_info:
            store.load_identity()
        assert exc_info.value.missing_field == field
        assert field in exc_info.value.message

    @pytest.mark.parametrize(
        ("field", "value"),
        [
            ("redirect_uris", "http://localhost"),
            ("redirect_uris", {"uri": "http://localhost"}),
            ("redirect_uris", [""]),
            ("redirect_uris", [42]),
            ("client_id", 1234567890),
            ("client_secret", ""),
        ],
    )
    def test_malformed_field_is_rejected(self, tmp_path: Path, field: str, value: object) -> None:
        section = {**CLIENT_SECRETS["installed"], field: value}
        store = CredentialStore(
            token_path=tmp_path / "t.json", inline_identity=json.dumps({"installed": section})
        )
        with pytest.raises(ConfigurationError) as exc_info:
            store.load_identity()
        assert exc_info.value.missing_field == field
        assert field in exc_info.value.message


class TestCredentialPersistence:
    def test_load_without_file_returns_none(self, store: CredentialStore) -> None:
        assert store.credential_present() is False
        assert store.load_credential() is None

    def test_round_trip(self, store: CredentialStore) -> None:
        """load(save(credential)) == credential."""
        credential = valid_credential(
            scopes=(
                "https://www.googleapis.com/auth/script.projects",
                "https://www.googleapis.com/auth/drive",
            )
        )
        store.save_credential(credential)
        assert store.load_credential() == credential

    def test_save_overwrites_wholesale(self, store: CredentialStore, token_path: Path) -> None:
        store.save_credential(valid_credential(access_token="first"))
        store.save_credential(valid_credential(access_token="second", refresh_token=None))

        data = json.loads(token_path.read_text())
        assert data["access_token"] == "second"
        assert data["refresh_token"] is None

    def test_saved_file_is_owner_only(self, store: CredentialStore, token_path: Path) -> None:
        store.save_credential(valid_credential())
        mode = stat.S_IMODE(token_path.stat().st_mode)
        assert mode == stat.S_IRUSR | stat.S_IWUSR
        assert not token_path.with_suffix(".tmp").exists()

    def test_corrupt_file_raises(self, store: CredentialStore, token_path: Path) -> None:
        token_path.write_text("{{{")
        with pytest.raises(CredentialStoreError):
            store.load_credential()

    def test_non_object_file_raises(self, store: CredentialStore, token_path: Path) -> None:
        token_path.write_text("[1, 2]")
        with pytest.raises(CredentialStoreError):
            store.load_credential()
