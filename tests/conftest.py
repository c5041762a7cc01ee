"""Shared test fixtures for the relay."""

import json
from pathlib import Path

import pytest

from script_relay.config import Settings
from script_relay.credential_store import CredentialStore
from script_relay.token_manager import TokenManager
from tests.fakes import CLIENT_SECRETS, create_fake_credentials_class, fake_request_factory


@pytest.fixture
def identity_path(tmp_path: Path) -> Path:
    path = tmp_path / "client_credentials.json"
    path.write_text(json.dumps(CLIENT_SECRETS))
    return path


@pytest.fixture
def token_path(tmp_path: Path) -> Path:
    return tmp_path / "token.json"


@pytest.fixture
def store(identity_path: Path, token_path: Path) -> CredentialStore:
    return CredentialStore(token_path=token_path, identity_path=identity_path)


@pytest.fixture
def credentials_class() -> type:
    return create_fake_credentials_class()


@pytest.fixture
def tokens(store: CredentialStore, credentials_class: type) -> TokenManager:
    """Initialized manager with no stored credential."""
    manager = TokenManager(
        store,
        credentials_class=credentials_class,
        request_factory=fake_request_factory,
    )
    manager.initialize()
    return manager


@pytest.fixture
def settings(identity_path: Path, token_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        google_client_credentials_path=identity_path,
        token_path=token_path,
    )
