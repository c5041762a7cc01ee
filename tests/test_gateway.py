"""Unit tests for the authenticated operation gateway."""

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from google.auth.exceptions import TransportError as GoogleTransportError

from script_relay.credential_store import CredentialStore
from script_relay.exceptions import (
    InvalidRequestError,
    NotAuthenticatedError,
    RemoteOperationError,
)
from script_relay.gateway import Gateway, redact_parameters
from script_relay.token_manager import TokenManager
from script_relay.transport import APIError, AuthenticationError, ScriptFile, TransportError
from tests.fakes import (
    FakeTransportFactory,
    create_fake_credentials_class,
    fake_request_factory,
    valid_credential,
    write_credential,
)


@pytest.fixture
def factory() -> FakeTransportFactory:
    return FakeTransportFactory()


@pytest.fixture
def authed_tokens(store: CredentialStore, token_path: Path) -> TokenManager:
    write_credential(token_path, valid_credential())
    manager = TokenManager(
        store,
        credentials_class=create_fake_credentials_class(),
        request_factory=fake_request_factory,
    )
    manager.initialize()
    return manager


@pytest.fixture
def gateway(authed_tokens: TokenManager, factory: FakeTransportFactory) -> Gateway:
    return Gateway(authed_tokens, transport_factory=factory)


class TestAuthenticationGate:
    @pytest.mark.asyncio
    async def test_unauthenticated_makes_no_remote_call(
        self, tokens: TokenManager, factory: FakeTransportFactory
    ) -> None:
        gateway = Gateway(tokens, transport_factory=factory)
        with pytest.raises(NotAuthenticatedError):
            await gateway.create_script({"spreadsheetId": "sheet-1", "title": "Helper"})

        assert factory.access_tokens == []
        assert factory.transport.calls == []

    @pytest.mark.asyncio
    async def test_refresh_before_call(
        self, store: CredentialStore, token_path: Path, factory: FakeTransportFactory
    ) -> None:
        """An access token expiring within the buffer is refreshed first."""
        write_credential(token_path, valid_credential())
        manager = TokenManager(
            store,
            credentials_class=create_fake_credentials_class(token="just-refreshed"),
            request_factory=fake_request_factory,
        )
        manager.initialize()
        gateway = Gateway(manager, transport_factory=factory)

        manager.mark_access_token_stale()
        await gateway.run_function({"scriptId": "s", "function": "main"})

        assert factory.access_tokens == ["just-refreshed"]

    @pytest.mark.asyncio
    async def test_rejected_refresh_is_not_authenticated(
        self, store: CredentialStore, token_path: Path, factory: FakeTransportFactory
    ) -> None:
        write_credential(token_path, valid_credential())
        manager = TokenManager(
            store,
            credentials_class=create_fake_credentials_class(should_fail=True),
            request_factory=fake_request_factory,
        )
        manager.initialize()
        manager.mark_access_token_stale()

        with pytest.raises(NotAuthenticatedError):
            await Gateway(manager, transport_factory=factory).run_function(
                {"scriptId": "s", "function": "main"}
            )
        assert manager.is_authenticated is False
        assert factory.transport.calls == []

    @pytest.mark.asyncio
    async def test_unreachable_token_endpoint_is_remote_failure(
        self, store: CredentialStore, token_path: Path, factory: FakeTransportFactory
    ) -> None:
        write_credential(
            token_path, valid_credential(expiry=datetime.now(UTC) + timedelta(hours=1))
        )
        manager = TokenManager(
            store,
            credentials_class=create_fake_credentials_class(
                should_fail=True, fail_with=GoogleTransportError("dns failure")
            ),
            request_factory=fake_request_factory,
        )
        manager.initialize()
        manager.mark_access_token_stale()

        with pytest.raises(RemoteOperationError) as exc_info:
            await Gateway(manager, transport_factory=factory).run_function(
                {"scriptId": "s", "function": "main"}
            )
        assert exc_info.value.operation == "run-function"
        assert "Token refresh failed" in exc_info.value.reason


class TestCreateScript:
    @pytest.mark.asyncio
    async def test_creates_bound_project(
        self, gateway: Gateway, factory: FakeTransportFactory
    ) -> None:
        result = await gateway.create_script({"spreadsheetId": "sheet-1", "title": "Helper"})

        assert result.script_id == "new-script-id"
        assert result.url == "https://script.google.com/d/new-script-id/edit"
        assert result.to_response() == {
            "scriptId": "new-script-id",
            "url": "https://script.google.com/d/new-script-id/edit",
            "success": True,
        }
        assert factory.transport.calls == [
            ("create_project", {"title": "Helper", "parent_id": "sheet-1"})
        ]
        assert factory.access_tokens == ["stored-access-token"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("params", "field"),
        [
            ({"title": "Helper"}, "spreadsheetId"),
            ({"spreadsheetId": "sheet-1"}, "title"),
            ({"spreadsheetId": "", "title": "Helper"}, "spreadsheetId"),
        ],
    )
    async def test_missing_field_is_named(
        self, gateway: Gateway, factory: FakeTransportFactory, params: dict, field: str
    ) -> None:
        with pytest.raises(InvalidRequestError) as exc_info:
            await gateway.create_script(params)

        assert exc_info.value.field == field
        assert exc_info.value.status_code == 400
        assert factory.transport.calls == []

    @pytest.mark.asyncio
    async def test_missing_script_id_in_response(
        self, gateway: Gateway, factory: FakeTransportFactory
    ) -> None:
        factory.transport.script_id = ""
        with pytest.raises(RemoteOperationError, match="scriptId"):
            await gateway.create_script({"spreadsheetId": "sheet-1", "title": "Helper"})


class TestPushContent:
    @pytest.mark.asyncio
    async def test_pushes_files(self, gateway: Gateway, factory: FakeTransportFactory) -> None:
        result = await gateway.push_content(
            {
                "scriptId": "script-1",
                "files": [
                    {"name": "Code", "type": "SERVER_JS", "source": "function main() {}"},
                    {"name": "appsscript", "type": "JSON", "content": "{}"},
                ],
            }
        )

        assert result.to_response() == {"success": True, "updatedFiles": 2}
        ((name, kwargs),) = factory.transport.calls
        assert name == "update_content"
        assert kwargs["script_id"] == "script-1"
        assert kwargs["files"] == [
            ScriptFile(name="Code", type="SERVER_JS", source="function main() {}"),
            ScriptFile(name="appsscript", type="JSON", source="{}"),
        ]

    @pytest.mark.asyncio
    async def test_empty_push_still_calls_remote(
        self, gateway: Gateway, factory: FakeTransportFactory
    ) -> None:
        params = {"scriptId": "script-1", "files": []}
        first = await gateway.push_content(params)
        second = await gateway.push_content(params)

        assert first.updated_files == 0
        assert second.updated_files == 0
        assert len(factory.transport.calls) == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("params", "field"),
        [
            ({"files": []}, "scriptId"),
            ({"scriptId": "s"}, "files"),
            ({"scriptId": "s", "files": "Code.gs"}, "files"),
            ({"scriptId": "s", "files": [{"type": "SERVER_JS", "source": ""}]}, "files[0].name"),
            ({"scriptId": "s", "files": [{"name": "Code", "type": "SERVER_JS"}]}, "files[0].source"),
            ({"scriptId": "s", "files": ["Code"]}, "files[0]"),
        ],
    )
    async def test_invalid_files(
        self, gateway: Gateway, factory: FakeTransportFactory, params: dict, field: str
    ) -> None:
        with pytest.raises(InvalidRequestError) as exc_info:
            await gateway.push_content(params)
        assert exc_info.value.field == field
        assert factory.transport.calls == []


class TestRunFunction:
    @pytest.mark.asyncio
    async def test_parameters_default_to_empty_list(
        self, gateway: Gateway, factory: FakeTransportFactory
    ) -> None:
        result = await gateway.run_function({"scriptId": "script-1", "function": "main"})

        assert result.to_response()["success"] is True
        assert result.response["result"] == "ok"
        ((_, kwargs),) = factory.transport.calls
        assert kwargs["parameters"] == []
        assert kwargs["dev_mode"] is True

    @pytest.mark.asyncio
    async def test_parameters_are_forwarded(
        self, gateway: Gateway, factory: FakeTransportFactory
    ) -> None:
        await gateway.run_function(
            {"scriptId": "script-1", "function": "add", "parameters": [1, {"a": "b"}]}
        )
        ((_, kwargs),) = factory.transport.calls
        assert kwargs["parameters"] == [1, {"a": "b"}]

    @pytest.mark.asyncio
    async def test_parameters_must_be_a_list(self, gateway: Gateway) -> None:
        with pytest.raises(InvalidRequestError) as exc_info:
            await gateway.run_function({"scriptId": "s", "function": "f", "parameters": "x"})
        assert exc_info.value.field == "parameters"

    @pytest.mark.asyncio
    async def test_script_exception_is_remote_failure(
        self, gateway: Gateway, factory: FakeTransportFactory
    ) -> None:
        factory.transport.run_error = {
            "code": 3,
            "message": "ScriptError",
            "details": [{"errorType": "TypeError", "errorMessage": "x is undefined"}],
        }
        with pytest.raises(RemoteOperationError) as exc_info:
            await gateway.run_function({"scriptId": "s", "function": "main"})

        assert exc_info.value.operation == "run-function"
        assert exc_info.value.reason == "TypeError: x is undefined"
        assert exc_info.value.details == factory.transport.run_error
        assert exc_info.value.to_dict()["details"]["details"][0]["errorType"] == "TypeError"


class TestRemoteFailures:
    @pytest.mark.asyncio
    async def test_timeout_carries_operation_and_redacted_params(
        self, gateway: Gateway, factory: FakeTransportFactory
    ) -> None:
        factory.transport.fail_with = TransportError("Request timed out after 60s")
        params = {
            "scriptId": "script-1",
            "files": [{"name": "Code", "type": "SERVER_JS", "source": "var apiToken = 'x';"}],
        }

        with pytest.raises(RemoteOperationError) as exc_info:
            await gateway.push_content(params)

        error = exc_info.value
        assert error.operation == "push-content"
        assert error.reason == "Request timed out after 60s"
        assert error.parameters["scriptId"] == "script-1"
        assert error.parameters["files"][0]["source"] == "<19 chars>"
        assert error.to_dict()["error"] == "RemoteOperationError"
        assert "details" not in error.to_dict()
        assert factory.transport.closed == 1

    @pytest.mark.asyncio
    async def test_unauthorized_marks_token_stale(
        self, gateway: Gateway, authed_tokens: TokenManager, factory: FakeTransportFactory
    ) -> None:
        factory.transport.fail_with = AuthenticationError("Invalid or expired", status_code=401)
        with pytest.raises(RemoteOperationError):
            await gateway.run_function({"scriptId": "s", "function": "main"})

        assert authed_tokens.current_credential().is_expired() is True

    @pytest.mark.asyncio
    async def test_other_api_errors_keep_token(
        self, gateway: Gateway, authed_tokens: TokenManager, factory: FakeTransportFactory
    ) -> None:
        factory.transport.fail_with = APIError("API error (500): backend", status_code=500)
        with pytest.raises(RemoteOperationError):
            await gateway.run_function({"scriptId": "s", "function": "main"})

        assert authed_tokens.current_credential().is_expired() is False

    @pytest.mark.asyncio
    async def test_transport_closed_after_success(
        self, gateway: Gateway, factory: FakeTransportFactory
    ) -> None:
        await gateway.create_script({"spreadsheetId": "sheet-1", "title": "Helper"})
        assert factory.transport.closed == 1


class TestRedactParameters:
    def test_masks_secrets_and_sources(self) -> None:
        redacted = redact_parameters(
            {
                "scriptId": "script-1",
                "access_token": "ya29.secret",
                "nested": {"clientSecret": "s", "content": "abcd"},
                "files": [{"name": "Code", "source": "12345"}],
            }
        )
        assert redacted == {
            "scriptId": "script-1",
            "access_token": "***",
            "nested": {"clientSecret": "***", "content": "<4 chars>"},
            "files": [{"name": "Code", "source": "<5 chars>"}],
        }

    def test_does_not_mutate_input(self) -> None:
        params = {"password": "hunter2"}
        redact_parameters(params)
        assert params == {"password": "hunter2"}
