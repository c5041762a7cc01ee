"""Authenticated operation gateway.

Each privileged operation follows the same contract: gate on authentication,
validate its parameters, refresh the credential if needed, make exactly one
remote call and re-wrap any failure with operation context. Operations are
expressed as AuthenticatedOperation subclasses and run by Gateway.execute.
"""

from __future__ import annotations

import asyncio
import functools
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from google.auth.exceptions import TransportError as GoogleTransportError
from loguru import logger

from script_relay.exceptions import InvalidRequestError, NotAuthenticatedError, RemoteOperationError
from script_relay.logging import audit_operation_failed
from script_relay.token_manager import DEFAULT_TIMEOUT, TokenManager
from script_relay.transport import (
    APIError,
    AppsScriptTransport,
    ScriptExecutionError,
    ScriptFile,
    Transport,
    TransportError,
)

RequestT = TypeVar("RequestT")
ResultT = TypeVar("ResultT")

TransportFactory = Callable[[str], Transport]

SCRIPT_EDIT_URL = "https://script.google.com/d/{script_id}/edit"

# Parameter keys whose values never appear in errors or logs
SECRET_MARKERS = ("token", "secret", "password", "credential", "code")


# =============================================================================
# Requests and Results
# =============================================================================


@dataclass(frozen=True)
class CreateScriptRequest:
    container_id: str
    title: str


@dataclass(frozen=True)
class CreateScriptResult:
    script_id: str
    url: str

    def to_response(self) -> dict[str, Any]:
        return {"scriptId": self.script_id, "url": self.url, "success": True}


@dataclass(frozen=True)
class ScriptFileEntry:
    name: str
    content: str
    type: str


@dataclass(frozen=True)
class PushContentRequest:
    script_id: str
    files: tuple[ScriptFileEntry, ...]


@dataclass(frozen=True)
class PushContentResult:
    updated_files: int

    def to_response(self) -> dict[str, Any]:
        return {"success": True, "updatedFiles": self.updated_files}


@dataclass(frozen=True)
class RunFunctionRequest:
    script_id: str
    function: str
    parameters: tuple[Any, ...] = ()


@dataclass(frozen=True)
class RunFunctionResult:
    response: Any

    def to_response(self) -> dict[str, Any]:
        return {"response": self.response, "success": True}


# =============================================================================
# Operations
# =============================================================================


def _require_str(params: Mapping[str, Any], field: str, label: str | None = None) -> str:
    label = label or field
    value = params.get(field)
    if value is None or value == "":
        raise InvalidRequestError(label)
    if not isinstance(value, str):
        raise InvalidRequestError(label, f"{label} must be a string")
    return value


class AuthenticatedOperation(ABC, Generic[RequestT, ResultT]):
    """A privileged call: parameter parsing plus a single remote invocation."""

    name: str

    @abstractmethod
    def parse(self, params: Mapping[str, Any]) -> RequestT:
        """Validate raw parameters.

        Raises:
            InvalidRequestError: Naming the first missing or malformed field.
        """
        ...

    @abstractmethod
    async def invoke(self, transport: Transport, request: RequestT) -> ResultT:
        """Make exactly one remote call."""
        ...


class CreateScriptOperation(AuthenticatedOperation[CreateScriptRequest, CreateScriptResult]):
    """Create a script project bound to a container (e.g. a spreadsheet)."""

    name = "create-script"

    def parse(self, params: Mapping[str, Any]) -> CreateScriptRequest:
        return CreateScriptRequest(
            container_id=_require_str(params, "spreadsheetId"),
            title=_require_str(params, "title"),
        )

    async def invoke(self, transport: Transport, request: CreateScriptRequest) -> CreateScriptResult:
        project = await transport.create_project(request.title, parent_id=request.container_id)
        if not project.script_id:
            raise TransportError("Response did not include a scriptId")
        return CreateScriptResult(
            script_id=project.script_id,
            url=SCRIPT_EDIT_URL.format(script_id=project.script_id),
        )


class PushContentOperation(AuthenticatedOperation[PushContentRequest, PushContentResult]):
    """Replace the files of a script project."""

    name = "push-content"

    def parse(self, params: Mapping[str, Any]) -> PushContentRequest:
        script_id = _require_str(params, "scriptId")

        files = params.get("files")
        if files is None:
            raise InvalidRequestError("files")
        if not isinstance(files, list):
            raise InvalidRequestError("files", "files must be a list")

        entries = []
        for i, entry in enumerate(files):
            if not isinstance(entry, Mapping):
                raise InvalidRequestError(f"files[{i}]", f"files[{i}] must be an object")
            # Apps Script calls it "source"; "content" is accepted as an alias
            content = entry.get("source", entry.get("content"))
            if content is None:
                raise InvalidRequestError(f"files[{i}].source")
            if not isinstance(content, str):
                raise InvalidRequestError(f"files[{i}].source", f"files[{i}].source must be a string")
            entries.append(
                ScriptFileEntry(
                    name=_require_str(entry, "name", f"files[{i}].name"),
                    content=content,
                    type=_require_str(entry, "type", f"files[{i}].type"),
                )
            )

        return PushContentRequest(script_id=script_id, files=tuple(entries))

    async def invoke(self, transport: Transport, request: PushContentRequest) -> PushContentResult:
        content = await transport.update_content(
            request.script_id,
            [ScriptFile(name=f.name, type=f.type, source=f.content) for f in request.files],
        )
        return PushContentResult(updated_files=len(content.files))


class RunFunctionOperation(AuthenticatedOperation[RunFunctionRequest, RunFunctionResult]):
    """Execute a named function of a script project."""

    name = "run-function"

    def parse(self, params: Mapping[str, Any]) -> RunFunctionRequest:
        script_id = _require_str(params, "scriptId")
        function = _require_str(params, "function")

        parameters = params.get("parameters")
        if parameters is None:
            parameters = []
        if not isinstance(parameters, list):
            raise InvalidRequestError("parameters", "parameters must be a list")

        return RunFunctionRequest(
            script_id=script_id, function=function, parameters=tuple(parameters)
        )

    async def invoke(self, transport: Transport, request: RunFunctionRequest) -> RunFunctionResult:
        result = await transport.run_function(
            request.script_id, request.function, list(request.parameters), dev_mode=True
        )
        if result.error:
            raise ScriptExecutionError(result.error_message, details=result.error)
        return RunFunctionResult(response=result.response)


CREATE_SCRIPT = CreateScriptOperation()
PUSH_CONTENT = PushContentOperation()
RUN_FUNCTION = RunFunctionOperation()


# =============================================================================
# Gateway
# =============================================================================


def redact_parameters(params: Mapping[str, Any]) -> dict[str, Any]:
    """Copy of caller parameters safe to put in errors and logs.

    Secret-looking values are masked and file sources replaced by their size.
    """

    def _redact(key: Any, value: Any) -> Any:
        if isinstance(key, str):
            if any(marker in key.lower() for marker in SECRET_MARKERS):
                return "***"
            if key in ("source", "content") and isinstance(value, str):
                return f"<{len(value)} chars>"
        if isinstance(value, Mapping):
            return {k: _redact(k, v) for k, v in value.items()}
        if isinstance(value, list):
            return [_redact(None, v) for v in value]
        return value

    return {k: _redact(k, v) for k, v in params.items()}


class Gateway:
    """Runs authenticated operations with the token manager's credential.

    Args:
        tokens: TokenManager holding the credential.
        transport_factory: Builds a transport for an access token
            (injectable for testing).
        timeout: Seconds allowed for each remote call.
    """

    def __init__(
        self,
        tokens: TokenManager,
        transport_factory: TransportFactory | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._tokens = tokens
        self._transport_factory = transport_factory or functools.partial(
            AppsScriptTransport, timeout=timeout
        )

    async def execute(
        self,
        operation: AuthenticatedOperation[RequestT, ResultT],
        params: Mapping[str, Any],
    ) -> ResultT:
        """Run one operation.

        Raises:
            NotAuthenticatedError: If no usable credential is held.
            InvalidRequestError: If a required parameter is missing.
            RemoteOperationError: If the refresh or the remote call failed.
        """
        if not self._tokens.is_authenticated:
            raise NotAuthenticatedError()

        request = operation.parse(params)
        redacted = redact_parameters(params)

        try:
            credential = await asyncio.to_thread(self._tokens.fresh_credential)
        except GoogleTransportError as e:
            raise self._failure(operation.name, redacted, f"Token refresh failed: {e}") from e

        transport = self._transport_factory(credential.access_token)
        try:
            result = await operation.invoke(transport, request)
        except TransportError as e:
            if isinstance(e, APIError) and e.status_code == 401:
                self._tokens.mark_access_token_stale()
            details = e.details if isinstance(e, ScriptExecutionError) else None
            raise self._failure(operation.name, redacted, str(e), details) from e
        finally:
            await transport.close()

        logger.info("Operation succeeded", extra={"operation": operation.name})
        return result

    async def create_script(self, params: Mapping[str, Any]) -> CreateScriptResult:
        return await self.execute(CREATE_SCRIPT, params)

    async def push_content(self, params: Mapping[str, Any]) -> PushContentResult:
        return await self.execute(PUSH_CONTENT, params)

    async def run_function(self, params: Mapping[str, Any]) -> RunFunctionResult:
        return await self.execute(RUN_FUNCTION, params)

    @staticmethod
    def _failure(
        operation: str,
        parameters: dict[str, Any],
        reason: str,
        details: dict[str, Any] | None = None,
    ) -> RemoteOperationError:
        audit_operation_failed(operation, parameters, reason, details)
        return RemoteOperationError(operation, parameters, reason, details)
