"""Transport layer for the Google Apps Script API.

Defines the Transport protocol and AppsScriptTransport, the production
implementation on top of Apps Script API v1. Every call is bounded by the
client timeout; a timed-out call raises TransportError instead of hanging.
"""

from __future__ import annotations

import ssl
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import certifi
import httpx

# Apps Script API v1 base URL
API_BASE = "https://script.googleapis.com/v1"
DEFAULT_TIMEOUT = 60.0


class TransportError(Exception):
    """Base exception for transport errors."""


class APIError(TransportError):
    """Raised when the API returns an error status."""

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(APIError):
    """Raised when authentication fails (401/403)."""


class NotFoundError(APIError):
    """Raised when a script project is not found (404)."""


class ScriptExecutionError(TransportError):
    """Raised when scripts.run reports an exception thrown by the script."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details = details or {}


# --- Data classes ---


@dataclass(frozen=True)
class ScriptFile:
    """A single file within an Apps Script project."""

    name: str
    type: str  # SERVER_JS, HTML, or JSON
    source: str


@dataclass(frozen=True)
class ProjectMetadata:
    """Metadata about an Apps Script project."""

    script_id: str
    title: str
    parent_id: str = ""  # Non-empty for bound scripts


@dataclass(frozen=True)
class ProjectContent:
    """Content of an Apps Script project (all files)."""

    script_id: str
    files: tuple[ScriptFile, ...]


@dataclass(frozen=True)
class ExecutionResult:
    """Result of a script execution via scripts.run."""

    done: bool
    response: dict[str, Any] | None = None
    error: dict[str, Any] | None = None

    @property
    def error_message(self) -> str:
        """Best-effort human-readable message for a script exception."""
        if not self.error:
            return ""
        for detail in self.error.get("details", []):
            if detail.get("errorMessage"):
                return f"{detail.get('errorType', 'ScriptError')}: {detail['errorMessage']}"
        return self.error.get("message", "Script execution failed")


# --- Transport ABC ---


class Transport(ABC):
    """Abstract base class for Apps Script API transport."""

    @abstractmethod
    async def create_project(self, title: str, parent_id: str | None = None) -> ProjectMetadata:
        """Create a new Apps Script project.

        Args:
            title: Project title.
            parent_id: If set, creates a container-bound script attached
                to the Google Drive file with this ID.
        """
        ...

    @abstractmethod
    async def update_content(self, script_id: str, files: list[ScriptFile]) -> ProjectContent:
        """Replace all files in a project (atomic operation)."""
        ...

    @abstractmethod
    async def run_function(
        self,
        script_id: str,
        function: str,
        parameters: list[Any] | None = None,
        dev_mode: bool = True,
    ) -> ExecutionResult:
        """Execute a function in the script project."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close any open connections."""
        ...


# --- Production transport ---


class AppsScriptTransport(Transport):
    """Production transport using Google Apps Script API v1."""

    def __init__(self, access_token: str, timeout: float = DEFAULT_TIMEOUT) -> None:
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        self._timeout = timeout
        self._client = httpx.AsyncClient(
            timeout=timeout,
            verify=ssl_context,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/json",
            },
        )

    async def create_project(self, title: str, parent_id: str | None = None) -> ProjectMetadata:
        url = f"{API_BASE}/projects"
        body: dict[str, str] = {"title": title}
        if parent_id:
            body["parentId"] = parent_id
        data = await self._request("POST", url, body)
        return ProjectMetadata(
            script_id=data.get("scriptId", ""),
            title=data.get("title", ""),
            parent_id=data.get("parentId", ""),
        )

    async def update_content(self, script_id: str, files: list[ScriptFile]) -> ProjectContent:
        url = f"{API_BASE}/projects/{script_id}/content"
        body: dict[str, Any] = {
            "files": [{"name": f.name, "type": f.type, "source": f.source} for f in files]
        }
        data = await self._request("PUT", url, body)
        return ProjectContent(
            script_id=data.get("scriptId", script_id),
            files=tuple(
                ScriptFile(
                    name=f.get("name", ""),
                    type=f.get("type", "SERVER_JS"),
                    source=f.get("source", ""),
                )
                for f in data.get("files", [])
            ),
        )

    async def run_function(
        self,
        script_id: str,
        function: str,
        parameters: list[Any] | None = None,
        dev_mode: bool = True,
    ) -> ExecutionResult:
        url = f"{API_BASE}/scripts/{script_id}:run"
        body: dict[str, Any] = {
            "function": function,
            "parameters": list(parameters or []),
            "devMode": dev_mode,
        }
        data = await self._request("POST", url, body)
        return ExecutionResult(
            done=data.get("done", False),
            response=data.get("response"),
            error=data.get("error"),
        )

    async def close(self) -> None:
        await self._client.aclose()

    # -- HTTP helpers --

    async def _request(self, method: str, url: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            resp = await self._client.request(method, url, json=body)
            resp.raise_for_status()
            result: dict[str, Any] = resp.json() if resp.content else {}
            return result
        except httpx.HTTPStatusError as e:
            self._handle_http_error(e)
            raise
        except httpx.TimeoutException as e:
            raise TransportError(f"Request timed out after {self._timeout:g}s") from e
        except httpx.RequestError as e:
            raise TransportError(f"Network error: {e}") from e
        except ValueError as e:
            raise TransportError(f"Invalid JSON response: {e}") from e

    def _handle_http_error(self, e: httpx.HTTPStatusError) -> None:
        status = e.response.status_code
        message = _extract_error_message(e.response)
        if status == 401:
            raise AuthenticationError(
                f"Invalid or expired access token: {message}", status_code=status
            ) from e
        if status == 403:
            raise AuthenticationError(
                f"Access denied. Check the granted scopes and that the Apps Script API "
                f"is enabled: {message}",
                status_code=status,
            ) from e
        if status == 404:
            raise NotFoundError(
                "Script project not found. Check the script ID and permissions.",
                status_code=status,
            ) from e
        raise APIError(f"API error ({status}): {message}", status_code=status) from e


def _extract_error_message(response: httpx.Response) -> str:
    """Pull `error.message` out of a Google API error body, if present."""
    try:
        data = response.json()
    except ValueError:
        return response.text
    if isinstance(data, dict) and isinstance(data.get("error"), dict):
        return data["error"].get("message") or response.text
    return response.text
