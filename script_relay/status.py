"""Read-only status reporting for health checks.

Reports what is held in memory and which files exist. It never calls the
remote platform, so an expired-but-refreshable token reports as present.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from loguru import logger

from script_relay.token_manager import TokenManager


@dataclass(frozen=True)
class StatusReport:
    authenticated: bool
    credential_store_present: bool
    client_identity_loaded: bool
    identity_source_present: bool
    timestamp: datetime

    @classmethod
    def pessimistic(cls) -> StatusReport:
        return cls(
            authenticated=False,
            credential_store_present=False,
            client_identity_loaded=False,
            identity_source_present=False,
            timestamp=datetime.now(UTC),
        )


class StatusReporter:
    def __init__(self, tokens: TokenManager) -> None:
        self._tokens = tokens

    def report(self) -> StatusReport:
        """Snapshot the credential state. Never raises."""
        try:
            store = self._tokens.store
            return StatusReport(
                authenticated=self._tokens.is_authenticated,
                credential_store_present=store.credential_present(),
                client_identity_loaded=self._tokens.is_initialized,
                identity_source_present=store.identity_present(),
                timestamp=datetime.now(UTC),
            )
        except Exception:
            logger.exception("Status report failed, reporting pessimistic state")
            return StatusReport.pessimistic()

    def health(self) -> dict[str, Any]:
        """Health check body in the shape the HTTP API exposes."""
        report = self.report()
        return {
            "status": "OK",
            "timestamp": report.timestamp.isoformat(),
            "authInitialized": report.client_identity_loaded,
            "hasToken": report.authenticated,
            "credentialsFileExists": report.identity_source_present,
            "tokenFileExists": report.credential_store_present,
        }
