"""Composition root tying the relay components together."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request
from loguru import logger

from script_relay.config import Settings
from script_relay.credential_store import CredentialStore
from script_relay.exceptions import ConfigurationError
from script_relay.gateway import Gateway, TransportFactory
from script_relay.oauth import AuthorizationFlow, FlowFactory, create_oauth_flow
from script_relay.status import StatusReporter
from script_relay.token_manager import TokenManager


@dataclass
class Relay:
    """One credential, the flow that obtains it and the calls that use it."""

    tokens: TokenManager
    authorization: AuthorizationFlow
    gateway: Gateway
    status: StatusReporter

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        flow_factory: FlowFactory = create_oauth_flow,
        transport_factory: TransportFactory | None = None,
        credentials_class: type | None = None,
    ) -> Relay:
        store = CredentialStore(
            token_path=settings.token_path,
            identity_path=settings.google_client_credentials_path,
            inline_identity=settings.google_client_credentials if settings.has_inline_credentials else None,
            redirect_uri=settings.google_redirect_uri,
        )
        token_kwargs = {"credentials_class": credentials_class} if credentials_class else {}
        tokens = TokenManager(store, timeout=settings.request_timeout, **token_kwargs)
        return cls(
            tokens=tokens,
            authorization=AuthorizationFlow(
                tokens, flow_factory=flow_factory, timeout=settings.request_timeout
            ),
            gateway=Gateway(
                tokens, transport_factory=transport_factory, timeout=settings.request_timeout
            ),
            status=StatusReporter(tokens),
        )

    def start(self) -> None:
        """Initialize the token manager; a bad identity is logged, not fatal."""
        try:
            self.tokens.initialize()
        except ConfigurationError as e:
            logger.error(
                "Authentication initialization failed",
                extra={"error": e.message, "field": e.missing_field},
            )

    def close(self) -> None:
        self.tokens.close()


def get_relay(request: Request) -> Relay:
    """FastAPI dependency to get the relay instance.

    The relay is stored in app.state during application lifespan.
    """
    return request.app.state.relay
