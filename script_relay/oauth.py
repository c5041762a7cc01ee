"""OAuth configuration and the authorization flow controller.

Produces the Google consent URL and completes the code-for-token exchange,
handing the granted tokens to the TokenManager.
"""

from collections.abc import Callable

from google_auth_oauthlib.flow import Flow
from loguru import logger
from oauthlib.oauth2.rfc6749.errors import OAuth2Error
from requests.exceptions import RequestException

from script_relay.credential_store import ClientIdentity
from script_relay.exceptions import InvalidTokenResponseError, MissingCodeError, TokenExchangeError
from script_relay.logging import audit_authorization_started
from script_relay.token_manager import DEFAULT_TIMEOUT, AdoptionResult, TokenManager

# Scopes required for Apps Script automation
SCOPES = [
    "https://www.googleapis.com/auth/script.projects",
    "https://www.googleapis.com/auth/drive",
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive.scripts",
]

AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
TOKEN_URI = "https://oauth2.googleapis.com/token"

FlowFactory = Callable[[ClientIdentity, list[str]], Flow]


def create_oauth_flow(identity: ClientIdentity, scopes: list[str]) -> Flow:
    """Create Google OAuth flow for the client identity."""
    client_config = {
        "web": {
            "client_id": identity.client_id,
            "client_secret": identity.client_secret,
            "auth_uri": AUTH_URI,
            "token_uri": TOKEN_URI,
            "redirect_uris": [identity.redirect_uri],
        }
    }

    # No PKCE: the exchange happens in a separate request from URL generation
    return Flow.from_client_config(
        client_config,
        scopes=scopes,
        redirect_uri=identity.redirect_uri,
        autogenerate_code_verifier=False,
    )


class AuthorizationFlow:
    """Drives the authorization-code grant for the token manager.

    Args:
        tokens: TokenManager that receives the granted credential.
        flow_factory: Builds the oauthlib flow (injectable for testing).
        timeout: Seconds allowed for the token exchange.
    """

    def __init__(
        self,
        tokens: TokenManager,
        flow_factory: FlowFactory = create_oauth_flow,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._tokens = tokens
        self._flow_factory = flow_factory
        self._timeout = timeout

    def build_consent_url(self) -> str:
        """Return the URL the operator visits to grant access.

        Raises:
            NotInitializedError: If no client identity is loaded.
        """
        identity = self._tokens.require_identity()
        flow = self._flow_factory(identity, SCOPES)

        authorization_url, _ = flow.authorization_url(
            access_type="offline",
            include_granted_scopes="true",
            prompt="consent",
        )

        audit_authorization_started(identity.client_id, identity.redirect_uri)
        return authorization_url

    def complete_exchange(self, code: str | None) -> AdoptionResult:
        """Exchange an authorization code and adopt the resulting tokens.

        Raises:
            MissingCodeError: If the code is empty (no network call is made).
            NotInitializedError: If no client identity is loaded.
            TokenExchangeError: If the platform rejected the code or was unreachable.
            InvalidTokenResponseError: If no access token was granted.
        """
        if not code or not code.strip():
            raise MissingCodeError()

        identity = self._tokens.require_identity()
        flow = self._flow_factory(identity, SCOPES)

        logger.info("Exchanging code for tokens", extra={"code_length": len(code)})
        try:
            tokens = flow.fetch_token(code=code.strip(), timeout=self._timeout)
        except OAuth2Error as e:
            logger.warning("Token exchange rejected", extra={"error": e.error, "description": e.description})
            raise TokenExchangeError(e.description or e.error) from e
        except RequestException as e:
            logger.warning("Token exchange transport failure", extra={"error": str(e)})
            raise TokenExchangeError(f"Network error: {e}") from e

        if not tokens:
            raise InvalidTokenResponseError()

        return self._tokens.adopt_new_credential(tokens)
