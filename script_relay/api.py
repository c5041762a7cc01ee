"""REST API endpoints for the script relay.

This module contains all HTTP endpoints. Business logic is delegated to:
- AuthorizationFlow: consent URL and code exchange
- Gateway: privileged Apps Script operations
- StatusReporter: health reporting

Endpoints:
- GET  /authorize                      - Consent URL for the operator
- POST /callback                       - Exchange an authorization code
- POST /create_container_bound_script  - Create a bound script project
- PUT  /update_script_content          - Replace a project's files
- POST /run_script                     - Run a function in a project
- GET  /health                         - Credential status, never errors

Failures raise RelayError subclasses, rendered by the handler in main.py.
"""

from typing import Any

from fastapi import APIRouter, Body, Depends, Request
from loguru import logger
from slowapi import Limiter
from slowapi.util import get_remote_address

from script_relay.relay import Relay, get_relay

# Rate limiter instance - will be configured by main.py
limiter = Limiter(key_func=get_remote_address)

AUTH_RATE_LIMIT = "10/minute"

router = APIRouter()


# =============================================================================
# Authorization Endpoints
# =============================================================================


@router.get("/authorize")
@limiter.limit(AUTH_RATE_LIMIT)
async def authorize(request: Request, relay: Relay = Depends(get_relay)) -> dict:
    """Return the Google consent URL for the operator to visit."""
    auth_url = relay.authorization.build_consent_url()
    return {
        "authUrl": auth_url,
        "message": "Visit this URL to authorize the application",
        "instructions": "After authorization, call /callback with the code parameter",
    }


@router.post("/callback")
@limiter.limit(AUTH_RATE_LIMIT)
def callback(
    request: Request,
    payload: dict[str, Any] | None = Body(default=None),
    relay: Relay = Depends(get_relay),
) -> dict:
    """Exchange the authorization code for tokens and persist them.

    Declared sync so the blocking token exchange runs in the threadpool.
    """
    code = (payload or {}).get("code")
    result = relay.authorization.complete_exchange(code if isinstance(code, str) else None)
    return {
        "success": True,
        "message": "Authorization successful",
        "tokenSaved": result.token_saved,
        "scopes": list(result.credential.scopes),
    }


# =============================================================================
# Apps Script Endpoints
# =============================================================================


@router.post("/create_container_bound_script")
async def create_container_bound_script(
    payload: dict[str, Any] | None = Body(default=None),
    relay: Relay = Depends(get_relay),
) -> dict:
    """Create a script project bound to a spreadsheet."""
    params = payload or {}
    logger.info(
        "Create container bound script request",
        extra={"spreadsheet_id": params.get("spreadsheetId"), "title": params.get("title")},
    )
    result = await relay.gateway.create_script(params)
    return result.to_response()


@router.put("/update_script_content")
async def update_script_content(
    payload: dict[str, Any] | None = Body(default=None),
    relay: Relay = Depends(get_relay),
) -> dict:
    """Replace the files of a script project."""
    params = payload or {}
    files = params.get("files")
    logger.info(
        "Update script content request",
        extra={
            "script_id": params.get("scriptId"),
            "files_count": len(files) if isinstance(files, list) else None,
        },
    )
    result = await relay.gateway.push_content(params)
    return result.to_response()


@router.post("/run_script")
async def run_script(
    payload: dict[str, Any] | None = Body(default=None),
    relay: Relay = Depends(get_relay),
) -> dict:
    """Run a function in a script project."""
    params = payload or {}
    logger.info(
        "Run script request",
        extra={"script_id": params.get("scriptId"), "function": params.get("function")},
    )
    result = await relay.gateway.run_function(params)
    return result.to_response()


# =============================================================================
# Health Endpoint
# =============================================================================


@router.get("/health")
async def health_check(relay: Relay = Depends(get_relay)) -> dict:
    """Credential status for external health checks."""
    return relay.status.health()
