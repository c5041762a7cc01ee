"""Structured logging configuration using loguru.

Outputs Cloud Logging compatible JSON in production and human-readable
colored output in development. Every record passes through a patcher that
flattens the `extra=` mapping callers pass and masks credential material, so
no sink ever sees an access token, refresh token, client secret or
authorization code. Audit helpers log credential lifecycle events with
consistent structured fields.
"""

import json
import logging
import sys
import traceback
from collections.abc import Mapping
from typing import Any

from loguru import logger

# Fields whose values are credential material
SENSITIVE_KEYS = frozenset(
    {"access_token", "refresh_token", "id_token", "client_secret", "code", "password"}
)

MASK = "***"

# Cloud Logging severity for each loguru level
SEVERITY_MAP = {
    "TRACE": "DEBUG",
    "DEBUG": "DEBUG",
    "INFO": "INFO",
    "SUCCESS": "INFO",
    "WARNING": "WARNING",
    "ERROR": "ERROR",
    "CRITICAL": "CRITICAL",
}

DEV_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
    "{exception}"
)


def scrub(value: Any) -> Any:
    """Copy of a logged value with sensitive fields masked at any depth."""
    if isinstance(value, Mapping):
        return {
            k: MASK if isinstance(k, str) and k.lower() in SENSITIVE_KEYS and v else scrub(v)
            for k, v in value.items()
        }
    if isinstance(value, list | tuple):
        return [scrub(v) for v in value]
    return value


def _patch_record(record: dict[str, Any]) -> None:
    """Hoist `extra=` fields to the top level and mask credential material."""
    extra = record["extra"]
    nested = extra.pop("extra", None)
    if isinstance(nested, Mapping):
        extra.update(nested)
    elif nested is not None:
        extra["extra"] = nested
    for key, value in list(extra.items()):
        extra[key] = scrub({key: value})[key]


def _cloud_logging_entry(record: Mapping[str, Any]) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "severity": SEVERITY_MAP.get(record["level"].name, "INFO"),
        "message": record["message"],
        "time": record["time"].isoformat(),
    }

    if record["level"].no >= logging.ERROR:
        entry["logging.googleapis.com/sourceLocation"] = {
            "file": record["file"].path,
            "line": str(record["line"]),
            "function": record["function"],
        }

    exception = record["exception"]
    if exception is not None:
        entry["exception"] = {
            "type": exception.type.__name__ if exception.type else None,
            "value": str(exception.value) if exception.value else None,
            "traceback": "".join(
                traceback.format_exception(exception.type, exception.value, exception.traceback)
            )
            if exception.traceback
            else None,
        }

    extra = {k: v for k, v in record["extra"].items() if not k.startswith("_")}
    # Audit events become labels so they can be filtered in Logs Explorer
    if "audit_event" in extra:
        entry["logging.googleapis.com/labels"] = {"audit_event": str(extra["audit_event"])}
    entry.update(extra)
    return entry


def _json_sink(message: Any) -> None:
    sys.stdout.write(json.dumps(_cloud_logging_entry(message.record), default=str) + "\n")
    sys.stdout.flush()


def configure_logging(*, is_production: bool, log_level: str = "INFO") -> None:
    """Configure loguru for the application.

    Args:
        is_production: If True, output JSON for Cloud Logging. If False, use
            human-readable colored output for development.
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    """
    logger.remove()
    logger.configure(patcher=_patch_record)

    if is_production:
        # diagnose=False: tracebacks must not dump local variables (tokens)
        logger.add(_json_sink, level=log_level, format="{message}", backtrace=False, diagnose=False)
    else:
        logger.add(
            sys.stderr,
            level=log_level,
            format=DEV_FORMAT,
            colorize=True,
            backtrace=True,
            diagnose=False,
        )

    _intercept_standard_logging(log_level)


class _InterceptHandler(logging.Handler):
    """Forward stdlib records (uvicorn, httpx, oauthlib) into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _intercept_standard_logging(log_level: str) -> None:
    handler = _InterceptHandler()
    logging.basicConfig(handlers=[handler], level=log_level, force=True)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "httpx", "httpcore"):
        logging.getLogger(name).handlers = [handler]
        logging.getLogger(name).setLevel(log_level)

    # oauthlib logs request bodies (including codes) at DEBUG
    oauthlib_logger = logging.getLogger("oauthlib")
    oauthlib_logger.handlers = [handler]
    oauthlib_logger.setLevel(max(logging.INFO, logging.getLevelName(log_level)))


def mask_secret(value: str | None, visible: int = 8) -> str | None:
    """Show only the first few characters of an identifier."""
    if not value:
        return value
    return value[:visible] + "..." if len(value) > visible else value


# =============================================================================
# Audit Logging
# =============================================================================


def audit_authorization_started(client_id: str, redirect_uri: str) -> None:
    """Log when a consent URL is handed out."""
    logger.info(
        "Authorization flow started",
        extra={
            "audit_event": "authorization_started",
            "client_id": mask_secret(client_id, 20),
            "redirect_uri": redirect_uri,
        },
    )


def audit_token_adopted(scopes: list[str], token_saved: bool) -> None:
    """Log a newly granted credential."""
    logger.info(
        "Credential adopted",
        extra={
            "audit_event": "token_adopted",
            "scopes": scopes,
            "token_saved": token_saved,
        },
    )


def audit_token_refreshed(expiry: str | None) -> None:
    """Log successful access token refresh."""
    logger.info(
        "Access token refreshed",
        extra={"audit_event": "token_refreshed", "expiry": expiry},
    )


def audit_token_refresh_failed(reason: str) -> None:
    """Log failed (unrecoverable) token refresh."""
    logger.warning(
        "Access token refresh failed",
        extra={"audit_event": "token_refresh_failed", "reason": reason},
    )


def audit_operation_failed(
    operation: str,
    parameters: dict[str, Any],
    reason: str,
    details: dict[str, Any] | None = None,
) -> None:
    """Log a privileged operation rejected by the remote platform."""
    extra: dict[str, Any] = {
        "audit_event": "operation_failed",
        "operation": operation,
        "parameters": parameters,
        "reason": reason,
    }
    if details:
        extra["details"] = details
    logger.warning("Privileged operation failed", extra=extra)


__all__ = [
    "logger",
    "configure_logging",
    "scrub",
    "mask_secret",
    "audit_authorization_started",
    "audit_token_adopted",
    "audit_token_refreshed",
    "audit_token_refresh_failed",
    "audit_operation_failed",
]
