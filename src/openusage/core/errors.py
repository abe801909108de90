# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Error taxonomy and classification for usage probes.

Every failure a probe can hit (transport errors, HTTP statuses, refresh
rejections, undecodable bodies, unsupported account types) is folded into
one closed set of ErrorKind values. Only ClassifiedError instances ever
leave the probe layer; raw exceptions and stack traces stay in the logs.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional

import httpx

lib_logger = logging.getLogger("openusage")


# =============================================================================
# ERROR KINDS
# =============================================================================


class ErrorKind(str, Enum):
    """Closed set of outcomes a failed probe can surface."""

    NOT_AUTHENTICATED = "not_authenticated"
    REAUTH_REQUIRED = "reauth_required"
    AUTH_RETRY_EXHAUSTED = "auth_retry_exhausted"
    NETWORK = "network"
    SERVER_ERROR = "server_error"
    MALFORMED_RESPONSE = "malformed_response"
    FEATURE_UNAVAILABLE = "feature_unavailable"


AUTH_STATUSES = frozenset({401, 403})


def is_auth_status(status: Optional[int]) -> bool:
    """Return True for HTTP statuses that mean the token was not accepted."""
    return status in AUTH_STATUSES


def mask_credential(value: Optional[str]) -> str:
    """Mask a token for log output (first 4 + last 4 characters)."""
    if not value:
        return "<none>"
    if len(value) <= 12:
        return "****"
    return f"{value[:4]}...{value[-4:]}"


# =============================================================================
# PROBE EXCEPTIONS
# =============================================================================


class ProbeError(Exception):
    """
    Base class for expected probe failures.

    Carries an ErrorKind and a short, user-actionable message. Subclasses
    define a default message; providers may replace defaults with their own
    wording (e.g. "Run `claude` to log in again.") at classification time.
    """

    kind: ErrorKind = ErrorKind.SERVER_ERROR
    default_message: str = "Usage request failed. Try again later."

    def __init__(self, message: Optional[str] = None):
        self.has_custom_message = message is not None
        self.message = message if message is not None else self.default_message
        super().__init__(self.message)


class NotAuthenticatedError(ProbeError):
    kind = ErrorKind.NOT_AUTHENTICATED
    default_message = "Not logged in. Sign in to continue."


class ReAuthRequiredError(ProbeError):
    """Refresh was rejected with a terminal signal; never retried."""

    kind = ErrorKind.REAUTH_REQUIRED
    default_message = "Session expired. Sign in again."


class AuthRetryExhaustedError(ProbeError):
    kind = ErrorKind.AUTH_RETRY_EXHAUSTED
    default_message = "Token expired. Sign in again."


class ProbeNetworkError(ProbeError):
    kind = ErrorKind.NETWORK
    default_message = "Usage request failed. Check your connection."


class CredentialStoreBusyError(ProbeNetworkError):
    """Another application holds the lock on the credential database."""

    default_message = "Credential store busy. Try again."


class ServerStatusError(ProbeError):
    kind = ErrorKind.SERVER_ERROR

    def __init__(self, status: Optional[int], message: Optional[str] = None):
        self.status = status
        if message is None and status is not None:
            message = f"Usage request failed (HTTP {status}). Try again later."
        super().__init__(message)
        # A status-derived message still counts as the default wording
        self.has_custom_message = False


class MalformedResponseError(ProbeError):
    kind = ErrorKind.MALFORMED_RESPONSE
    default_message = "Usage response invalid. Try again later."


class FeatureUnavailableError(ProbeError):
    kind = ErrorKind.FEATURE_UNAVAILABLE
    default_message = "Usage not available for this account."


class DeviceFlowPendingError(NotAuthenticatedError):
    """The user still has to finish the browser step of a device flow."""

    def __init__(self, verification_uri: str, user_code: str):
        self.verification_uri = verification_uri
        self.user_code = user_code
        super().__init__(f"Visit {verification_uri} and enter: {user_code}")


class DeviceFlowExpiredError(ReAuthRequiredError):
    default_message = "Code expired. Refresh to try again."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message)
        self.has_custom_message = True


class DeviceFlowInvalidError(ReAuthRequiredError):
    default_message = "Token invalid. Refresh to sign in again."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message)
        self.has_custom_message = True


# =============================================================================
# HOST EXCEPTIONS
# =============================================================================


class SecretStoreError(Exception):
    """The OS secret store could not be used."""


class SecretNotFoundError(SecretStoreError):
    """No entry exists for the requested service."""


# =============================================================================
# CLASSIFICATION
# =============================================================================


@dataclass(frozen=True)
class ClassifiedError:
    """A failure folded into the closed taxonomy, safe to show in the UI."""

    kind: ErrorKind
    message: str
    status: Optional[int] = None
    provider_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "status": self.status,
        }


def classify_error(
    error: BaseException,
    provider_id: Optional[str] = None,
    messages: Optional[Mapping[ErrorKind, str]] = None,
) -> ClassifiedError:
    """
    Map any exception raised during a probe onto the closed taxonomy.

    Args:
        error: The exception that ended the probe
        provider_id: Provider the probe belonged to (for logging)
        messages: Optional provider-specific wording per ErrorKind. Used only
            when the raised error carries its default message.

    Returns:
        ClassifiedError with a short user-facing message
    """
    prefix = f"[{provider_id}] " if provider_id else ""

    if isinstance(error, ProbeError):
        message = error.message
        if messages and not error.has_custom_message and error.kind in messages:
            message = messages[error.kind]
        return ClassifiedError(
            kind=error.kind,
            message=message,
            status=getattr(error, "status", None),
            provider_id=provider_id,
        )

    # Check timeouts before OSError: asyncio.TimeoutError is an OSError on 3.11+
    if isinstance(error, (asyncio.TimeoutError, httpx.TimeoutException)):
        lib_logger.warning(f"{prefix}probe timed out: {type(error).__name__}")
        return ClassifiedError(
            kind=ErrorKind.NETWORK,
            message="Usage request timed out. Check your connection.",
            provider_id=provider_id,
        )

    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        kind = (
            ErrorKind.AUTH_RETRY_EXHAUSTED
            if is_auth_status(status)
            else ErrorKind.SERVER_ERROR
        )
        default = (
            AuthRetryExhaustedError.default_message
            if kind is ErrorKind.AUTH_RETRY_EXHAUSTED
            else f"Usage request failed (HTTP {status}). Try again later."
        )
        message = (messages or {}).get(kind, default)
        return ClassifiedError(
            kind=kind, message=message, status=status, provider_id=provider_id
        )

    if isinstance(error, (httpx.RequestError, ConnectionError)):
        lib_logger.warning(f"{prefix}transport failure: {type(error).__name__}: {error}")
        return ClassifiedError(
            kind=ErrorKind.NETWORK,
            message=(messages or {}).get(
                ErrorKind.NETWORK, ProbeNetworkError.default_message
            ),
            provider_id=provider_id,
        )

    if isinstance(error, (json.JSONDecodeError, KeyError, UnicodeDecodeError)):
        lib_logger.warning(f"{prefix}undecodable response: {type(error).__name__}: {error}")
        return ClassifiedError(
            kind=ErrorKind.MALFORMED_RESPONSE,
            message=MalformedResponseError.default_message,
            provider_id=provider_id,
        )

    lib_logger.error(
        f"{prefix}unexpected probe failure: {type(error).__name__}: {error}",
        exc_info=error,
    )
    return ClassifiedError(
        kind=ErrorKind.SERVER_ERROR,
        message=ProbeError.default_message,
        provider_id=provider_id,
    )
