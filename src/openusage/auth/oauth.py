# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Shared refresh_token grant request.

Every provider's TokenPolicy.refresh funnels through post_refresh_grant,
which draws the line between soft failures (return None, the caller may
still try its old token) and terminal rejections (raise
ReAuthRequiredError, never retried).
"""

import json
import logging
from typing import TYPE_CHECKING, Any, Dict, Optional
from urllib.parse import urlencode

from ..config.defaults import REFRESH_TIMEOUT_MS, env_seconds_ms
from ..core.errors import ProbeNetworkError, ReAuthRequiredError
from ..core.types import TokenGrant

if TYPE_CHECKING:
    from ..host.context import ProbeContext

lib_logger = logging.getLogger("openusage")

# OAuth `error` codes that mean the refresh token will never work again
TERMINAL_ERROR_CODES = frozenset(
    {
        "invalid_grant",
        "invalid_token",
        "token_revoked",
        "refresh_token_expired",
        "refresh_token_reused",
        "refresh_token_invalidated",
        "unauthorized_client",
    }
)


def _error_code(body: Any) -> Optional[str]:
    if not isinstance(body, dict):
        return None
    error = body.get("error")
    if isinstance(error, dict):
        error = error.get("code") or error.get("type")
    return error if isinstance(error, str) else None


def is_terminal_rejection(body: Any) -> bool:
    """True when a token endpoint body carries an explicit re-login signal."""
    if isinstance(body, dict) and body.get("shouldLogout") is True:
        return True
    return _error_code(body) in TERMINAL_ERROR_CODES


async def post_refresh_grant(
    ctx: "ProbeContext",
    url: str,
    payload: Dict[str, str],
    *,
    form: bool = False,
    session_expired_message: Optional[str] = None,
    rejected_message: Optional[str] = None,
    reject_status_is_terminal: bool = False,
    timeout_ms: Optional[int] = None,
) -> Optional[TokenGrant]:
    """
    POST a refresh_token grant and return the new tokens.

    Args:
        ctx: Probe context (HTTP client, provider id for logging)
        url: Token endpoint
        payload: Grant parameters (grant_type, refresh_token, client_id, ...)
        form: Send application/x-www-form-urlencoded instead of JSON
        session_expired_message: Message for an explicit terminal signal
        rejected_message: Message for a bare 400/401 rejection
        reject_status_is_terminal: Treat any 400/401 as terminal even without
            an explicit signal (vendors that never return a usable error code)
        timeout_ms: Request timeout (defaults to OPENUSAGE_REFRESH_TIMEOUT)

    Returns:
        TokenGrant on success, None on a soft failure

    Raises:
        ReAuthRequiredError: the server rejected the refresh token for good
    """
    provider_id = ctx.provider_id
    if form:
        headers = {"Content-Type": "application/x-www-form-urlencoded"}
        body_text = urlencode(payload)
    else:
        headers = {"Content-Type": "application/json"}
        body_text = json.dumps(payload)
    headers["Accept"] = "application/json"

    try:
        response = await ctx.http.request(
            "POST",
            url,
            headers=headers,
            body_text=body_text,
            timeout_ms=timeout_ms
            or env_seconds_ms("OPENUSAGE_REFRESH_TIMEOUT", REFRESH_TIMEOUT_MS),
        )
    except ProbeNetworkError as e:
        lib_logger.warning(f"[{provider_id}] Token refresh request failed: {e}")
        return None

    body = response.json()

    if response.status in (400, 401):
        code = _error_code(body)
        lib_logger.warning(
            f"[{provider_id}] Token refresh rejected (HTTP {response.status}, error={code})"
        )
        if is_terminal_rejection(body):
            raise ReAuthRequiredError(session_expired_message)
        if reject_status_is_terminal:
            raise ReAuthRequiredError(rejected_message or session_expired_message)
        return None

    if not response.ok:
        lib_logger.warning(f"[{provider_id}] Token refresh returned HTTP {response.status}")
        return None

    if is_terminal_rejection(body):
        lib_logger.warning(f"[{provider_id}] Token endpoint asked for logout")
        raise ReAuthRequiredError(session_expired_message)

    if not isinstance(body, dict):
        lib_logger.warning(f"[{provider_id}] Token refresh response is not a JSON object")
        return None

    access_token = body.get("access_token")
    if not isinstance(access_token, str) or not access_token:
        lib_logger.warning(f"[{provider_id}] Token refresh response has no access_token")
        return None

    expires_in = body.get("expires_in")
    if isinstance(expires_in, bool) or not isinstance(expires_in, (int, float)):
        expires_in = None

    refresh_token = body.get("refresh_token")
    id_token = body.get("id_token")
    return TokenGrant(
        access_token=access_token,
        refresh_token=refresh_token if isinstance(refresh_token, str) and refresh_token else None,
        expires_in_s=int(expires_in) if expires_in is not None else None,
        id_token=id_token if isinstance(id_token, str) and id_token else None,
    )
