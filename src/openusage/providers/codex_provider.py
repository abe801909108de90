# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Codex CLI usage provider.

Credential source: ~/.codex/auth.json, owned by the CLI
    {"tokens": {"access_token", "refresh_token", "id_token", "account_id"},
     "last_refresh": ISO-8601, "OPENAI_API_KEY": ...}

The token has no reliable expiry, so it is rotated by age: 8 days after
`last_refresh`. Refresh rejections without an explicit OAuth error code
are soft; the existing token is tried anyway.

API Details:
- Usage:   GET https://chatgpt.com/backend-api/wham/usage
           (Authorization: Bearer, ChatGPT-Account-Id)
- Refresh: POST https://auth.openai.com/oauth/token (form body)
- Percentages arrive in x-codex-primary-used-percent /
  x-codex-secondary-used-percent headers, with rate_limit.*_window in the
  body as fallback.
"""

import copy
import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..auth.oauth import post_refresh_grant
from ..config.defaults import CODEX_MAX_TOKEN_AGE_MS
from ..core.errors import (
    ErrorKind,
    FeatureUnavailableError,
    MalformedResponseError,
    NotAuthenticatedError,
)
from ..core.types import (
    BadgeLine,
    Credential,
    MetricLine,
    ProbeOutput,
    ProgressLine,
    TokenGrant,
    TokenPolicy,
    TriggerKind,
)
from ..credentials.backends import CredentialCodec, JsonFileBackend
from .provider_interface import UsageProvider
from .utilities.formatting import is_number, parse_date_ms, plan_label, to_iso

if TYPE_CHECKING:
    from ..host.context import ProbeContext
    from ..host.http import HttpResponse

lib_logger = logging.getLogger("openusage")

AUTH_PATH = "~/.codex/auth.json"
CLIENT_ID = "app_EMoamEEZ73f0CkXaXp7hrann"
REFRESH_URL = "https://auth.openai.com/oauth/token"
USAGE_URL = "https://chatgpt.com/backend-api/wham/usage"

CREDITS_LIMIT = 1000


# =============================================================================
# CREDENTIAL CODEC
# =============================================================================


def _str_or_none(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def parse_codex_credential(blob: Any, source: str) -> Optional[Credential]:
    if not isinstance(blob, dict):
        return None
    tokens = blob.get("tokens")
    tokens = tokens if isinstance(tokens, dict) else {}
    credential = Credential(
        provider_id="codex",
        source=source,
        access_token=_str_or_none(tokens.get("access_token")),
        refresh_token=_str_or_none(tokens.get("refresh_token")),
        id_token=_str_or_none(tokens.get("id_token")),
        api_key=_str_or_none(blob.get("OPENAI_API_KEY")),
        last_refreshed_at_ms=parse_date_ms(blob.get("last_refresh")),
        account_id=_str_or_none(tokens.get("account_id")),
        extra=blob,
    )
    return credential if credential.has_secret else None


def serialize_codex_credential(credential: Credential) -> Any:
    blob = copy.deepcopy(credential.extra) if credential.extra else {}
    tokens = blob.get("tokens")
    if not isinstance(tokens, dict):
        tokens = {}
    tokens["access_token"] = credential.access_token
    if credential.refresh_token:
        tokens["refresh_token"] = credential.refresh_token
    if credential.id_token:
        tokens["id_token"] = credential.id_token
    if credential.account_id:
        tokens["account_id"] = credential.account_id
    blob["tokens"] = tokens
    if credential.last_refreshed_at_ms is not None:
        blob["last_refresh"] = to_iso(credential.last_refreshed_at_ms)
    return blob


CODEX_CODEC = CredentialCodec(
    parse=parse_codex_credential, serialize=serialize_codex_credential
)


# =============================================================================
# USAGE PARSING
# =============================================================================


def _read_number(value: Any) -> Optional[float]:
    if is_number(value):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _window_reset_iso(window: Optional[Dict[str, Any]], now_ms: int) -> Optional[str]:
    if not isinstance(window, dict):
        return None
    if is_number(window.get("reset_at")):
        return to_iso(window["reset_at"])
    if is_number(window.get("reset_after_seconds")):
        return to_iso(now_ms + int(window["reset_after_seconds"] * 1000))
    return None


def _window(container: Any, key: str) -> Optional[Dict[str, Any]]:
    if not isinstance(container, dict):
        return None
    window = container.get(key)
    return window if isinstance(window, dict) else None


def build_codex_lines(
    data: Dict[str, Any], headers: Dict[str, str], now_ms: int
) -> List[MetricLine]:
    lines: List[MetricLine] = []
    rate_limit = data.get("rate_limit")
    primary = _window(rate_limit, "primary_window")
    secondary = _window(rate_limit, "secondary_window")
    review = _window(data.get("code_review_rate_limit"), "primary_window")

    windows = (
        ("Session (5h)", primary, headers.get("x-codex-primary-used-percent")),
        ("Weekly (7d)", secondary, headers.get("x-codex-secondary-used-percent")),
    )
    for label, window, header_value in windows:
        used = _read_number(header_value)
        if used is None and window is not None:
            used = _read_number(window.get("used_percent"))
        if used is None:
            continue
        lines.append(
            ProgressLine(
                label=label,
                used=used,
                limit=100.0,
                unit="percent",
                resets_at=_window_reset_iso(window, now_ms),
            )
        )

    if review is not None and is_number(review.get("used_percent")):
        lines.append(
            ProgressLine(
                label="Reviews (7d)",
                used=float(review["used_percent"]),
                limit=100.0,
                unit="percent",
                resets_at=_window_reset_iso(review, now_ms),
            )
        )

    credits = _read_number(headers.get("x-codex-credits-balance"))
    if credits is None and isinstance(data.get("credits"), dict):
        credits = _read_number(data["credits"].get("balance"))
    if credits is not None:
        lines.append(
            ProgressLine(label="Credits", used=credits, limit=CREDITS_LIMIT, unit="count")
        )
    return lines


# =============================================================================
# PROVIDER
# =============================================================================


class CodexProvider(UsageProvider):
    provider_id = "codex"
    display_name = "Codex"
    error_messages = {
        ErrorKind.NOT_AUTHENTICATED: "Not logged in. Run `codex` to authenticate.",
        ErrorKind.REAUTH_REQUIRED: "Session expired. Run `codex` to log in again.",
        ErrorKind.AUTH_RETRY_EXHAUSTED: "Token expired. Run `codex` to log in again.",
    }

    def build_backends(self):
        # The CLI keeps this file pretty-printed
        return [JsonFileBackend("file", AUTH_PATH, CODEX_CODEC, indent=2)]

    @property
    def token_policy(self) -> TokenPolicy:
        return TokenPolicy(
            trigger=TriggerKind.AGE,
            window_ms=CODEX_MAX_TOKEN_AGE_MS,
            refresh=self.refresh_token,
        )

    def check_credential(self, credential: Credential) -> None:
        if credential.access_token or credential.refresh_token:
            return
        if credential.api_key:
            raise FeatureUnavailableError("Usage not available for API key.")
        raise NotAuthenticatedError()

    async def refresh_token(
        self, ctx: "ProbeContext", credential: Credential
    ) -> Optional[TokenGrant]:
        return await post_refresh_grant(
            ctx,
            REFRESH_URL,
            {
                "grant_type": "refresh_token",
                "client_id": CLIENT_ID,
                "refresh_token": credential.refresh_token,
            },
            form=True,
        )

    async def fetch_usage(
        self, ctx: "ProbeContext", credential: Credential
    ) -> "HttpResponse":
        headers = {
            "Authorization": f"Bearer {credential.access_token}",
            "Accept": "application/json",
        }
        if credential.account_id:
            headers["ChatGPT-Account-Id"] = credential.account_id
        return await ctx.http.request("GET", USAGE_URL, headers=headers)

    async def parse_usage(
        self, ctx: "ProbeContext", credential: Credential, response: "HttpResponse"
    ) -> ProbeOutput:
        data = response.json()
        if not isinstance(data, dict):
            raise MalformedResponseError()

        lines = build_codex_lines(data, response.headers, ctx.clock.now_ms())
        if not lines:
            lines.append(BadgeLine(label="Status", text="No usage data", color="#a3a3a3"))
        return ProbeOutput(plan=plan_label(data.get("plan_type")), lines=tuple(lines))
