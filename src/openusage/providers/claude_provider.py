# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Claude CLI usage provider.

Credential sources (first hit wins, no promotion; the CLI owns both):
- ~/.claude/.credentials.json            {"claudeAiOauth": {...}}
- secret store "Claude Code-credentials" same blob, possibly hex-encoded

API Details:
- Usage:   GET https://api.anthropic.com/api/oauth/usage
           (Authorization: Bearer, anthropic-beta: oauth-2025-04-20)
- Refresh: POST https://platform.claude.com/v1/oauth/token (JSON body)
- Response: {"five_hour": {"utilization", "resets_at"}, "seven_day": {...},
             "seven_day_sonnet": {...}, "extra_usage": {...}}

The blob is written back as compact JSON: the CLI cannot read keychain
entries that were hex-encoded because of embedded newlines.
"""

import copy
import logging
from typing import TYPE_CHECKING, Any, List, Optional

from ..auth.oauth import post_refresh_grant
from ..auth.token_manager import refresh_buffer_ms
from ..core.errors import ErrorKind, MalformedResponseError
from ..core.types import (
    BadgeLine,
    Credential,
    MetricLine,
    ProbeOutput,
    ProgressLine,
    TextLine,
    TokenGrant,
    TokenPolicy,
    TriggerKind,
)
from ..credentials.backends import CredentialCodec, JsonFileBackend, SecretStoreBackend
from .provider_interface import UsageProvider
from .utilities.formatting import dollars, is_number, plan_label, to_iso

if TYPE_CHECKING:
    from ..host.context import ProbeContext
    from ..host.http import HttpResponse

lib_logger = logging.getLogger("openusage")

CRED_FILE = "~/.claude/.credentials.json"
KEYCHAIN_SERVICE = "Claude Code-credentials"
USAGE_URL = "https://api.anthropic.com/api/oauth/usage"
REFRESH_URL = "https://platform.claude.com/v1/oauth/token"
CLIENT_ID = "9d1c250a-e61b-44d9-88ed-5944d1962f5e"
SCOPES = "user:profile user:inference user:sessions:claude_code user:mcp_servers"

# (response key, line label) for the percent windows
USAGE_WINDOWS = (
    ("five_hour", "Session"),
    ("seven_day", "Weekly"),
    ("seven_day_sonnet", "Sonnet"),
)


# =============================================================================
# CREDENTIAL CODEC
# =============================================================================


def _str_or_none(value: Any) -> Optional[str]:
    return value.strip() if isinstance(value, str) and value.strip() else None


def parse_claude_credential(blob: Any, source: str) -> Optional[Credential]:
    if not isinstance(blob, dict):
        return None
    oauth = blob.get("claudeAiOauth")
    if not isinstance(oauth, dict):
        return None
    access_token = _str_or_none(oauth.get("accessToken"))
    refresh_token = _str_or_none(oauth.get("refreshToken"))
    if not access_token and not refresh_token:
        return None
    expires_at = oauth.get("expiresAt")
    return Credential(
        provider_id="claude",
        source=source,
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at_ms=int(expires_at) if is_number(expires_at) else None,
        subscription_type=_str_or_none(oauth.get("subscriptionType")),
        extra=blob,
    )


def serialize_claude_credential(credential: Credential) -> Any:
    blob = copy.deepcopy(credential.extra) if credential.extra else {}
    oauth = blob.get("claudeAiOauth")
    if not isinstance(oauth, dict):
        oauth = {}
    oauth["accessToken"] = credential.access_token
    if credential.refresh_token:
        oauth["refreshToken"] = credential.refresh_token
    if credential.expires_at_ms is not None:
        oauth["expiresAt"] = credential.expires_at_ms
    blob["claudeAiOauth"] = oauth
    return blob


CLAUDE_CODEC = CredentialCodec(
    parse=parse_claude_credential, serialize=serialize_claude_credential
)


# =============================================================================
# PROVIDER
# =============================================================================


class ClaudeProvider(UsageProvider):
    provider_id = "claude"
    display_name = "Claude"
    error_messages = {
        ErrorKind.NOT_AUTHENTICATED: "Not logged in. Run `claude` to authenticate.",
        ErrorKind.REAUTH_REQUIRED: "Token expired. Run `claude` to log in again.",
        ErrorKind.AUTH_RETRY_EXHAUSTED: "Token expired. Run `claude` to log in again.",
    }

    def build_backends(self):
        return [
            JsonFileBackend("file", CRED_FILE, CLAUDE_CODEC),
            SecretStoreBackend("keychain", KEYCHAIN_SERVICE, CLAUDE_CODEC),
        ]

    @property
    def token_policy(self) -> TokenPolicy:
        return TokenPolicy(
            trigger=TriggerKind.EXPIRY,
            window_ms=refresh_buffer_ms(),
            refresh=self.refresh_token,
        )

    async def refresh_token(
        self, ctx: "ProbeContext", credential: Credential
    ) -> Optional[TokenGrant]:
        return await post_refresh_grant(
            ctx,
            REFRESH_URL,
            {
                "grant_type": "refresh_token",
                "refresh_token": credential.refresh_token,
                "client_id": CLIENT_ID,
                "scope": SCOPES,
            },
            session_expired_message="Session expired. Run `claude` to log in again.",
            rejected_message="Token expired. Run `claude` to log in again.",
            reject_status_is_terminal=True,
        )

    async def fetch_usage(
        self, ctx: "ProbeContext", credential: Credential
    ) -> "HttpResponse":
        return await ctx.http.request(
            "GET",
            USAGE_URL,
            headers={
                "Authorization": f"Bearer {credential.access_token.strip()}",
                "Accept": "application/json",
                "Content-Type": "application/json",
                "anthropic-beta": "oauth-2025-04-20",
            },
        )

    async def parse_usage(
        self, ctx: "ProbeContext", credential: Credential, response: "HttpResponse"
    ) -> ProbeOutput:
        data = response.json()
        if not isinstance(data, dict):
            raise MalformedResponseError()

        lines: List[MetricLine] = []
        for key, label in USAGE_WINDOWS:
            window = data.get(key)
            if isinstance(window, dict) and is_number(window.get("utilization")):
                lines.append(
                    ProgressLine(
                        label=label,
                        used=float(window["utilization"]),
                        limit=100.0,
                        unit="percent",
                        resets_at=to_iso(window.get("resets_at")),
                    )
                )

        extra = data.get("extra_usage")
        if isinstance(extra, dict) and extra.get("is_enabled"):
            used = extra.get("used_credits")
            limit = extra.get("monthly_limit")
            if is_number(used) and is_number(limit) and limit > 0:
                lines.append(
                    ProgressLine(
                        label="Extra usage",
                        used=dollars(used),
                        limit=dollars(limit),
                        unit="dollars",
                    )
                )
            elif is_number(used) and used > 0:
                lines.append(TextLine(label="Extra usage", value=f"${dollars(used)}"))

        if not lines:
            lines.append(BadgeLine(label="Status", text="No usage data", color="#a3a3a3"))

        return ProbeOutput(plan=plan_label(credential.subscription_type), lines=tuple(lines))
