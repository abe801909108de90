# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Cursor IDE usage provider.

Cursor keeps its OAuth tokens in the editor's VS Code style state
database (`ItemTable`, keys cursorAuth/accessToken and
cursorAuth/refreshToken). Expiry comes from the access token's JWT `exp`
claim. A refresh answered with shouldLogout, or rejected with 400/401,
means the user must sign in through the Cursor app again.
"""

import logging
import sys
from typing import TYPE_CHECKING, Optional

from ..auth.oauth import post_refresh_grant
from ..auth.token_manager import refresh_buffer_ms
from ..core.errors import ErrorKind
from ..core.types import Credential, ProbeOutput, TokenGrant, TokenPolicy, TriggerKind
from ..credentials.backends import SqliteStateBackend
from .provider_interface import UsageProvider
from .utilities.cursor_usage_tracker import CURSOR_API_BASE, CursorUsageTracker

if TYPE_CHECKING:
    from ..host.context import ProbeContext
    from ..host.http import HttpResponse

lib_logger = logging.getLogger("openusage")

REFRESH_URL = f"{CURSOR_API_BASE}/oauth/token"
CLIENT_ID = "KbZUR41cY7W6zRSdpSUJ7I7mLYBKOCmB"

ACCESS_TOKEN_KEY = "cursorAuth/accessToken"
REFRESH_TOKEN_KEY = "cursorAuth/refreshToken"


def default_state_db() -> str:
    if sys.platform == "darwin":
        base = "~/Library/Application Support/Cursor"
    elif sys.platform.startswith("win"):
        base = "~/AppData/Roaming/Cursor"
    else:
        base = "~/.config/Cursor"
    return f"{base}/User/globalStorage/state.vscdb"


class CursorProvider(CursorUsageTracker, UsageProvider):
    provider_id = "cursor"
    display_name = "Cursor"
    error_messages = {
        ErrorKind.NOT_AUTHENTICATED: "Not logged in. Sign in via Cursor app.",
        ErrorKind.REAUTH_REQUIRED: "Session expired. Sign in via Cursor app.",
        ErrorKind.AUTH_RETRY_EXHAUSTED: "Token expired. Sign in via Cursor app.",
    }

    def __init__(self, state_db: Optional[str] = None):
        self.state_db = state_db or default_state_db()

    def build_backends(self):
        return [
            SqliteStateBackend(
                "state_db", self.state_db, ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY
            )
        ]

    @property
    def token_policy(self) -> TokenPolicy:
        return TokenPolicy(
            trigger=TriggerKind.EXPIRY,
            window_ms=refresh_buffer_ms(),
            refresh=self.refresh_token,
            expiry_from_jwt=True,
        )

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
            session_expired_message="Session expired. Sign in via Cursor app.",
            rejected_message="Token expired. Sign in via Cursor app.",
            reject_status_is_terminal=True,
        )

    async def fetch_usage(
        self, ctx: "ProbeContext", credential: Credential
    ) -> "HttpResponse":
        return await self.fetch_cursor_usage(ctx, credential.access_token)

    async def parse_usage(
        self, ctx: "ProbeContext", credential: Credential, response: "HttpResponse"
    ) -> ProbeOutput:
        lines = self.extract_cursor_lines(response.json())
        plan = await self.fetch_cursor_plan_name(ctx, credential.access_token)
        return ProbeOutput(plan=plan, lines=tuple(lines))
