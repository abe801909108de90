# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
GitHub Copilot usage provider.

Credential sources, in order:
- secret store "OpenUsage-copilot"    {"token": ...}   (ours, primary)
- secret store "gh:github.com"        gh CLI token, often go-keyring base64
- <provider data dir>/auth.json       {"token": ...}   (local fallback)

With no credential, the GitHub device flow is started; each probe polls
it once. A gh CLI token is borrowed: when it is rejected the device flow
takes over, and when it works it is copied into our own entry. A rejected
token of our own is cleared, so the next probe signs in again.

API Details:
- Usage: GET https://api.github.com/copilot_internal/user (Authorization: token X)
- Response: {"copilot_plan", "quota_reset_date",
             "quota_snapshots": {"premium_interactions": {...}, "chat": {...}}}
"""

import logging
from typing import TYPE_CHECKING, Any, List, Optional

from ..auth.device_flow import DeviceAuthorizationFlow, DeviceFlowConfig
from ..core.errors import AuthRetryExhaustedError, ErrorKind, MalformedResponseError
from ..core.types import (
    BadgeLine,
    Credential,
    MetricLine,
    ProbeOutput,
    ProgressLine,
    Promotion,
)
from ..credentials.backends import CredentialCodec, JsonFileBackend, SecretStoreBackend
from .provider_interface import UsageProvider
from .utilities.formatting import is_number, plan_label, to_iso

if TYPE_CHECKING:
    from ..credentials.store import CredentialStore
    from ..host.context import ProbeContext
    from ..host.http import HttpResponse

lib_logger = logging.getLogger("openusage")

KEYCHAIN_SERVICE = "OpenUsage-copilot"
GH_KEYCHAIN_SERVICE = "gh:github.com"
STATE_FILENAME = "auth.json"
GH_CLI_SOURCE = "gh-cli"
OWN_SOURCES = frozenset({"keychain", "state"})

USAGE_URL = "https://api.github.com/copilot_internal/user"

DEVICE_FLOW = DeviceFlowConfig(
    device_code_url="https://github.com/login/device/code",
    token_url="https://github.com/login/oauth/access_token",
    client_id="Iv1.b507a08c87ecfe98",
    scope="read:user",
    verification_uri="github.com/login/device",
)

TOKEN_INVALID_MESSAGE = "Token invalid. Refresh to sign in again."


# =============================================================================
# CREDENTIAL CODEC
# =============================================================================


def parse_copilot_credential(value: Any, source: str) -> Optional[Credential]:
    token = value.get("token") if isinstance(value, dict) else value
    if not isinstance(token, str) or not token.strip():
        return None
    return Credential(provider_id="copilot", source=source, access_token=token.strip())


def serialize_copilot_credential(credential: Credential) -> Any:
    return {"token": credential.access_token}


COPILOT_CODEC = CredentialCodec(
    parse=parse_copilot_credential, serialize=serialize_copilot_credential
)


def _state_file(ctx: "ProbeContext"):
    return ctx.data_dir / STATE_FILENAME


# =============================================================================
# USAGE PARSING
# =============================================================================


def _snapshot_line(label: str, snapshot: Any, reset_date: Any) -> Optional[ProgressLine]:
    if not isinstance(snapshot, dict) or not is_number(snapshot.get("percent_remaining")):
        return None
    return ProgressLine(
        label=label,
        used=max(0.0, 100.0 - float(snapshot["percent_remaining"])),
        limit=100.0,
        unit="percent",
        resets_at=to_iso(reset_date),
    )


class CopilotProvider(UsageProvider):
    provider_id = "copilot"
    display_name = "Copilot"
    promotion = Promotion.ON_SUCCESS
    error_messages = {
        ErrorKind.AUTH_RETRY_EXHAUSTED: TOKEN_INVALID_MESSAGE,
        ErrorKind.NOT_AUTHENTICATED: "Not logged in. Refresh to sign in with GitHub.",
    }

    def __init__(self):
        self._store: Optional["CredentialStore"] = None
        self._device_flow: Optional[DeviceAuthorizationFlow] = None

    def attach(self, store: "CredentialStore") -> None:
        self._store = store
        self._device_flow = DeviceAuthorizationFlow(DEVICE_FLOW, store)

    @property
    def device_flow(self) -> Optional[DeviceAuthorizationFlow]:
        return self._device_flow

    def build_backends(self):
        return [
            SecretStoreBackend("keychain", KEYCHAIN_SERVICE, COPILOT_CODEC),
            SecretStoreBackend(
                GH_CLI_SOURCE,
                GH_KEYCHAIN_SERVICE,
                COPILOT_CODEC,
                writable=False,
                accept_raw=True,
            ),
            JsonFileBackend("state", _state_file, COPILOT_CODEC),
        ]

    async def recover_from_auth_failure(
        self, ctx: "ProbeContext", credential: Credential
    ) -> Credential:
        if credential.source != GH_CLI_SOURCE or self._device_flow is None:
            # Our own token is dead; clear it so the next refresh reaches gh CLI or the device flow
            if self._store is not None and credential.source in OWN_SOURCES:
                lib_logger.info(
                    f"[{self.provider_id}] Token from '{credential.source}' rejected, clearing it"
                )
                await self._store.invalidate(ctx, credential.source)
            raise AuthRetryExhaustedError(TOKEN_INVALID_MESSAGE)
        lib_logger.info(f"[{self.provider_id}] gh CLI token rejected, falling through to device flow")
        return await self._device_flow.advance(ctx)

    async def fetch_usage(
        self, ctx: "ProbeContext", credential: Credential
    ) -> "HttpResponse":
        return await ctx.http.request(
            "GET",
            USAGE_URL,
            headers={
                "Authorization": f"token {credential.access_token}",
                "Accept": "application/json",
                "Editor-Version": "vscode/1.96.2",
                "Editor-Plugin-Version": "copilot-chat/0.26.7",
                "X-Github-Api-Version": "2025-04-01",
            },
        )

    async def parse_usage(
        self, ctx: "ProbeContext", credential: Credential, response: "HttpResponse"
    ) -> ProbeOutput:
        data = response.json()
        if not isinstance(data, dict):
            raise MalformedResponseError()

        lines: List[MetricLine] = []
        snapshots = data.get("quota_snapshots")
        if isinstance(snapshots, dict):
            reset_date = data.get("quota_reset_date")
            for key, label in (("premium_interactions", "Premium"), ("chat", "Chat")):
                line = _snapshot_line(label, snapshots.get(key), reset_date)
                if line is not None:
                    lines.append(line)

        if not lines:
            lines.append(BadgeLine(label="Status", text="No usage data", color="#a3a3a3"))
        return ProbeOutput(plan=plan_label(data.get("copilot_plan")), lines=tuple(lines))
