# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
OAuth device authorization flow as an explicit persisted state machine.

    NoFlow -> Pending -> Pending   (authorization_pending / slow_down)
                      -> Expired   (expired_token, or local clock past expiry)
                      -> Invalid   (any other poll error)
                      -> Authorized (access_token issued)

Each probe makes at most one non-blocking poll. Pending surfaces the
"visit URL and enter code" instruction as DeviceFlowPendingError; Expired
and Invalid clear the persisted state and raise their own errors;
Authorized persists the token and hands it back so the same probe can
continue to the usage request.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Optional, Union
from urllib.parse import urlencode

from ..config.defaults import DEVICE_CODE_EXPIRES_IN_SECONDS, DEVICE_POLL_INTERVAL_SECONDS
from ..core.errors import (
    DeviceFlowExpiredError,
    DeviceFlowInvalidError,
    DeviceFlowPendingError,
    MalformedResponseError,
    ProbeNetworkError,
    ServerStatusError,
    mask_credential,
)
from ..core.types import Credential
from ..credentials.decoding import decode_secret_json, encode_compact_json

if TYPE_CHECKING:
    from ..credentials.store import CredentialStore
    from ..host.context import ProbeContext
    from ..host.http import HttpResponse

lib_logger = logging.getLogger("openusage")

DEVICE_CODE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"


# =============================================================================
# STATES
# =============================================================================


@dataclass(frozen=True)
class NoFlow:
    pass


@dataclass(frozen=True)
class Pending:
    device_code: str
    user_code: str
    expires_at_ms: int
    interval_s: int = DEVICE_POLL_INTERVAL_SECONDS


@dataclass(frozen=True)
class Expired:
    pass


@dataclass(frozen=True)
class Invalid:
    error: Optional[str] = None


@dataclass(frozen=True)
class Authorized:
    access_token: str


DeviceFlowState = Union[NoFlow, Pending, Expired, Invalid, Authorized]


def poll_transition(pending: Pending, body: Any) -> DeviceFlowState:
    """
    Map one token-endpoint poll body to the next state.

    Bodies that cannot be read keep the flow Pending; the next probe polls again.
    """
    if not isinstance(body, dict):
        return pending
    access_token = body.get("access_token")
    if isinstance(access_token, str) and access_token:
        return Authorized(access_token)
    error = body.get("error")
    if error in ("authorization_pending", "slow_down"):
        return pending
    if error == "expired_token":
        return Expired()
    if error:
        return Invalid(str(error))
    return pending


# =============================================================================
# PERSISTENCE
# =============================================================================


class DeviceFlowStateStore:
    """One JSON document per provider: `<provider data dir>/device_flow.json`."""

    FILENAME = "device_flow.json"

    def _path(self, ctx: "ProbeContext"):
        return ctx.data_dir / self.FILENAME

    def load(self, ctx: "ProbeContext") -> Union[NoFlow, Pending]:
        path = self._path(ctx)
        if not ctx.files.exists(path):
            return NoFlow()
        try:
            blob = decode_secret_json(ctx.files.read_text(path))
        except OSError as e:
            lib_logger.warning(f"[{ctx.provider_id}] Could not read device flow state: {e}")
            return NoFlow()
        if not isinstance(blob, dict):
            return NoFlow()

        device_code = blob.get("device_code")
        user_code = blob.get("user_code")
        expires_at = blob.get("expires_at")
        interval = blob.get("interval")
        if not isinstance(device_code, str) or not isinstance(user_code, str):
            return NoFlow()
        if isinstance(expires_at, bool) or not isinstance(expires_at, (int, float)):
            return NoFlow()
        if isinstance(interval, bool) or not isinstance(interval, (int, float)):
            interval = DEVICE_POLL_INTERVAL_SECONDS
        return Pending(device_code, user_code, int(expires_at), int(interval))

    def save(self, ctx: "ProbeContext", state: Pending) -> None:
        ctx.files.write_text(
            self._path(ctx),
            encode_compact_json(
                {
                    "device_code": state.device_code,
                    "user_code": state.user_code,
                    "expires_at": state.expires_at_ms,
                    "interval": state.interval_s,
                }
            ),
        )

    def clear(self, ctx: "ProbeContext") -> None:
        try:
            ctx.files.remove(self._path(ctx))
        except OSError as e:
            lib_logger.warning(f"[{ctx.provider_id}] Could not clear device flow state: {e}")


# =============================================================================
# FLOW
# =============================================================================


@dataclass(frozen=True)
class DeviceFlowConfig:
    device_code_url: str
    token_url: str
    client_id: str
    scope: str
    verification_uri: str
    # Secret store layout for the authorized token, e.g. {"token": ...}
    token_field: str = "token"


class DeviceAuthorizationFlow:
    """
    Drives one provider's device flow, one step per probe.

    Args:
        config: Endpoints and client parameters
        store: Credential store the authorized token is persisted through
        state_store: Where in-progress flow state is kept
    """

    def __init__(
        self,
        config: DeviceFlowConfig,
        store: "CredentialStore",
        state_store: Optional[DeviceFlowStateStore] = None,
    ):
        self.config = config
        self.store = store
        self.state_store = state_store or DeviceFlowStateStore()
        self._lock = asyncio.Lock()

    def _form_headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/json",
            "Content-Type": "application/x-www-form-urlencoded",
        }

    async def advance(self, ctx: "ProbeContext") -> Credential:
        """
        Take one step.

        Returns:
            The authorized, already persisted Credential

        Raises:
            DeviceFlowPendingError: user still has to enter the code
            DeviceFlowExpiredError / DeviceFlowInvalidError: flow ended, state cleared
            ProbeNetworkError / ServerStatusError / MalformedResponseError:
                the device code could not be requested
        """
        # Overlapping probes for one provider must not start two flows
        async with self._lock:
            state = self.state_store.load(ctx)
            if isinstance(state, NoFlow):
                pending = await self._start(ctx)
                raise DeviceFlowPendingError(self.config.verification_uri, pending.user_code)

            if ctx.clock.now_ms() > state.expires_at_ms:
                lib_logger.info(f"[{ctx.provider_id}] Device code expired locally")
                self.state_store.clear(ctx)
                raise DeviceFlowExpiredError()

            next_state = await self._poll(ctx, state)
            return await self._settle(ctx, state, next_state)

    async def _start(self, ctx: "ProbeContext") -> Pending:
        lib_logger.info(f"[{ctx.provider_id}] Starting device authorization flow")
        response = await ctx.http.request(
            "POST",
            self.config.device_code_url,
            headers=self._form_headers(),
            body_text=urlencode(
                {"client_id": self.config.client_id, "scope": self.config.scope}
            ),
        )
        if not response.ok:
            raise ServerStatusError(response.status)

        body = response.json()
        if not isinstance(body, dict):
            raise MalformedResponseError()
        device_code = body.get("device_code")
        user_code = body.get("user_code")
        if not isinstance(device_code, str) or not isinstance(user_code, str):
            raise MalformedResponseError()

        expires_in = body.get("expires_in")
        if isinstance(expires_in, bool) or not isinstance(expires_in, (int, float)):
            expires_in = DEVICE_CODE_EXPIRES_IN_SECONDS
        interval = body.get("interval")
        if isinstance(interval, bool) or not isinstance(interval, (int, float)):
            interval = DEVICE_POLL_INTERVAL_SECONDS

        pending = Pending(
            device_code=device_code,
            user_code=user_code,
            expires_at_ms=ctx.clock.now_ms() + int(expires_in * 1000),
            interval_s=int(interval),
        )
        self.state_store.save(ctx, pending)
        return pending

    async def _poll(self, ctx: "ProbeContext", pending: Pending) -> DeviceFlowState:
        try:
            response: "HttpResponse" = await ctx.http.request(
                "POST",
                self.config.token_url,
                headers=self._form_headers(),
                body_text=urlencode(
                    {
                        "client_id": self.config.client_id,
                        "device_code": pending.device_code,
                        "grant_type": DEVICE_CODE_GRANT_TYPE,
                    }
                ),
            )
        except ProbeNetworkError as e:
            lib_logger.warning(f"[{ctx.provider_id}] Device flow poll failed: {e}")
            return pending
        return poll_transition(pending, response.json())

    async def _settle(
        self, ctx: "ProbeContext", pending: Pending, state: DeviceFlowState
    ) -> Credential:
        if isinstance(state, Pending):
            raise DeviceFlowPendingError(self.config.verification_uri, pending.user_code)

        if isinstance(state, Expired):
            lib_logger.info(f"[{ctx.provider_id}] Device code expired")
            self.state_store.clear(ctx)
            raise DeviceFlowExpiredError()

        if isinstance(state, Invalid):
            lib_logger.warning(f"[{ctx.provider_id}] Device flow failed: {state.error}")
            self.state_store.clear(ctx)
            raise DeviceFlowInvalidError()

        backends = self.store.backends_for(ctx.provider_id)
        credential = Credential(
            provider_id=ctx.provider_id,
            source=backends[0].name if backends else "device_flow",
            access_token=state.access_token,
            last_refreshed_at_ms=ctx.clock.now_ms(),
            extra={self.config.token_field: state.access_token},
        )
        await self.store.persist(ctx, credential)
        self.state_store.clear(ctx)
        lib_logger.info(
            f"[{ctx.provider_id}] Device flow authorized ({mask_credential(state.access_token)})"
        )
        return credential
