# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Token Lifecycle Manager.

Decides when a credential needs refreshing, performs the refresh through
the provider's TokenPolicy, persists the result, and wraps one usage
request with the proactive/reactive refresh budget:

    resolve -> [proactive refresh] -> request -> on 401/403:
    [reactive refresh] -> retry once -> on 401/403: AuthRetryExhaustedError

Refreshes for the same provider are serialized; a caller that waited on
another caller's refresh reuses its result instead of spending the
refresh token a second time.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, Optional, Set, Tuple

from ..config.defaults import REFRESH_BUFFER_MS, env_seconds_ms
from ..core.errors import (
    AuthRetryExhaustedError,
    NotAuthenticatedError,
    ReAuthRequiredError,
    is_auth_status,
    mask_credential,
)
from ..core.types import Credential, TokenPolicy, TriggerKind
from ..credentials.store import CredentialStore
from .jwt import jwt_expiry_ms

if TYPE_CHECKING:
    from ..host.context import ProbeContext
    from ..host.http import HttpResponse

lib_logger = logging.getLogger("openusage")

UsageRequest = Callable[[Credential], Awaitable["HttpResponse"]]


def refresh_buffer_ms() -> int:
    return env_seconds_ms("OPENUSAGE_REFRESH_BUFFER_SECONDS", REFRESH_BUFFER_MS)


def needs_refresh_by_expiry(
    now_ms: int, expires_at_ms: Optional[int], buffer_ms: int
) -> bool:
    """Missing expiry counts as expired."""
    if expires_at_ms is None:
        return True
    return now_ms + buffer_ms >= expires_at_ms


def needs_refresh_by_age(
    now_ms: int, last_refreshed_at_ms: Optional[int], max_age_ms: int
) -> bool:
    if last_refreshed_at_ms is None:
        return True
    return now_ms - last_refreshed_at_ms > max_age_ms


class TokenLifecycleManager:
    def __init__(self, store: CredentialStore):
        self._store = store
        self._refresh_locks: Dict[str, asyncio.Lock] = {}
        # Latest rotated credential per provider and the refresh token spent on it
        self._latest: Dict[str, Credential] = {}
        self._spent_refresh_tokens: Dict[str, str] = {}
        self._inflight: Set[asyncio.Task] = set()

    @property
    def store(self) -> CredentialStore:
        return self._store

    def _get_lock(self, provider_id: str) -> asyncio.Lock:
        # No await between lookup and insert, so no master lock is needed
        lock = self._refresh_locks.get(provider_id)
        if lock is None:
            lock = asyncio.Lock()
            self._refresh_locks[provider_id] = lock
        return lock

    def expires_at_ms(self, policy: TokenPolicy, credential: Credential) -> Optional[int]:
        if credential.expires_at_ms is not None:
            return credential.expires_at_ms
        if policy.expiry_from_jwt:
            return jwt_expiry_ms(credential.access_token)
        return None

    def needs_refresh(
        self, policy: TokenPolicy, credential: Credential, now_ms: int
    ) -> bool:
        if not credential.access_token:
            return True
        if policy.trigger is TriggerKind.AGE:
            return needs_refresh_by_age(
                now_ms, credential.last_refreshed_at_ms, policy.window_ms
            )
        return needs_refresh_by_expiry(
            now_ms, self.expires_at_ms(policy, credential), policy.window_ms
        )

    async def refresh(
        self,
        ctx: "ProbeContext",
        credential: Credential,
        policy: TokenPolicy,
        reason: str = "proactive",
    ) -> Optional[Credential]:
        """
        Refresh a credential once and persist the result.

        Returns:
            A new Credential carrying the rotated tokens, or None on a soft
            failure (no refresh token, network error, unusable response)

        Raises:
            ReAuthRequiredError: the token endpoint rejected the refresh token
        """
        provider_id = ctx.provider_id
        if not credential.refresh_token:
            lib_logger.debug(f"[{provider_id}] No refresh token, skipping {reason} refresh")
            return None

        # A probe cancelled mid-refresh must not drop the rotated token before it is persisted
        task = asyncio.ensure_future(self._refresh_serialized(ctx, credential, policy, reason))
        self._inflight.add(task)
        task.add_done_callback(self._forget)
        return await asyncio.shield(task)

    def _forget(self, task: asyncio.Task) -> None:
        self._inflight.discard(task)
        if not task.cancelled() and task.exception() is not None:
            lib_logger.debug(f"Refresh task ended with {type(task.exception()).__name__}")

    async def _refresh_serialized(
        self,
        ctx: "ProbeContext",
        credential: Credential,
        policy: TokenPolicy,
        reason: str,
    ) -> Optional[Credential]:
        provider_id = ctx.provider_id
        async with self._get_lock(provider_id):
            # Another probe already spent this refresh token; its result is newer
            latest = self._latest.get(provider_id)
            if (
                latest is not None
                and self._spent_refresh_tokens.get(provider_id) == credential.refresh_token
                and latest.access_token != credential.access_token
            ):
                lib_logger.info(
                    f"[{provider_id}] Reusing token refreshed by a concurrent probe"
                )
                return latest

            lib_logger.info(
                f"[{provider_id}] Attempting {reason} token refresh "
                f"(refresh token {mask_credential(credential.refresh_token)})"
            )
            try:
                grant = await policy.refresh(ctx, credential)
            except ReAuthRequiredError:
                raise
            except Exception as e:
                lib_logger.warning(
                    f"[{provider_id}] Token refresh failed: {type(e).__name__}: {e}"
                )
                return None

            if grant is None or not grant.access_token:
                lib_logger.warning(f"[{provider_id}] Token refresh returned no token")
                return None

            now_ms = ctx.clock.now_ms()
            if grant.expires_in_s is not None:
                expires_at_ms = now_ms + grant.expires_in_s * 1000
            else:
                expires_at_ms = jwt_expiry_ms(grant.access_token)
            refreshed = credential.with_grant(grant, now_ms, expires_at_ms)

            await self._store.persist(ctx, refreshed)

            self._spent_refresh_tokens[provider_id] = credential.refresh_token
            self._latest[provider_id] = refreshed
            lib_logger.info(
                f"[{provider_id}] Token refreshed ({mask_credential(refreshed.access_token)})"
            )
            return refreshed

    async def run_with_auth(
        self,
        ctx: "ProbeContext",
        credential: Credential,
        policy: Optional[TokenPolicy],
        request: UsageRequest,
    ) -> Tuple["HttpResponse", Credential]:
        """
        Perform one usage request under the refresh budget.

        At most one proactive refresh, one request, and on an auth-class
        status one reactive refresh plus one retry.

        Returns:
            (response, credential used for it). The response may carry any
            non-auth status; classifying it is the caller's job.

        Raises:
            NotAuthenticatedError: no access token and no way to get one
            ReAuthRequiredError: a refresh was rejected for good
            AuthRetryExhaustedError: still 401/403 after the reactive refresh
        """
        provider_id = ctx.provider_id
        current = credential

        if policy is not None and self.needs_refresh(policy, current, ctx.clock.now_ms()):
            refreshed = await self.refresh(ctx, current, policy, reason="proactive")
            if refreshed is not None:
                current = refreshed
            elif current.access_token:
                lib_logger.info(
                    f"[{provider_id}] Proactive refresh failed, trying the existing token"
                )

        if not current.access_token:
            raise NotAuthenticatedError()

        response = await request(current)
        if not is_auth_status(response.status):
            return response, current

        lib_logger.info(
            f"[{provider_id}] Usage request returned HTTP {response.status}, "
            f"attempting reactive refresh"
        )
        if policy is None:
            raise AuthRetryExhaustedError()

        refreshed = await self.refresh(ctx, current, policy, reason="reactive")
        if refreshed is None:
            raise AuthRetryExhaustedError()

        response = await request(refreshed)
        if is_auth_status(response.status):
            lib_logger.warning(
                f"[{provider_id}] Still HTTP {response.status} after refresh, giving up"
            )
            raise AuthRetryExhaustedError()
        return response, refreshed
