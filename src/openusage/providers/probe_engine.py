# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
The per-provider probe sequence, shared by every provider:

    resolve credential (or advance the device flow)
    -> proactive refresh -> usage request -> reactive refresh -> retry
    -> status check -> parse

Every step inside one probe is sequential. Errors are raised as
ProbeError subclasses and classified by the batch runner.
"""

import logging
from typing import TYPE_CHECKING

from ..auth.token_manager import TokenLifecycleManager
from ..core.errors import (
    AuthRetryExhaustedError,
    NotAuthenticatedError,
    ServerStatusError,
    is_auth_status,
)
from ..core.types import Credential, ProbeOutput, Promotion
from ..credentials.store import CredentialStore

if TYPE_CHECKING:
    from ..host.context import ProbeContext
    from ..host.http import HttpResponse
    from .provider_interface import UsageProvider

lib_logger = logging.getLogger("openusage")


class ProbeEngine:
    def __init__(self, store: CredentialStore, tokens: TokenLifecycleManager):
        self.store = store
        self.tokens = tokens

    def register(self, provider: "UsageProvider") -> None:
        provider.attach(self.store)
        backends = provider.build_backends()
        # Credential-free providers (mock) have nothing to register
        if backends:
            self.store.register(provider.provider_id, backends, provider.promotion)

    async def resolve_credential(
        self, provider: "UsageProvider", ctx: "ProbeContext"
    ) -> Credential:
        credential = await self.store.resolve(ctx)
        if credential is not None:
            return credential
        flow = provider.device_flow
        if flow is None:
            raise NotAuthenticatedError()
        return await flow.advance(ctx)

    async def run(self, provider: "UsageProvider", ctx: "ProbeContext") -> ProbeOutput:
        provider_id = provider.provider_id
        credential = await self.resolve_credential(provider, ctx)
        provider.check_credential(credential)

        async def request(current: Credential) -> "HttpResponse":
            return await provider.fetch_usage(ctx, current)

        policy = provider.token_policy
        if policy is not None:
            response, credential = await self.tokens.run_with_auth(
                ctx, credential, policy, request
            )
        else:
            response = await request(credential)
            if is_auth_status(response.status):
                lib_logger.info(
                    f"[{provider_id}] Usage request returned HTTP {response.status} "
                    f"for '{credential.source}' credential"
                )
                credential = await provider.recover_from_auth_failure(ctx, credential)
                response = await request(credential)
                if is_auth_status(response.status):
                    raise AuthRetryExhaustedError()

        if not response.ok:
            lib_logger.warning(f"[{provider_id}] Usage request returned HTTP {response.status}")
            raise ServerStatusError(response.status)

        output = await provider.parse_usage(ctx, credential, response)

        if self.store.promotion_for(provider_id) is Promotion.ON_SUCCESS:
            await self.store.promote(ctx, credential)

        lib_logger.info(f"[{provider_id}] Usage probe succeeded ({len(output.lines)} line(s))")
        return output
