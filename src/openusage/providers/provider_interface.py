# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Base class for usage providers.

A provider describes where its credential lives, how its token is
refreshed, how to ask the vendor for usage and how to turn the answer into
metric lines. The shared request/refresh/retry sequence lives in
ProbeEngine; providers only override the hooks they need.
"""

from types import MappingProxyType
from typing import TYPE_CHECKING, List, Mapping, Optional

from ..core.errors import AuthRetryExhaustedError, ErrorKind, NotAuthenticatedError
from ..core.types import Credential, ProbeOutput, Promotion, TokenPolicy

if TYPE_CHECKING:
    from ..auth.device_flow import DeviceAuthorizationFlow
    from ..credentials.backends import CredentialBackend
    from ..credentials.store import CredentialStore
    from ..host.context import ProbeContext
    from ..host.http import HttpResponse
    from .probe_engine import ProbeEngine


class UsageProvider:
    provider_id: str = ""
    display_name: str = ""
    promotion: Promotion = Promotion.NEVER
    # Provider-specific wording for errors raised with their default message
    error_messages: Mapping[ErrorKind, str] = MappingProxyType({})

    def attach(self, store: "CredentialStore") -> None:
        """Called once when the provider is registered with an engine."""

    def build_backends(self) -> List["CredentialBackend"]:
        """Ordered credential backends, primary first."""
        raise NotImplementedError

    @property
    def token_policy(self) -> Optional[TokenPolicy]:
        return None

    @property
    def device_flow(self) -> Optional["DeviceAuthorizationFlow"]:
        return None

    def check_credential(self, credential: Credential) -> None:
        """Reject credentials that cannot be used for usage requests."""
        if not (credential.access_token or credential.refresh_token):
            raise NotAuthenticatedError()

    async def recover_from_auth_failure(
        self, ctx: "ProbeContext", credential: Credential
    ) -> Credential:
        """
        Called once when a provider without a TokenPolicy gets 401/403.

        Returns a replacement credential to retry with, or raises.
        """
        raise AuthRetryExhaustedError()

    async def fetch_usage(
        self, ctx: "ProbeContext", credential: Credential
    ) -> "HttpResponse":
        raise NotImplementedError

    async def parse_usage(
        self, ctx: "ProbeContext", credential: Credential, response: "HttpResponse"
    ) -> ProbeOutput:
        raise NotImplementedError

    async def probe(self, ctx: "ProbeContext", engine: "ProbeEngine") -> ProbeOutput:
        return await engine.run(self, ctx)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.provider_id!r})"
