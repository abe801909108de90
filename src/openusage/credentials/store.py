# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Credential Store Adapter.

One instance per process holds every provider's ordered backend list.
Resolution walks that list and returns the first structurally valid
credential; values are never merged across backends.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence

from ..core.errors import mask_credential
from ..core.types import Credential, Promotion
from .backends import CredentialBackend

if TYPE_CHECKING:
    from ..host.context import ProbeContext

lib_logger = logging.getLogger("openusage")


@dataclass
class _Registration:
    backends: List[CredentialBackend]
    promotion: Promotion


class CredentialStore:
    def __init__(self):
        self._registrations: Dict[str, _Registration] = {}

    def register(
        self,
        provider_id: str,
        backends: Sequence[CredentialBackend],
        promotion: Promotion = Promotion.ON_RESOLVE,
    ) -> None:
        """
        Register a provider's backends, fastest/primary first.

        promotion controls when a credential found in a later backend is
        copied into backends[0]: while resolving, only after a successful
        probe (the caller invokes promote()), or never.
        """
        if not backends:
            raise ValueError(f"Provider '{provider_id}' needs at least one backend")
        self._registrations[provider_id] = _Registration(list(backends), promotion)

    def backends_for(self, provider_id: str) -> List[CredentialBackend]:
        registration = self._registrations.get(provider_id)
        return list(registration.backends) if registration else []

    def promotion_for(self, provider_id: str) -> Promotion:
        registration = self._registrations.get(provider_id)
        return registration.promotion if registration else Promotion.NEVER

    def _backend_named(
        self, provider_id: str, name: str
    ) -> Optional[CredentialBackend]:
        for backend in self.backends_for(provider_id):
            if backend.name == name:
                return backend
        return None

    async def resolve(self, ctx: "ProbeContext") -> Optional[Credential]:
        """
        Find the provider's credential.

        Returns:
            The first backend's structurally valid credential, or None when no
            backend holds one.
        """
        provider_id = ctx.provider_id
        backends = self.backends_for(provider_id)
        for index, backend in enumerate(backends):
            credential = await backend.load(ctx)
            if credential is None or not credential.has_secret:
                continue

            lib_logger.debug(
                f"[{provider_id}] Resolved credential from '{backend.name}' "
                f"(token {mask_credential(credential.access_token)})"
            )
            if index > 0 and self.promotion_for(provider_id) is Promotion.ON_RESOLVE:
                await self.promote(ctx, credential)
            return credential

        lib_logger.debug(f"[{provider_id}] No credential found in {len(backends)} backend(s)")
        return None

    async def promote(self, ctx: "ProbeContext", credential: Credential) -> bool:
        """
        Copy a credential into the primary backend. Failures are logged only.

        Returns:
            True when the primary backend now holds the credential
        """
        backends = self.backends_for(ctx.provider_id)
        if not backends:
            return False
        primary = backends[0]
        if primary.name == credential.source or not primary.writable:
            return False
        try:
            await primary.save(ctx, credential)
        except Exception as e:
            lib_logger.warning(
                f"[{ctx.provider_id}] Could not promote credential from "
                f"'{credential.source}' to '{primary.name}': {e}"
            )
            return False
        lib_logger.info(
            f"[{ctx.provider_id}] Promoted credential from '{credential.source}' to '{primary.name}'"
        )
        return True

    async def persist(self, ctx: "ProbeContext", credential: Credential) -> bool:
        """
        Write a credential back to the backend it came from.

        When that backend is read-only or the write fails, the remaining
        writable backends are tried in order (the local JSON state file is
        the last resort). Returns False when nothing could be written.
        """
        backends = self.backends_for(ctx.provider_id)
        origin = self._backend_named(ctx.provider_id, credential.source)
        ordered = ([origin] if origin is not None else []) + [
            b for b in backends if b is not origin
        ]

        for backend in ordered:
            if not backend.writable:
                continue
            try:
                await backend.save(ctx, credential)
            except Exception as e:
                lib_logger.warning(
                    f"[{ctx.provider_id}] Failed to persist credential to '{backend.name}': {e}"
                )
                continue
            lib_logger.debug(f"[{ctx.provider_id}] Persisted credential to '{backend.name}'")
            return True

        lib_logger.error(f"[{ctx.provider_id}] Credential could not be persisted to any backend")
        return False

    async def invalidate(self, ctx: "ProbeContext", source: Optional[str] = None) -> None:
        """Clear the credential from one backend, or from every writable backend."""
        for backend in self.backends_for(ctx.provider_id):
            if not backend.writable:
                continue
            if source is not None and backend.name != source:
                continue
            try:
                await backend.clear(ctx)
            except Exception as e:
                lib_logger.warning(
                    f"[{ctx.provider_id}] Failed to clear credential in '{backend.name}': {e}"
                )
                continue
            lib_logger.info(f"[{ctx.provider_id}] Cleared credential in '{backend.name}'")
