# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Batch fan-out of provider probes.

start_probe_batch() spawns one task per provider and returns at once.
Each task emits exactly one ProbeResult; when the last one has been
emitted the batch emits a single BatchComplete. A probe that never
finishes is cut off by a supervising timeout and reported as a network
failure, so every batch completes.
"""

import asyncio
import logging
import uuid
from typing import Callable, Dict, Iterable, List, Optional, Set

from ..config.defaults import (
    MAX_CONCURRENT_PROBES,
    PROBE_TIMEOUT_SECONDS,
    env_int,
)
from ..core.errors import ClassifiedError, ErrorKind, classify_error
from ..core.types import BatchComplete, ProbeBatch, ProbeEvent, ProbeOutput, ProbeResult
from ..host.context import HostServices
from ..providers.probe_engine import ProbeEngine
from ..providers.provider_interface import UsageProvider

lib_logger = logging.getLogger("openusage")

ProbeListener = Callable[[ProbeEvent], None]

PROBE_TIMEOUT_MESSAGE = "Probe timed out. Try again."


class ProbeBatchRunner:
    """
    Runs probe batches and publishes their events to listeners.

    Args:
        engine: Shared probe engine (credential store + token manager)
        host: Host services used to build each probe's context
        providers: Known providers, in default order
        probe_timeout: Supervising timeout per probe in seconds
        max_concurrent: Upper bound on probes running at once
    """

    def __init__(
        self,
        engine: ProbeEngine,
        host: HostServices,
        providers: Iterable[UsageProvider],
        probe_timeout: Optional[float] = None,
        max_concurrent: Optional[int] = None,
    ):
        self.engine = engine
        self.host = host
        self._providers: Dict[str, UsageProvider] = {}
        for provider in providers:
            self._providers[provider.provider_id] = provider
            engine.register(provider)

        self.probe_timeout = (
            probe_timeout
            if probe_timeout is not None
            else env_int("OPENUSAGE_PROBE_TIMEOUT", PROBE_TIMEOUT_SECONDS)
        )
        limit = (
            max_concurrent
            if max_concurrent is not None
            else env_int("OPENUSAGE_MAX_CONCURRENT_PROBES", MAX_CONCURRENT_PROBES)
        )
        self._semaphore = asyncio.Semaphore(max(1, limit))
        self._listeners: List[ProbeListener] = []
        self._tasks: Set[asyncio.Task] = set()

    @property
    def provider_ids(self) -> List[str]:
        return list(self._providers)

    def get_provider(self, provider_id: str) -> Optional[UsageProvider]:
        return self._providers.get(provider_id)

    def subscribe(self, listener: ProbeListener) -> Callable[[], None]:
        """Register an event listener. Returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: ProbeEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                lib_logger.error(
                    f"Probe listener failed on {type(event).__name__}: {e}", exc_info=True
                )

    # =========================================================================
    # BATCHES
    # =========================================================================

    def select(self, provider_ids: Optional[Iterable[str]] = None) -> List[str]:
        """Dedupe requested ids and keep known ones, preserving order."""
        if provider_ids is None:
            return list(self._providers)
        selected: List[str] = []
        for pid in provider_ids:
            if pid in self._providers and pid not in selected:
                selected.append(pid)
            elif pid not in self._providers:
                lib_logger.debug(f"Ignoring unknown provider id '{pid}'")
        return selected

    def start_probe_batch(
        self,
        provider_ids: Optional[Iterable[str]] = None,
        batch_id: Optional[str] = None,
    ) -> ProbeBatch:
        """
        Start probing the selected providers concurrently.

        Must be called from a running event loop. An empty selection emits
        BatchComplete immediately.

        Args:
            provider_ids: Providers to probe; all known providers when None
            batch_id: Batch identity; a fresh uuid4 when blank

        Returns:
            The batch identity and the resolved provider ids
        """
        if not batch_id or not batch_id.strip():
            batch_id = str(uuid.uuid4())
        selected = self.select(provider_ids)
        batch = ProbeBatch(batch_id=batch_id, provider_ids=tuple(selected))

        if not selected:
            lib_logger.debug(f"Batch {batch_id[:8]} has no providers")
            self._emit(BatchComplete(batch_id=batch_id))
            return batch

        lib_logger.info(f"Starting probe batch {batch_id[:8]}: {', '.join(selected)}")
        remaining = {"count": len(selected)}
        for pid in selected:
            task = asyncio.create_task(
                self._run_probe(batch_id, self._providers[pid], remaining),
                name=f"probe-{pid}-{batch_id[:8]}",
            )
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        return batch

    async def _run_probe(
        self, batch_id: str, provider: UsageProvider, remaining: Dict[str, int]
    ) -> None:
        provider_id = provider.provider_id
        try:
            output = await self._probe_with_timeout(provider)
            result = ProbeResult(batch_id=batch_id, provider_id=provider_id, output=output)
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            lib_logger.warning(
                f"[{provider_id}] Probe exceeded {self.probe_timeout}s and was abandoned"
            )
            result = ProbeResult(
                batch_id=batch_id,
                provider_id=provider_id,
                error=ClassifiedError(
                    kind=ErrorKind.NETWORK,
                    message=PROBE_TIMEOUT_MESSAGE,
                    provider_id=provider_id,
                ),
            )
        except Exception as e:
            error = classify_error(e, provider_id, provider.error_messages)
            lib_logger.info(f"[{provider_id}] Probe failed ({error.kind.value}): {error.message}")
            result = ProbeResult(batch_id=batch_id, provider_id=provider_id, error=error)

        self._emit(result)
        remaining["count"] -= 1
        if remaining["count"] == 0:
            lib_logger.debug(f"Batch {batch_id[:8]} complete")
            self._emit(BatchComplete(batch_id=batch_id))

    async def _probe_with_timeout(self, provider: UsageProvider) -> ProbeOutput:
        async with self._semaphore:
            ctx = self.host.context_for(provider.provider_id)
            return await asyncio.wait_for(
                provider.probe(ctx, self.engine), timeout=self.probe_timeout
            )

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def wait_idle(self) -> None:
        """Wait until every probe task started so far has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._listeners.clear()
