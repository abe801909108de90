# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
UI-side probe state.

The orchestrator owns one ProviderState per provider and the id of the
single active batch. Starting a batch supersedes the previous one:
results and completions tagged with any other batch id are dropped, so a
stale probe that finishes late never touches provider state.

Manual refreshes are rate limited per provider. The cooldown starts only
when a manually requested probe succeeds; automatic refreshes ignore it.
"""

import logging
import uuid
from typing import Callable, Dict, Iterable, List, Optional, Set

from ..config.defaults import MANUAL_REFRESH_COOLDOWN_MS, env_seconds_ms
from ..core.types import BatchComplete, ProbeBatch, ProbeEvent, ProbeResult, ProviderState
from ..host.context import Clock
from .runner import ProbeBatchRunner

lib_logger = logging.getLogger("openusage")

StateListener = Callable[[str, ProviderState], None]


class ProbeOrchestrator:
    """
    Applies batch events to provider state.

    Args:
        runner: Batch runner whose events this orchestrator consumes
        clock: Time source for cooldown bookkeeping
        enabled_ids: Callable returning the enabled provider ids in display
            order; all runner providers when omitted
        cooldown_ms: Manual refresh cooldown; read from the environment
            when omitted
    """

    def __init__(
        self,
        runner: ProbeBatchRunner,
        clock: Optional[Clock] = None,
        enabled_ids: Optional[Callable[[], List[str]]] = None,
        cooldown_ms: Optional[int] = None,
    ):
        self.runner = runner
        self.clock = clock or Clock()
        self._enabled_ids = enabled_ids or (lambda: runner.provider_ids)
        self.cooldown_ms = (
            cooldown_ms
            if cooldown_ms is not None
            else env_seconds_ms("OPENUSAGE_MANUAL_COOLDOWN_SECONDS", MANUAL_REFRESH_COOLDOWN_MS)
        )
        self.states: Dict[str, ProviderState] = {
            pid: ProviderState() for pid in runner.provider_ids
        }
        self.active_batch_id: Optional[str] = None
        self._manual_ids: Set[str] = set()
        self._state_listeners: List[StateListener] = []
        self._batch_done_listeners: List[Callable[[str], None]] = []
        self._unsubscribe = runner.subscribe(self.handle_event)

    def on_state_change(self, listener: StateListener) -> None:
        self._state_listeners.append(listener)

    def on_batch_done(self, listener: Callable[[str], None]) -> None:
        self._batch_done_listeners.append(listener)

    def state_for(self, provider_id: str) -> ProviderState:
        if provider_id not in self.states:
            self.states[provider_id] = ProviderState()
        return self.states[provider_id]

    def _notify(self, provider_id: str) -> None:
        state = self.states[provider_id]
        for listener in list(self._state_listeners):
            listener(provider_id, state)

    # =========================================================================
    # BATCHES
    # =========================================================================

    def start_batch(
        self, provider_ids: Optional[Iterable[str]] = None, manual: bool = False
    ) -> ProbeBatch:
        """
        Start a batch and make it the only active one.

        Every selected provider is marked loading with its error cleared
        before any probe runs. Providers that were loading for a superseded
        batch but are not part of this one stop loading.

        Args:
            provider_ids: Providers to probe; the enabled providers when None
            manual: True when the user asked for this refresh

        Returns:
            The batch identity and the resolved provider ids
        """
        requested = list(provider_ids) if provider_ids is not None else self._enabled_ids()
        selected = self.runner.select(requested)
        batch_id = str(uuid.uuid4())

        # Activate before starting so an immediate completion is not dropped
        self.active_batch_id = batch_id
        self._manual_ids = set(selected) if manual else set()

        for pid, state in self.states.items():
            if state.loading and pid not in selected:
                state.loading = False
                self._notify(pid)
        for pid in selected:
            state = self.state_for(pid)
            state.loading = True
            state.error = None
            self._notify(pid)

        return self.runner.start_probe_batch(selected, batch_id=batch_id)

    def handle_event(self, event: ProbeEvent) -> None:
        if isinstance(event, ProbeResult):
            self.on_result(event)
        elif isinstance(event, BatchComplete):
            self.on_batch_complete(event)

    def on_result(self, result: ProbeResult) -> bool:
        """Apply a result if it belongs to the active batch. Returns True if applied."""
        if result.batch_id != self.active_batch_id:
            lib_logger.debug(
                f"[{result.provider_id}] Dropping result from stale batch {result.batch_id[:8]}"
            )
            return False

        state = self.state_for(result.provider_id)
        state.loading = False
        if result.ok:
            state.data = result.output
            state.error = None
            if result.provider_id in self._manual_ids:
                state.last_manual_refresh_at_ms = self.clock.now_ms()
        else:
            state.error = result.error
        self._manual_ids.discard(result.provider_id)
        self._notify(result.provider_id)
        return True

    def on_batch_complete(self, event: BatchComplete) -> bool:
        if event.batch_id != self.active_batch_id:
            return False
        self.active_batch_id = None
        self._manual_ids.clear()
        for listener in list(self._batch_done_listeners):
            listener(event.batch_id)
        return True

    # =========================================================================
    # MANUAL AND AUTOMATIC REFRESH
    # =========================================================================

    def cooldown_remaining_ms(self, provider_id: str) -> int:
        last = self.state_for(provider_id).last_manual_refresh_at_ms
        if last is None:
            return 0
        return max(0, last + self.cooldown_ms - self.clock.now_ms())

    def can_manual_refresh(self, provider_id: str) -> bool:
        return self.cooldown_remaining_ms(provider_id) == 0

    def request_manual_refresh(
        self, provider_ids: Optional[Iterable[str]] = None
    ) -> Optional[ProbeBatch]:
        """
        Refresh the given providers (enabled ones when None) that are out of cooldown.

        Returns:
            The started batch, or None when every provider is cooling down
        """
        requested = list(provider_ids) if provider_ids is not None else self._enabled_ids()
        allowed = [pid for pid in requested if self.can_manual_refresh(pid)]
        skipped = [pid for pid in requested if pid not in allowed]
        if skipped:
            lib_logger.info(f"Manual refresh skipped (cooldown): {', '.join(skipped)}")
        if not allowed:
            return None
        return self.start_batch(allowed, manual=True)

    def auto_refresh(self) -> ProbeBatch:
        return self.start_batch()

    def enable_provider(self, provider_id: str) -> ProbeBatch:
        """Probe a provider that was just enabled, on its own."""
        return self.start_batch([provider_id])

    def close(self) -> None:
        self._unsubscribe()
