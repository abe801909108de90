# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""Timer-driven refresh of every enabled provider."""

import asyncio
import logging
from typing import Optional

from ..config.defaults import (
    AUTO_REFRESH_INTERVAL_CHOICES,
    AUTO_REFRESH_INTERVAL_SECONDS,
    env_int,
)
from .orchestrator import ProbeOrchestrator

lib_logger = logging.getLogger("openusage")


class AutoRefresher:
    """
    Periodically starts an automatic batch on the orchestrator.

    Automatic batches are never subject to the manual refresh cooldown.

    Args:
        orchestrator: Orchestrator to refresh
        interval: Seconds between batches; OPENUSAGE_AUTO_REFRESH_INTERVAL
            or 15 minutes when omitted
        run_on_start: Start a batch immediately instead of after one interval
    """

    def __init__(
        self,
        orchestrator: ProbeOrchestrator,
        interval: Optional[float] = None,
        run_on_start: bool = False,
    ):
        self.orchestrator = orchestrator
        if interval is None:
            interval = env_int("OPENUSAGE_AUTO_REFRESH_INTERVAL", AUTO_REFRESH_INTERVAL_SECONDS)
            if interval not in AUTO_REFRESH_INTERVAL_CHOICES:
                lib_logger.warning(
                    f"Auto refresh interval {interval}s is not one of "
                    f"{AUTO_REFRESH_INTERVAL_CHOICES}, using it anyway"
                )
        if interval <= 0:
            raise ValueError("Auto refresh interval must be positive")
        self.interval = interval
        self.run_on_start = run_on_start
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="openusage-auto-refresh")
        lib_logger.debug(f"Auto refresh started (every {self.interval}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        lib_logger.debug("Auto refresh stopped")

    async def _loop(self) -> None:
        if self.run_on_start:
            self._tick()
        while True:
            await asyncio.sleep(self.interval)
            self._tick()

    def _tick(self) -> None:
        try:
            batch = self.orchestrator.auto_refresh()
        except Exception as e:
            lib_logger.error(f"Auto refresh failed to start a batch: {e}", exc_info=True)
            return
        lib_logger.info(f"Auto refresh started batch {batch.batch_id[:8]}")
