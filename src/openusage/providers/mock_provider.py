# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Credential-free provider for demos and UI work.

The mode comes from `<provider data dir>/config.json`
({"mode": ...}), created with mode "ok" on first use.
With "chaos" the provider walks a fixed list of cases, one per probe,
keeping its position in state.json so runs are reproducible.
"""

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..core.errors import MalformedResponseError, ProbeNetworkError, ServerStatusError
from ..core.types import BadgeLine, MetricLine, ProbeOutput, ProgressLine, TextLine
from .provider_interface import UsageProvider

if TYPE_CHECKING:
    from ..host.context import ProbeContext
    from .probe_engine import ProbeEngine

lib_logger = logging.getLogger("openusage")

DEFAULT_CONFIG: Dict[str, Any] = {"mode": "ok"}

CHAOS_CASES = (
    "ok",
    "empty",
    "malformed",
    "server_error",
    "network_error",
    "hang",
)


class MockProvider(UsageProvider):
    provider_id = "mock"
    display_name = "Mock"

    def build_backends(self):
        return []

    # =========================================================================
    # CONFIG AND STATE
    # =========================================================================

    def _read_json(self, ctx: "ProbeContext", name: str) -> Optional[Dict[str, Any]]:
        path = ctx.data_dir / name
        if not ctx.files.exists(path):
            return None
        try:
            value = json.loads(ctx.files.read_text(path))
        except (OSError, json.JSONDecodeError) as e:
            lib_logger.warning(f"[{self.provider_id}] Could not read {path}: {e}")
            return None
        return value if isinstance(value, dict) else None

    def _write_json(self, ctx: "ProbeContext", name: str, value: Dict[str, Any]) -> None:
        try:
            ctx.files.write_text(ctx.data_dir / name, json.dumps(value, indent=2))
        except OSError as e:
            lib_logger.warning(f"[{self.provider_id}] Could not write {name}: {e}")

    def read_mode(self, ctx: "ProbeContext") -> str:
        config = self._read_json(ctx, "config.json")
        if config is None:
            self._write_json(ctx, "config.json", DEFAULT_CONFIG)
            return DEFAULT_CONFIG["mode"]
        mode = config.get("mode")
        return mode if isinstance(mode, str) else DEFAULT_CONFIG["mode"]

    def next_chaos_case(self, ctx: "ProbeContext") -> str:
        state = self._read_json(ctx, "state.json") or {}
        previous = state.get("counter")
        counter = previous + 1 if isinstance(previous, int) and previous >= 0 else 0
        picked = CHAOS_CASES[counter % len(CHAOS_CASES)]
        self._write_json(
            ctx, "state.json", {"counter": counter, "picked": picked, "nowIso": ctx.clock.now_iso()}
        )
        return picked

    # =========================================================================
    # PROBE
    # =========================================================================

    async def probe(self, ctx: "ProbeContext", engine: "ProbeEngine") -> ProbeOutput:
        configured = self.read_mode(ctx)
        mode = self.next_chaos_case(ctx) if configured == "chaos" else configured
        lib_logger.info(f"[{self.provider_id}] Probe mode: {mode} (configured: {configured})")

        if mode == "malformed":
            raise MalformedResponseError()
        if mode == "server_error":
            raise ServerStatusError(503)
        if mode == "network_error":
            raise ProbeNetworkError()
        if mode == "hang":
            # Left to the runner's probe timeout
            await asyncio.Event().wait()

        lines: List[MetricLine] = [BadgeLine(label="Mode", text=configured, color="#000000")]
        if mode == "empty":
            return ProbeOutput(plan=None, lines=tuple(lines))
        if mode != "ok":
            lines.append(BadgeLine(label="Warning", text=f"unknown mode: {mode}", color="#f59e0b"))
            return ProbeOutput(plan=None, lines=tuple(lines))

        lines.extend(
            [
                ProgressLine(label="Percent", used=42.0, limit=100.0, unit="percent", color="#22c55e"),
                ProgressLine(label="Dollars", used=12.34, limit=100.0, unit="dollars", color="#3b82f6"),
                TextLine(label="Now", value=ctx.clock.now_iso()),
            ]
        )
        return ProbeOutput(plan="Mock", lines=tuple(lines))
