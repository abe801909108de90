# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from typing import Dict, List, Optional, Type

from .claude_provider import ClaudeProvider
from .codex_provider import CodexProvider
from .copilot_provider import CopilotProvider
from .cursor_provider import CursorProvider
from .mock_provider import MockProvider
from .probe_engine import ProbeEngine
from .provider_interface import UsageProvider

# Provider id -> class, in default display order
PROVIDER_PLUGINS: Dict[str, Type[UsageProvider]] = {
    "claude": ClaudeProvider,
    "codex": CodexProvider,
    "cursor": CursorProvider,
    "copilot": CopilotProvider,
    "mock": MockProvider,
}


def create_providers(provider_ids: Optional[List[str]] = None) -> List[UsageProvider]:
    """
    Instantiate providers by id, in the order given.

    Unknown ids are skipped. With no ids, every registered provider is
    created in default order.
    """
    ids = provider_ids if provider_ids is not None else list(PROVIDER_PLUGINS)
    return [PROVIDER_PLUGINS[pid]() for pid in ids if pid in PROVIDER_PLUGINS]


__all__ = [
    "ClaudeProvider",
    "CodexProvider",
    "CopilotProvider",
    "CursorProvider",
    "MockProvider",
    "PROVIDER_PLUGINS",
    "ProbeEngine",
    "UsageProvider",
    "create_providers",
]
