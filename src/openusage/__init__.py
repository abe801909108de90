# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

__version__ = "0.1.0"

from .core.errors import ClassifiedError, ErrorKind, classify_error
from .core.types import (
    BadgeLine,
    BatchComplete,
    ProbeOutput,
    ProbeResult,
    ProgressLine,
    ProviderState,
    TextLine,
)
from .orchestrator import AutoRefresher, ProbeBatchRunner, ProbeOrchestrator
from .providers import PROVIDER_PLUGINS, create_providers
from .settings import PluginSettings, SettingsStore, normalize_plugin_settings
from .usage_client import UsageClient

__all__ = [
    "AutoRefresher",
    "BadgeLine",
    "BatchComplete",
    "ClassifiedError",
    "ErrorKind",
    "PROVIDER_PLUGINS",
    "PluginSettings",
    "ProbeBatchRunner",
    "ProbeOrchestrator",
    "ProbeOutput",
    "ProbeResult",
    "ProgressLine",
    "ProviderState",
    "SettingsStore",
    "TextLine",
    "UsageClient",
    "__version__",
    "classify_error",
    "create_providers",
    "normalize_plugin_settings",
]
