# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from .background_refresher import AutoRefresher
from .orchestrator import ProbeOrchestrator
from .runner import PROBE_TIMEOUT_MESSAGE, ProbeBatchRunner

__all__ = [
    "AutoRefresher",
    "PROBE_TIMEOUT_MESSAGE",
    "ProbeBatchRunner",
    "ProbeOrchestrator",
]
