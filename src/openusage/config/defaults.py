# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/openusage/config/defaults.py
"""
Default configuration values for the openusage library.

Every tunable has a typed module constant here. Values marked with an
environment variable can be overridden at runtime; call sites read them
through env_int()/env_seconds_ms() when their owning object is constructed.
"""

import logging
import os

lib_logger = logging.getLogger("openusage")


def env_int(name: str, default: int) -> int:
    """Parse an integer from environment variable with fallback to default."""
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        lib_logger.warning(f"Invalid value for {name}: {raw!r}, using {default}")
        return default


def env_seconds_ms(name: str, default_ms: int) -> int:
    """Read a seconds value from the environment and return milliseconds."""
    return env_int(name, default_ms // 1000) * 1000


# =============================================================================
# TOKEN LIFECYCLE
# =============================================================================

# Expiry-based policies refresh when now + buffer >= expires_at
# Override: OPENUSAGE_REFRESH_BUFFER_SECONDS
REFRESH_BUFFER_MS: int = 5 * 60 * 1000

# Age-based policy for the CLI agent that rotates on a fixed cadence
CODEX_MAX_TOKEN_AGE_MS: int = 8 * 24 * 60 * 60 * 1000

# =============================================================================
# HTTP
# =============================================================================

# Default per-request timeout. Override: OPENUSAGE_HTTP_TIMEOUT (seconds)
HTTP_TIMEOUT_MS: int = 10_000

# Token endpoint timeout. Override: OPENUSAGE_REFRESH_TIMEOUT (seconds)
REFRESH_TIMEOUT_MS: int = 15_000

USER_AGENT: str = "OpenUsage"

# =============================================================================
# PROBE ORCHESTRATION
# =============================================================================

# Supervising timeout around one provider probe, in seconds.
# Override: OPENUSAGE_PROBE_TIMEOUT
PROBE_TIMEOUT_SECONDS: int = 60

# Upper bound on probes running at the same time.
# Override: OPENUSAGE_MAX_CONCURRENT_PROBES
MAX_CONCURRENT_PROBES: int = 8

# Minimum gap between honored manual refreshes of one provider.
# Override: OPENUSAGE_MANUAL_COOLDOWN_SECONDS
MANUAL_REFRESH_COOLDOWN_MS: int = 5 * 60 * 1000

# Automatic refresh interval in seconds (choices offered by the app: 5/15/30/60 min).
# Override: OPENUSAGE_AUTO_REFRESH_INTERVAL
AUTO_REFRESH_INTERVAL_SECONDS: int = 15 * 60
AUTO_REFRESH_INTERVAL_CHOICES = (5 * 60, 15 * 60, 30 * 60, 60 * 60)

# =============================================================================
# DEVICE AUTHORIZATION
# =============================================================================

# Used when the device-code response omits expires_in / interval
DEVICE_CODE_EXPIRES_IN_SECONDS: int = 900
DEVICE_POLL_INTERVAL_SECONDS: int = 5

# =============================================================================
# HOST
# =============================================================================

# Timeout for the `security` / `secret-tool` subprocesses
SECRET_STORE_TIMEOUT_SECONDS: int = 5

SQLITE_BUSY_TIMEOUT_SECONDS: float = 5.0
