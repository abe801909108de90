# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from .device_flow import (
    Authorized,
    DeviceAuthorizationFlow,
    DeviceFlowConfig,
    DeviceFlowStateStore,
    Expired,
    Invalid,
    NoFlow,
    Pending,
    poll_transition,
)
from .jwt import decode_jwt_payload, jwt_expiry_ms
from .oauth import is_terminal_rejection, post_refresh_grant
from .token_manager import (
    TokenLifecycleManager,
    needs_refresh_by_age,
    needs_refresh_by_expiry,
    refresh_buffer_ms,
)

__all__ = [
    "Authorized",
    "DeviceAuthorizationFlow",
    "DeviceFlowConfig",
    "DeviceFlowStateStore",
    "Expired",
    "Invalid",
    "NoFlow",
    "Pending",
    "TokenLifecycleManager",
    "decode_jwt_payload",
    "is_terminal_rejection",
    "jwt_expiry_ms",
    "needs_refresh_by_age",
    "needs_refresh_by_expiry",
    "poll_transition",
    "post_refresh_grant",
    "refresh_buffer_ms",
]
