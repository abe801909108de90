# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Shared type definitions for the openusage library.

This module contains dataclasses and type definitions used across the
credential, auth, provider and orchestrator packages.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Tuple,
    Union,
)

from .errors import ClassifiedError

if TYPE_CHECKING:
    from ..host.context import ProbeContext


# =============================================================================
# CREDENTIAL TYPES
# =============================================================================


@dataclass
class Credential:
    """
    A provider-scoped credential as resolved from one backend.

    `source` names the backend it was loaded from so refreshed tokens are
    written back to the same place. `extra` carries the raw vendor blob so
    fields this library does not understand survive a write-back.
    """

    provider_id: str
    source: str
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    id_token: Optional[str] = None
    api_key: Optional[str] = None
    expires_at_ms: Optional[int] = None
    last_refreshed_at_ms: Optional[int] = None
    account_id: Optional[str] = None
    subscription_type: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def has_secret(self) -> bool:
        return bool(self.access_token or self.refresh_token or self.api_key)

    def with_grant(
        self, grant: "TokenGrant", now_ms: int, expires_at_ms: Optional[int] = None
    ) -> "Credential":
        """Return a new credential with the rotated tokens applied."""
        return replace(
            self,
            access_token=grant.access_token,
            refresh_token=grant.refresh_token or self.refresh_token,
            id_token=grant.id_token or self.id_token,
            expires_at_ms=expires_at_ms,
            last_refreshed_at_ms=now_ms,
            extra=dict(self.extra),
        )


@dataclass(frozen=True)
class TokenGrant:
    """Tokens returned by a successful refresh call."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_in_s: Optional[int] = None
    id_token: Optional[str] = None


class TriggerKind(str, Enum):
    EXPIRY = "expiry"
    AGE = "age"


RefreshFn = Callable[["ProbeContext", Credential], Awaitable[Optional[TokenGrant]]]


@dataclass(frozen=True)
class TokenPolicy:
    """
    Per-provider refresh strategy.

    trigger: EXPIRY compares against expires_at_ms with window_ms as buffer,
        AGE compares last_refreshed_at_ms against window_ms as max age.
    refresh: async callable returning a TokenGrant, None on soft failure,
        or raising ReAuthRequiredError on a terminal rejection.
    expiry_from_jwt: fall back to the access token's `exp` claim when the
        stored metadata carries no expiry.
    """

    trigger: TriggerKind
    window_ms: int
    refresh: RefreshFn
    expiry_from_jwt: bool = False


class Promotion(str, Enum):
    """When a credential found in a secondary backend is copied to the primary."""

    NEVER = "never"
    ON_RESOLVE = "on_resolve"
    ON_SUCCESS = "on_success"


# =============================================================================
# METRIC LINES
# =============================================================================


@dataclass(frozen=True)
class TextLine:
    label: str
    value: str
    color: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "text", "label": self.label, "value": self.value, "color": self.color}


@dataclass(frozen=True)
class ProgressLine:
    """
    A used/limit meter.

    unit is "percent", "dollars" or "count". resets_at is an ISO-8601
    timestamp when the vendor reports one.
    """

    label: str
    used: float
    limit: float
    unit: str = "percent"
    resets_at: Optional[str] = None
    period_ms: Optional[int] = None
    color: Optional[str] = None

    @property
    def fraction(self) -> float:
        if self.limit <= 0:
            return 0.0
        return max(0.0, min(1.0, self.used / self.limit))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "progress",
            "label": self.label,
            "used": self.used,
            "limit": self.limit,
            "unit": self.unit,
            "resets_at": self.resets_at,
            "period_ms": self.period_ms,
            "color": self.color,
        }


@dataclass(frozen=True)
class BadgeLine:
    label: str
    text: str
    color: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "badge", "label": self.label, "text": self.text, "color": self.color}


MetricLine = Union[TextLine, ProgressLine, BadgeLine]


@dataclass(frozen=True)
class ProbeOutput:
    """Successful probe payload: optional plan name plus metric lines."""

    plan: Optional[str] = None
    lines: Tuple[MetricLine, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {"plan": self.plan, "lines": [line.to_dict() for line in self.lines]}


# =============================================================================
# BATCH TYPES
# =============================================================================


@dataclass(frozen=True)
class ProbeBatch:
    batch_id: str
    provider_ids: Tuple[str, ...]


@dataclass(frozen=True)
class ProbeResult:
    """One provider's outcome, tagged with the batch that produced it."""

    batch_id: str
    provider_id: str
    output: Optional[ProbeOutput] = None
    error: Optional[ClassifiedError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class BatchComplete:
    batch_id: str


ProbeEvent = Union[ProbeResult, BatchComplete]


@dataclass
class ProviderState:
    """UI-visible state for one provider, updated only through the orchestrator."""

    data: Optional[ProbeOutput] = None
    loading: bool = False
    error: Optional[ClassifiedError] = None
    last_manual_refresh_at_ms: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": self.data.to_dict() if self.data else None,
            "loading": self.loading,
            "error": self.error.to_dict() if self.error else None,
            "last_manual_refresh_at_ms": self.last_manual_refresh_at_ms,
        }


ProviderStates = Dict[str, ProviderState]
ProbeLines = List[MetricLine]
