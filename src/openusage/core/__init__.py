# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from .errors import (
    AuthRetryExhaustedError,
    ClassifiedError,
    ErrorKind,
    FeatureUnavailableError,
    MalformedResponseError,
    NotAuthenticatedError,
    ProbeError,
    ProbeNetworkError,
    ReAuthRequiredError,
    ServerStatusError,
    classify_error,
    mask_credential,
)
from .types import (
    BadgeLine,
    BatchComplete,
    Credential,
    ProbeBatch,
    ProbeOutput,
    ProbeResult,
    ProgressLine,
    Promotion,
    ProviderState,
    TextLine,
    TokenGrant,
    TokenPolicy,
    TriggerKind,
)

__all__ = [
    "AuthRetryExhaustedError",
    "BadgeLine",
    "BatchComplete",
    "ClassifiedError",
    "Credential",
    "ErrorKind",
    "FeatureUnavailableError",
    "MalformedResponseError",
    "NotAuthenticatedError",
    "ProbeBatch",
    "ProbeError",
    "ProbeNetworkError",
    "ProbeOutput",
    "ProbeResult",
    "ProgressLine",
    "Promotion",
    "ProviderState",
    "ReAuthRequiredError",
    "ServerStatusError",
    "TextLine",
    "TokenGrant",
    "TokenPolicy",
    "TriggerKind",
    "classify_error",
    "mask_credential",
]
