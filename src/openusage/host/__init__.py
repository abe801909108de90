# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from .context import Clock, HostServices, ProbeContext
from .files import FileStore
from .http import HttpClient, HttpResponse, try_parse_json
from .secrets import SecretStore, SystemSecretStore
from .sqlite import SqliteStore

__all__ = [
    "Clock",
    "FileStore",
    "HostServices",
    "HttpClient",
    "HttpResponse",
    "ProbeContext",
    "SecretStore",
    "SqliteStore",
    "SystemSecretStore",
    "try_parse_json",
]
