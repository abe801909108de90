# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Per-probe capability bundle.

HostServices is built once per process and shared by every provider;
context_for() hands each probe a ProbeContext scoped to its own data
directory. Nothing here is a module-level global.
"""

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from .. import __version__
from ..utils.paths import get_provider_data_dir
from .files import FileStore
from .http import HttpClient
from .secrets import SecretStore
from .sqlite import SqliteStore


class Clock:
    def now_ms(self) -> int:
        return int(time.time() * 1000)

    def now_iso(self) -> str:
        return (
            datetime.fromtimestamp(self.now_ms() / 1000, tz=timezone.utc)
            .isoformat()
            .replace("+00:00", "Z")
        )


@dataclass
class ProbeContext:
    provider_id: str
    http: HttpClient
    secrets: SecretStore
    files: FileStore
    clock: Clock
    data_dir: Path
    app_version: str = __version__

    def sqlite(self, path: Union[str, Path]) -> SqliteStore:
        return SqliteStore(self.files.expand(path))


@dataclass
class HostServices:
    http: HttpClient
    secrets: SecretStore
    files: FileStore
    clock: Clock
    data_root: Optional[Path] = None
    app_version: str = __version__

    def context_for(self, provider_id: str) -> ProbeContext:
        return ProbeContext(
            provider_id=provider_id,
            http=self.http,
            secrets=self.secrets,
            files=self.files,
            clock=self.clock,
            data_dir=get_provider_data_dir(provider_id, self.data_root),
            app_version=self.app_version,
        )
