# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/openusage/utils/paths.py
"""
Filesystem locations used by the library and the app.

The data root is resolved lazily so tests and the app can point it
elsewhere through OPENUSAGE_DATA_DIR. Frozen builds keep their data next
to the executable.
"""

import os
import sys
from pathlib import Path
from typing import Optional, Union

PathLike = Union[str, Path]


def get_default_root() -> Path:
    """Get the data root (env override, EXE directory, or ~/.openusage)."""
    override = os.environ.get("OPENUSAGE_DATA_DIR")
    if override:
        return Path(os.path.expanduser(override))
    if getattr(sys, "frozen", False):
        return Path(sys.executable).parent
    return Path.home() / ".openusage"


def get_data_dir(root: Optional[PathLike] = None) -> Path:
    base = Path(root) if root is not None else get_default_root()
    return base / "data"


def get_logs_dir(root: Optional[PathLike] = None) -> Path:
    base = Path(root) if root is not None else get_default_root()
    logs_dir = base / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    return logs_dir


def get_provider_data_dir(provider_id: str, root: Optional[PathLike] = None) -> Path:
    """Per-provider state directory (device-flow state, local credential fallback)."""
    return get_data_dir(root) / "providers" / provider_id


def get_data_file(filename: str, root: Optional[PathLike] = None) -> Path:
    return get_data_dir(root) / filename
