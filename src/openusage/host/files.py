# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""File capability handed to probes: `~` expansion plus overwrite-in-place writes."""

import logging
import os
from pathlib import Path
from typing import Optional, Union

lib_logger = logging.getLogger("openusage")

PathLike = Union[str, Path]


class FileStore:
    """
    Text file access with `~` expansion.

    Args:
        home: Directory substituted for a leading `~`. Defaults to the real
            home directory; tests point it at a temporary directory.
    """

    def __init__(self, home: Optional[PathLike] = None):
        self.home = Path(home) if home is not None else None

    def expand(self, path: PathLike) -> Path:
        text = str(path)
        if self.home is not None and (text == "~" or text.startswith("~/")):
            return self.home / text[2:] if len(text) > 1 else self.home
        return Path(os.path.expanduser(text))

    def exists(self, path: PathLike) -> bool:
        return self.expand(path).exists()

    def read_text(self, path: PathLike) -> str:
        """Read a UTF-8 file. Raises OSError when it cannot be read."""
        with open(self.expand(path), "r", encoding="utf-8") as f:
            return f.read()

    def write_text(self, path: PathLike, text: str) -> None:
        """
        Write a file atomically, creating parent directories.

        The content goes to a sibling .tmp file first and is moved over the
        target with os.replace, so readers never observe a half-written file.
        """
        target = self.expand(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_name(target.name + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(text)
        if os.name == "posix":
            os.chmod(tmp, 0o600)
        os.replace(tmp, target)

    def remove(self, path: PathLike) -> None:
        target = self.expand(path)
        try:
            target.unlink()
        except FileNotFoundError:
            pass
