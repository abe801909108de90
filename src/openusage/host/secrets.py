# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
OS secret store access.

macOS entries are read and written with the `security` tool, Linux entries
with libsecret's `secret-tool`. Both run as subprocesses under a timeout so
a locked keychain prompt can never hang a probe.
"""

import asyncio
import getpass
import logging
import sys
from typing import Optional, Sequence, Tuple

from ..config.defaults import SECRET_STORE_TIMEOUT_SECONDS
from ..core.errors import SecretNotFoundError, SecretStoreError

lib_logger = logging.getLogger("openusage")


class SecretStore:
    """Interface for generic-password style secret storage, keyed by service."""

    async def read_generic_password(self, service: str) -> str:
        raise NotImplementedError

    async def write_generic_password(self, service: str, value: str) -> None:
        raise NotImplementedError

    async def delete_generic_password(self, service: str) -> None:
        raise NotImplementedError


class SystemSecretStore(SecretStore):
    def __init__(
        self,
        account: Optional[str] = None,
        timeout: float = SECRET_STORE_TIMEOUT_SECONDS,
        platform: Optional[str] = None,
    ):
        self.account = account or getpass.getuser()
        self.timeout = timeout
        self.platform = platform or sys.platform

    @property
    def _is_macos(self) -> bool:
        return self.platform == "darwin"

    @property
    def _is_linux(self) -> bool:
        return self.platform.startswith("linux")

    async def _run(
        self, args: Sequence[str], input_text: Optional[str] = None
    ) -> Tuple[int, str, str]:
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.PIPE if input_text is not None else None,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise SecretStoreError(f"{args[0]} is not installed") from e

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(
                    input_text.encode("utf-8") if input_text is not None else None
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            proc.kill()
            await proc.wait()
            raise SecretStoreError(f"{args[0]} timed out after {self.timeout}s") from e

        return (
            proc.returncode,
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
        )

    def _unsupported(self) -> SecretStoreError:
        return SecretStoreError(f"No secret store available on {self.platform}")

    async def read_generic_password(self, service: str) -> str:
        if self._is_macos:
            args = ["security", "find-generic-password", "-s", service, "-w"]
        elif self._is_linux:
            args = ["secret-tool", "lookup", "service", service]
        else:
            raise self._unsupported()

        code, stdout, _ = await self._run(args)
        value = stdout.rstrip("\r\n")
        if code != 0 or not value:
            raise SecretNotFoundError(f"No secret store entry for '{service}'")
        return value

    async def write_generic_password(self, service: str, value: str) -> None:
        if self._is_macos:
            code, _, stderr = await self._run(
                [
                    "security",
                    "add-generic-password",
                    "-U",
                    "-a",
                    self.account,
                    "-s",
                    service,
                    "-w",
                    value,
                ]
            )
        elif self._is_linux:
            code, _, stderr = await self._run(
                [
                    "secret-tool",
                    "store",
                    f"--label={service}",
                    "service",
                    service,
                    "account",
                    self.account,
                ],
                input_text=value,
            )
        else:
            raise self._unsupported()

        if code != 0:
            raise SecretStoreError(
                f"Failed to write secret store entry '{service}': {stderr.strip()}"
            )
        lib_logger.debug(f"Wrote secret store entry '{service}'")

    async def delete_generic_password(self, service: str) -> None:
        if self._is_macos:
            args = ["security", "delete-generic-password", "-s", service]
        elif self._is_linux:
            args = ["secret-tool", "clear", "service", service]
        else:
            raise self._unsupported()

        code, _, _ = await self._run(args)
        if code != 0:
            raise SecretNotFoundError(f"No secret store entry for '{service}'")
