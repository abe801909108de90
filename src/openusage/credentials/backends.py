# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Credential backends.

Each backend knows where a credential lives (a JSON file, an OS secret
store entry, or rows in another application's SQLite state database) and
delegates the vendor-specific blob shape to a CredentialCodec supplied by
the provider. A backend that is absent or unreadable reports None; only
write failures raise.
"""

import json
import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Optional, Union

from ..core.errors import CredentialStoreBusyError, SecretNotFoundError, SecretStoreError
from ..core.types import Credential
from ..host.sqlite import is_locked_error
from .decoding import (
    decode_keyring_value,
    decode_secret_json,
    decode_secret_value,
    encode_compact_json,
)

if TYPE_CHECKING:
    from ..host.context import ProbeContext

lib_logger = logging.getLogger("openusage")

PathSpec = Union[str, Path, Callable[["ProbeContext"], Path]]


@dataclass(frozen=True)
class CredentialCodec:
    """
    Converts between a stored value and a Credential.

    parse(value, source) receives the decoded value (usually a dict, a bare
    string for raw-token entries) and returns None when it does not hold a
    structurally valid credential. serialize(credential) returns the value
    to store: a dict/list is written as compact JSON, a str verbatim.
    """

    parse: Callable[[Any, str], Optional[Credential]]
    serialize: Callable[[Credential], Any]


class CredentialBackend:
    """One place a provider's credential may live."""

    name: str = "backend"
    writable: bool = True

    async def load(self, ctx: "ProbeContext") -> Optional[Credential]:
        raise NotImplementedError

    async def save(self, ctx: "ProbeContext", credential: Credential) -> None:
        raise NotImplementedError

    async def clear(self, ctx: "ProbeContext") -> None:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


def _encode(value: Any) -> str:
    if isinstance(value, str):
        return value
    return encode_compact_json(value)


# =============================================================================
# JSON FILE
# =============================================================================


class JsonFileBackend(CredentialBackend):
    """
    Credential stored as a JSON document on disk.

    Args:
        name: Backend name recorded as Credential.source
        path: Absolute or `~` path, or a callable resolving it from the
            probe context (for files under the provider data directory)
        codec: Vendor blob codec
        indent: Write pretty-printed JSON with this indent (the owning CLI
            keeps its file human-readable); None writes compact JSON
    """

    def __init__(
        self,
        name: str,
        path: PathSpec,
        codec: CredentialCodec,
        indent: Optional[int] = None,
        writable: bool = True,
    ):
        self.name = name
        self._path = path
        self.codec = codec
        self.indent = indent
        self.writable = writable

    def path(self, ctx: "ProbeContext") -> Path:
        if callable(self._path):
            return self._path(ctx)
        return ctx.files.expand(self._path)

    async def load(self, ctx: "ProbeContext") -> Optional[Credential]:
        path = self.path(ctx)
        if not ctx.files.exists(path):
            return None
        try:
            text = ctx.files.read_text(path)
        except OSError as e:
            lib_logger.warning(f"[{ctx.provider_id}] Could not read {path}: {e}")
            return None

        blob = decode_secret_json(text)
        if blob is None:
            lib_logger.warning(f"[{ctx.provider_id}] {path} is not valid JSON, ignoring")
            return None
        return self.codec.parse(blob, self.name)

    async def save(self, ctx: "ProbeContext", credential: Credential) -> None:
        value = self.codec.serialize(credential)
        if self.indent is not None and not isinstance(value, str):
            text = json.dumps(value, indent=self.indent)
        else:
            text = _encode(value)
        ctx.files.write_text(self.path(ctx), text)

    async def clear(self, ctx: "ProbeContext") -> None:
        ctx.files.remove(self.path(ctx))


# =============================================================================
# OS SECRET STORE
# =============================================================================


class SecretStoreBackend(CredentialBackend):
    """
    Credential stored in a generic-password secret store entry.

    Values are decoded with decode_secret_value, so JSON blobs, hex-encoded
    JSON and go-keyring base64 tokens are all accepted. With accept_raw the
    entry may also hold a bare token string, which is passed to the codec as is.
    """

    def __init__(
        self,
        name: str,
        service: str,
        codec: CredentialCodec,
        writable: bool = True,
        accept_raw: bool = False,
    ):
        self.name = name
        self.service = service
        self.codec = codec
        self.writable = writable
        self.accept_raw = accept_raw

    async def load(self, ctx: "ProbeContext") -> Optional[Credential]:
        try:
            raw = await ctx.secrets.read_generic_password(self.service)
        except SecretNotFoundError:
            lib_logger.debug(f"[{ctx.provider_id}] No secret store entry '{self.service}'")
            return None
        except SecretStoreError as e:
            lib_logger.info(f"[{ctx.provider_id}] Secret store unavailable for '{self.service}': {e}")
            return None

        value = decode_secret_value(raw)
        if value is None and self.accept_raw:
            value = decode_keyring_value(raw) or None
        if value is None:
            lib_logger.warning(
                f"[{ctx.provider_id}] Secret store entry '{self.service}' could not be decoded"
            )
            return None
        return self.codec.parse(value, self.name)

    async def save(self, ctx: "ProbeContext", credential: Credential) -> None:
        value = _encode(self.codec.serialize(credential))
        await ctx.secrets.write_generic_password(self.service, value)

    async def clear(self, ctx: "ProbeContext") -> None:
        try:
            await ctx.secrets.delete_generic_password(self.service)
        except SecretNotFoundError:
            pass


# =============================================================================
# SQLITE STATE DATABASE
# =============================================================================


class SqliteStateBackend(CredentialBackend):
    """
    Tokens kept as rows of a key/value table in an application's state DB.

    The IDE assistant stores its OAuth tokens under separate keys of
    `ItemTable(key, value)` in a VS Code style state database.
    """

    def __init__(
        self,
        name: str,
        db_path: str,
        access_key: str,
        refresh_key: str,
        table: str = "ItemTable",
        writable: bool = True,
    ):
        self.name = name
        self.db_path = db_path
        self.access_key = access_key
        self.refresh_key = refresh_key
        self.table = table
        self.writable = writable

    async def _read_key(self, ctx: "ProbeContext", key: str) -> Optional[str]:
        rows = await ctx.sqlite(self.db_path).query(
            f"SELECT value FROM {self.table} WHERE key = ? LIMIT 1", (key,)
        )
        if not rows:
            return None
        value = rows[0].get("value")
        if isinstance(value, bytes):
            value = value.decode("utf-8", errors="replace")
        if not isinstance(value, str):
            return None
        value = value.strip()
        # Some builds store the token as a JSON string literal
        if len(value) >= 2 and value[0] == value[-1] == '"':
            parsed = decode_secret_json(value)
            if isinstance(parsed, str):
                value = parsed
        return value or None

    async def load(self, ctx: "ProbeContext") -> Optional[Credential]:
        if not ctx.files.exists(self.db_path):
            return None
        try:
            access_token = await self._read_key(ctx, self.access_key)
            refresh_token = await self._read_key(ctx, self.refresh_key)
        except sqlite3.Error as e:
            if is_locked_error(e):
                lib_logger.warning(f"[{ctx.provider_id}] {self.db_path} is locked: {e}")
                raise CredentialStoreBusyError() from e
            lib_logger.warning(f"[{ctx.provider_id}] Could not read {self.db_path}: {e}")
            return None

        if not access_token and not refresh_token:
            return None
        return Credential(
            provider_id=ctx.provider_id,
            source=self.name,
            access_token=access_token,
            refresh_token=refresh_token,
        )

    async def save(self, ctx: "ProbeContext", credential: Credential) -> None:
        db = ctx.sqlite(self.db_path)
        sql = f"INSERT OR REPLACE INTO {self.table} (key, value) VALUES (?, ?)"
        if credential.access_token:
            await db.execute(sql, (self.access_key, credential.access_token))
        if credential.refresh_token:
            await db.execute(sql, (self.refresh_key, credential.refresh_token))

    async def clear(self, ctx: "ProbeContext") -> None:
        db = ctx.sqlite(self.db_path)
        await db.execute(
            f"DELETE FROM {self.table} WHERE key IN (?, ?)",
            (self.access_key, self.refresh_key),
        )
