# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from .backends import (
    CredentialBackend,
    CredentialCodec,
    JsonFileBackend,
    SecretStoreBackend,
    SqliteStateBackend,
)
from .decoding import (
    decode_keyring_value,
    decode_secret_json,
    decode_secret_value,
    encode_compact_json,
)
from .store import CredentialStore

__all__ = [
    "CredentialBackend",
    "CredentialCodec",
    "CredentialStore",
    "JsonFileBackend",
    "SecretStoreBackend",
    "SqliteStateBackend",
    "decode_keyring_value",
    "decode_secret_json",
    "decode_secret_value",
    "encode_compact_json",
]
