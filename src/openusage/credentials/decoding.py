# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Decoding of values read from secret stores and credential files.

Values show up in three shapes: plain JSON, a `go-keyring-base64:` prefixed
token written by Go keyring shims (the gh CLI), and hex-encoded JSON which
the macOS keychain returns for blobs containing structural characters.
"""

import base64
import binascii
import json
import re
from typing import Any, Optional

GO_KEYRING_PREFIX = "go-keyring-base64:"

_HEX_RE = re.compile(r"^(?:0x)?([0-9a-fA-F]+)$")


def decode_keyring_value(raw: str) -> str:
    """Strip and decode a go-keyring base64 value; other values pass through trimmed."""
    value = raw.strip()
    if value.startswith(GO_KEYRING_PREFIX):
        encoded = value[len(GO_KEYRING_PREFIX):]
        try:
            return base64.b64decode(encoded).decode("utf-8", errors="replace").strip()
        except (binascii.Error, ValueError):
            return ""
    return value


def try_decode_hex(text: str) -> Optional[str]:
    """Decode an (optionally 0x-prefixed) hex string to UTF-8 text."""
    match = _HEX_RE.match(text.strip())
    if not match:
        return None
    digits = match.group(1)
    if len(digits) % 2 != 0:
        return None
    try:
        return bytes.fromhex(digits).decode("utf-8")
    except ValueError:
        # Also covers UnicodeDecodeError
        return None


def decode_secret_json(text: Optional[str]) -> Optional[Any]:
    """
    Parse a stored credential blob.

    Tries JSON first, then hex -> UTF-8 -> JSON. Returns None when neither
    works; callers treat that as "no credential here".
    """
    if not text:
        return None
    stripped = text.strip()
    try:
        return json.loads(stripped)
    except json.JSONDecodeError:
        pass

    decoded = try_decode_hex(stripped)
    if decoded is None:
        return None
    try:
        return json.loads(decoded)
    except json.JSONDecodeError:
        return None


def decode_secret_value(text: Optional[str]) -> Optional[Any]:
    """
    Decode any stored secret: JSON, then go-keyring base64, then hex JSON.

    A go-keyring value decodes to its token string, or to the parsed JSON
    when the token itself is JSON.
    """
    if not text:
        return None
    parsed = decode_secret_json(text)
    if parsed is not None:
        return parsed
    if text.strip().startswith(GO_KEYRING_PREFIX):
        token = decode_keyring_value(text)
        if not token:
            return None
        try:
            return json.loads(token)
        except json.JSONDecodeError:
            return token
    return None


def encode_compact_json(value: Any) -> str:
    """Serialize without whitespace; secret stores re-encode values that contain newlines."""
    return json.dumps(value, separators=(",", ":"))
