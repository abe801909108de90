"""Tests for credential backends and the credential store."""

import json
import sqlite3

import pytest
from conftest import MemoryBackend

from openusage.config import defaults
from openusage.core.errors import CredentialStoreBusyError, ErrorKind, classify_error
from openusage.core.types import Credential, Promotion
from openusage.credentials import (
    CredentialStore,
    JsonFileBackend,
    SecretStoreBackend,
    SqliteStateBackend,
)
from openusage.providers.claude_provider import CLAUDE_CODEC, CRED_FILE, KEYCHAIN_SERVICE


def claude_blob(access_token=None, refresh_token=None, expires_at=None):
    oauth = {}
    if access_token:
        oauth["accessToken"] = access_token
    if refresh_token:
        oauth["refreshToken"] = refresh_token
    if expires_at is not None:
        oauth["expiresAt"] = expires_at
    return {"claudeAiOauth": oauth}


def claude_backends():
    return [
        JsonFileBackend("file", CRED_FILE, CLAUDE_CODEC),
        SecretStoreBackend("keychain", KEYCHAIN_SERVICE, CLAUDE_CODEC),
    ]


def write_cred_file(files, blob):
    files.write_text(CRED_FILE, json.dumps(blob))


class TestResolve:
    @pytest.mark.asyncio
    async def test_first_backend_wins(self, host, files, secrets):
        """Both backends valid: the file credential is returned, never the keychain one."""
        write_cred_file(files, claude_blob("file-token", "file-refresh"))
        secrets.entries[KEYCHAIN_SERVICE] = json.dumps(claude_blob("kc-token", "kc-refresh"))
        store = CredentialStore()
        store.register("claude", claude_backends(), Promotion.NEVER)

        credential = await store.resolve(host.context_for("claude"))

        assert credential.source == "file"
        assert credential.access_token == "file-token"
        assert credential.refresh_token == "file-refresh"

    @pytest.mark.asyncio
    async def test_values_are_never_merged(self, host, files, secrets):
        """A missing field in the winner is not filled from a later backend."""
        write_cred_file(files, claude_blob("file-token"))
        secrets.entries[KEYCHAIN_SERVICE] = json.dumps(claude_blob("kc-token", "kc-refresh"))
        store = CredentialStore()
        store.register("claude", claude_backends(), Promotion.NEVER)

        credential = await store.resolve(host.context_for("claude"))

        assert credential.access_token == "file-token"
        assert credential.refresh_token is None

    @pytest.mark.asyncio
    async def test_invalid_primary_falls_through(self, host, files, secrets):
        files.write_text(CRED_FILE, "{not json")
        secrets.entries[KEYCHAIN_SERVICE] = json.dumps(claude_blob("kc-token")).encode().hex()
        store = CredentialStore()
        store.register("claude", claude_backends(), Promotion.NEVER)

        credential = await store.resolve(host.context_for("claude"))

        assert credential.source == "keychain"
        assert credential.access_token == "kc-token"

    @pytest.mark.asyncio
    async def test_nothing_found(self, host):
        store = CredentialStore()
        store.register("claude", claude_backends())
        assert await store.resolve(host.context_for("claude")) is None

    def test_register_requires_backends(self):
        with pytest.raises(ValueError):
            CredentialStore().register("claude", [])


class TestPromotion:
    @pytest.mark.asyncio
    async def test_promoted_on_resolve(self, host):
        primary = MemoryBackend("primary")
        secondary = MemoryBackend(
            "secondary", Credential(provider_id="x", source="secondary", access_token="t")
        )
        store = CredentialStore()
        store.register("x", [primary, secondary], Promotion.ON_RESOLVE)

        credential = await store.resolve(host.context_for("x"))

        assert credential.source == "secondary"
        assert [c.access_token for c in primary.saved] == ["t"]

    @pytest.mark.asyncio
    async def test_never_promotes(self, host):
        primary = MemoryBackend("primary")
        secondary = MemoryBackend(
            "secondary", Credential(provider_id="x", source="secondary", access_token="t")
        )
        store = CredentialStore()
        store.register("x", [primary, secondary], Promotion.NEVER)

        await store.resolve(host.context_for("x"))

        assert primary.saved == []

    @pytest.mark.asyncio
    async def test_promotion_failure_is_not_fatal(self, host):
        primary = MemoryBackend("primary")
        primary.fail_save = True
        secondary = MemoryBackend(
            "secondary", Credential(provider_id="x", source="secondary", access_token="t")
        )
        store = CredentialStore()
        store.register("x", [primary, secondary], Promotion.ON_RESOLVE)

        credential = await store.resolve(host.context_for("x"))

        assert credential.access_token == "t"

    @pytest.mark.asyncio
    async def test_read_only_primary_is_skipped(self, host):
        primary = MemoryBackend("primary", writable=False)
        credential = Credential(provider_id="x", source="secondary", access_token="t")
        store = CredentialStore()
        store.register("x", [primary, MemoryBackend("secondary", credential)])

        assert await store.promote(host.context_for("x"), credential) is False


class TestPersist:
    @pytest.mark.asyncio
    async def test_writes_back_to_source(self, host):
        first = MemoryBackend("first")
        second = MemoryBackend("second")
        store = CredentialStore()
        store.register("x", [first, second])
        credential = Credential(provider_id="x", source="second", access_token="new")

        assert await store.persist(host.context_for("x"), credential) is True
        assert second.saved == [credential]
        assert first.saved == []

    @pytest.mark.asyncio
    async def test_falls_back_when_source_is_read_only(self, host):
        borrowed = MemoryBackend("borrowed", writable=False)
        local = MemoryBackend("local")
        store = CredentialStore()
        store.register("x", [borrowed, local])
        credential = Credential(provider_id="x", source="borrowed", access_token="new")

        assert await store.persist(host.context_for("x"), credential) is True
        assert local.saved == [credential]

    @pytest.mark.asyncio
    async def test_file_write_keeps_unknown_fields(self, host, files):
        blob = claude_blob("old", "r1", 1)
        blob["claudeAiOauth"]["scopes"] = ["user:inference"]
        write_cred_file(files, blob)
        store = CredentialStore()
        store.register("claude", claude_backends())
        ctx = host.context_for("claude")
        credential = await store.resolve(ctx)

        credential.access_token = "new"
        await store.persist(ctx, credential)

        written = json.loads(files.read_text(CRED_FILE))
        assert written["claudeAiOauth"]["accessToken"] == "new"
        assert written["claudeAiOauth"]["scopes"] == ["user:inference"]

    @pytest.mark.asyncio
    async def test_secret_store_write_is_compact_json(self, host, secrets):
        secrets.entries[KEYCHAIN_SERVICE] = json.dumps(claude_blob("kc", "r"), indent=2)
        store = CredentialStore()
        store.register("claude", claude_backends())
        ctx = host.context_for("claude")
        credential = await store.resolve(ctx)

        await store.persist(ctx, credential)

        service, value = secrets.writes[-1]
        assert service == KEYCHAIN_SERVICE
        assert "\n" not in value and " " not in value

    @pytest.mark.asyncio
    async def test_invalidate_single_source(self, host):
        first = MemoryBackend("first", Credential(provider_id="x", source="first", access_token="a"))
        second = MemoryBackend("second", Credential(provider_id="x", source="second", access_token="b"))
        store = CredentialStore()
        store.register("x", [first, second])

        await store.invalidate(host.context_for("x"), source="second")

        assert first.credential is not None
        assert second.credential is None


class TestSqliteStateBackend:
    def make_db(self, path, rows):
        path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(path))
        conn.execute("CREATE TABLE ItemTable (key TEXT PRIMARY KEY, value BLOB)")
        conn.executemany("INSERT INTO ItemTable (key, value) VALUES (?, ?)", rows)
        conn.commit()
        conn.close()

    def backend(self, path):
        return SqliteStateBackend(
            "state_db", str(path), "cursorAuth/accessToken", "cursorAuth/refreshToken"
        )

    @pytest.mark.asyncio
    async def test_load_and_save(self, host, tmp_path):
        db = tmp_path / "state.vscdb"
        self.make_db(
            db,
            [("cursorAuth/accessToken", "access-1"), ("cursorAuth/refreshToken", '"refresh-1"')],
        )
        backend = self.backend(db)
        ctx = host.context_for("cursor")

        credential = await backend.load(ctx)
        assert credential.access_token == "access-1"
        assert credential.refresh_token == "refresh-1"

        credential.access_token = "access-2"
        await backend.save(ctx, credential)
        assert (await backend.load(ctx)).access_token == "access-2"

    @pytest.mark.asyncio
    async def test_missing_database(self, host, tmp_path):
        backend = self.backend(tmp_path / "missing.vscdb")
        assert await backend.load(host.context_for("cursor")) is None

    @pytest.mark.asyncio
    async def test_unreadable_database(self, host, tmp_path):
        db = tmp_path / "broken.vscdb"
        db.write_text("this is not sqlite")
        backend = self.backend(db)
        assert await backend.load(host.context_for("cursor")) is None

    @pytest.mark.asyncio
    async def test_locked_database_is_busy_not_missing(self, host, tmp_path, monkeypatch):
        db = tmp_path / "state.vscdb"
        self.make_db(db, [("cursorAuth/accessToken", "access-1")])
        monkeypatch.setattr(defaults, "SQLITE_BUSY_TIMEOUT_SECONDS", 0.05)
        lock = sqlite3.connect(str(db), isolation_level=None)
        lock.execute("BEGIN EXCLUSIVE")
        try:
            with pytest.raises(CredentialStoreBusyError):
                await self.backend(db).load(host.context_for("cursor"))
        finally:
            lock.execute("ROLLBACK")
            lock.close()

        assert classify_error(CredentialStoreBusyError()).kind is ErrorKind.NETWORK
