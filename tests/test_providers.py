"""End-to-end tests for each provider against mocked vendor endpoints."""

import asyncio
import base64
import json
import sqlite3

import pytest
from conftest import NOW_MS, ScriptedProvider, json_response, make_jwt, make_runner

from openusage.auth import TokenLifecycleManager
from openusage.core.errors import (
    AuthRetryExhaustedError,
    DeviceFlowPendingError,
    ErrorKind,
    FeatureUnavailableError,
    MalformedResponseError,
    ReAuthRequiredError,
    classify_error,
)
from openusage.core.types import BadgeLine, BatchComplete, ProbeResult, ProgressLine, TextLine
from openusage.credentials import CredentialStore
from openusage.orchestrator import PROBE_TIMEOUT_MESSAGE
from openusage.providers import (
    ClaudeProvider,
    CodexProvider,
    CopilotProvider,
    CursorProvider,
    MockProvider,
    ProbeEngine,
    create_providers,
)
from openusage.providers import claude_provider, codex_provider, copilot_provider
from openusage.providers.cursor_provider import REFRESH_URL as CURSOR_REFRESH_URL
from openusage.providers.utilities.cursor_usage_tracker import (
    CURSOR_API_BASE,
    CURSOR_PLAN_ENDPOINT,
    CURSOR_USAGE_ENDPOINT,
)

CURSOR_USAGE_URL = CURSOR_API_BASE + CURSOR_USAGE_ENDPOINT
CURSOR_PLAN_URL = CURSOR_API_BASE + CURSOR_PLAN_ENDPOINT


def make_engine(*providers):
    store = CredentialStore()
    engine = ProbeEngine(store, TokenLifecycleManager(store))
    for provider in providers:
        engine.register(provider)
    return engine


async def run_probe(provider, host):
    engine = make_engine(provider)
    return await provider.probe(host.context_for(provider.provider_id), engine)


# =============================================================================
# CLAUDE
# =============================================================================


class TestClaude:
    def write_credentials(self, files, oauth):
        files.write_text(claude_provider.CRED_FILE, json.dumps({"claudeAiOauth": oauth}))

    @pytest.mark.asyncio
    async def test_refresh_token_only(self, host, files, router):
        """A credential with only a refresh token is refreshed before the usage call."""
        self.write_credentials(files, {"refreshToken": "r1", "subscriptionType": "max"})
        router.add(
            "POST",
            claude_provider.REFRESH_URL,
            json_response(200, {"access_token": "a2", "refresh_token": "r2", "expires_in": 3600}),
        )
        router.add(
            "GET",
            claude_provider.USAGE_URL,
            json_response(
                200,
                {
                    "five_hour": {"utilization": 25, "resets_at": "2025-06-15T20:00:00Z"},
                    "seven_day": {"utilization": 60.5, "resets_at": None},
                },
            ),
        )

        output = await run_probe(ClaudeProvider(), host)

        usage_call = router.calls_to(claude_provider.USAGE_URL)[0]
        assert usage_call.headers["authorization"] == "Bearer a2"
        assert usage_call.headers["anthropic-beta"] == "oauth-2025-04-20"
        refresh_body = json.loads(router.calls_to(claude_provider.REFRESH_URL)[0].content)
        assert refresh_body["grant_type"] == "refresh_token"
        assert refresh_body["refresh_token"] == "r1"

        assert output.plan == "Max"
        assert output.lines == (
            ProgressLine("Session", 25.0, 100.0, "percent", "2025-06-15T20:00:00.000Z"),
            ProgressLine("Weekly", 60.5, 100.0, "percent", None),
        )

        saved = json.loads(files.read_text(claude_provider.CRED_FILE))["claudeAiOauth"]
        assert saved["accessToken"] == "a2"
        assert saved["refreshToken"] == "r2"
        assert saved["expiresAt"] == NOW_MS + 3_600_000
        assert saved["subscriptionType"] == "max"

    @pytest.mark.asyncio
    async def test_revoked_refresh_token(self, host, files, router):
        oauth = {"accessToken": "a1", "refreshToken": "r1", "expiresAt": NOW_MS - 1}
        self.write_credentials(files, oauth)
        before = files.read_text(claude_provider.CRED_FILE)
        router.add("POST", claude_provider.REFRESH_URL, json_response(400, {"error": "invalid_grant"}))

        provider = ClaudeProvider()
        with pytest.raises(ReAuthRequiredError) as exc_info:
            await run_probe(provider, host)

        classified = classify_error(exc_info.value, "claude", provider.error_messages)
        assert classified.kind is ErrorKind.REAUTH_REQUIRED
        assert classified.message == "Session expired. Run `claude` to log in again."
        assert router.calls_to(claude_provider.USAGE_URL) == []
        assert files.read_text(claude_provider.CRED_FILE) == before

    @pytest.mark.asyncio
    async def test_keychain_fallback(self, host, secrets, router):
        secrets.entries[claude_provider.KEYCHAIN_SERVICE] = json.dumps(
            {"claudeAiOauth": {"accessToken": "kc", "expiresAt": NOW_MS + 3_600_000}}
        )
        router.add("GET", claude_provider.USAGE_URL, json_response(200, {}))

        output = await run_probe(ClaudeProvider(), host)

        assert router.calls[0].headers["authorization"] == "Bearer kc"
        assert output.lines == (BadgeLine("Status", "No usage data", "#a3a3a3"),)

    @pytest.mark.asyncio
    async def test_extra_usage_in_dollars(self, host, files, router):
        self.write_credentials(files, {"accessToken": "a1", "expiresAt": NOW_MS + 3_600_000})
        router.add(
            "GET",
            claude_provider.USAGE_URL,
            json_response(
                200,
                {"extra_usage": {"is_enabled": True, "used_credits": 1234, "monthly_limit": 5000}},
            ),
        )

        output = await run_probe(ClaudeProvider(), host)

        assert output.lines == (ProgressLine("Extra usage", 12.34, 50.0, "dollars"),)

    @pytest.mark.asyncio
    async def test_not_logged_in(self, host):
        provider = ClaudeProvider()
        with pytest.raises(Exception) as exc_info:
            await run_probe(provider, host)
        classified = classify_error(exc_info.value, "claude", provider.error_messages)
        assert classified.kind is ErrorKind.NOT_AUTHENTICATED
        assert classified.message == "Not logged in. Run `claude` to authenticate."


# =============================================================================
# CODEX
# =============================================================================


class TestCodex:
    @pytest.mark.asyncio
    async def test_api_key_only(self, host, files, router):
        files.write_text(codex_provider.AUTH_PATH, json.dumps({"OPENAI_API_KEY": "sk-test"}))

        with pytest.raises(FeatureUnavailableError) as exc_info:
            await run_probe(CodexProvider(), host)

        assert exc_info.value.message == "Usage not available for API key."
        assert router.calls == []

    @pytest.mark.asyncio
    async def test_header_percentages(self, host, files, router):
        files.write_text(
            codex_provider.AUTH_PATH,
            json.dumps(
                {
                    "tokens": {"access_token": "a1", "refresh_token": "r1", "account_id": "acct-1"},
                    "last_refresh": "2025-06-14T15:06:40Z",
                }
            ),
        )
        router.add(
            "GET",
            codex_provider.USAGE_URL,
            json_response(
                200,
                {
                    "plan_type": "plus",
                    "rate_limit": {
                        "primary_window": {"used_percent": 99, "reset_after_seconds": 3600},
                        "secondary_window": {"used_percent": 40},
                    },
                },
                headers={"x-codex-primary-used-percent": "12"},
            ),
        )

        output = await run_probe(CodexProvider(), host)

        request = router.calls[0]
        assert request.headers["authorization"] == "Bearer a1"
        assert request.headers["chatgpt-account-id"] == "acct-1"
        assert output.plan == "Plus"
        assert output.lines == (
            ProgressLine("Session (5h)", 12.0, 100.0, "percent", "2025-06-15T16:06:40.000Z"),
            ProgressLine("Weekly (7d)", 40.0, 100.0, "percent", None),
        )

    @pytest.mark.asyncio
    async def test_stale_token_refreshed_by_age(self, host, files, router):
        files.write_text(
            codex_provider.AUTH_PATH,
            json.dumps(
                {
                    "tokens": {"access_token": "a1", "refresh_token": "r1"},
                    "last_refresh": "2025-06-01T00:00:00Z",
                    "OPENAI_API_KEY": None,
                }
            ),
        )
        router.add(
            "POST",
            codex_provider.REFRESH_URL,
            json_response(200, {"access_token": "a2", "refresh_token": "r2", "id_token": "i2"}),
        )
        router.add("GET", codex_provider.USAGE_URL, json_response(200, {"credits": {"balance": 250}}))

        output = await run_probe(CodexProvider(), host)

        assert router.calls[-1].headers["authorization"] == "Bearer a2"
        assert output.lines == (ProgressLine("Credits", 250.0, 1000, "count"),)
        saved = json.loads(files.read_text(codex_provider.AUTH_PATH))
        assert saved["tokens"]["access_token"] == "a2"
        assert saved["tokens"]["id_token"] == "i2"
        assert saved["last_refresh"] == "2025-06-15T15:06:40.000Z"
        assert saved["OPENAI_API_KEY"] is None


# =============================================================================
# COPILOT
# =============================================================================


def go_keyring(value: str) -> str:
    return "go-keyring-base64:" + base64.b64encode(value.encode("utf-8")).decode("ascii")


COPILOT_USAGE = {
    "copilot_plan": "individual",
    "quota_reset_date": "2025-07-01T00:00:00Z",
    "quota_snapshots": {
        "premium_interactions": {"percent_remaining": 80},
        "chat": {"percent_remaining": 100},
    },
}


class TestCopilot:
    @pytest.mark.asyncio
    async def test_no_credential_starts_device_flow(self, host, router):
        router.add(
            "POST",
            copilot_provider.DEVICE_FLOW.device_code_url,
            json_response(200, {"device_code": "dev", "user_code": "ABCD-1234", "expires_in": 900}),
        )

        with pytest.raises(DeviceFlowPendingError) as exc_info:
            await run_probe(CopilotProvider(), host)

        assert exc_info.value.message == "Visit github.com/login/device and enter: ABCD-1234"

    @pytest.mark.asyncio
    async def test_gh_token_promoted_after_success(self, host, secrets, router):
        secrets.entries[copilot_provider.GH_KEYCHAIN_SERVICE] = go_keyring("gho_from_gh")
        router.add("GET", copilot_provider.USAGE_URL, json_response(200, COPILOT_USAGE))

        output = await run_probe(CopilotProvider(), host)

        assert router.calls[0].headers["authorization"] == "token gho_from_gh"
        assert secrets.writes == [(copilot_provider.KEYCHAIN_SERVICE, '{"token":"gho_from_gh"}')]
        assert output.plan == "Individual"
        assert [(line.label, line.used) for line in output.lines] == [
            ("Premium", 20.0),
            ("Chat", 0.0),
        ]

    @pytest.mark.asyncio
    async def test_rejected_gh_token_falls_through_to_device_flow(self, host, secrets, router):
        secrets.entries[copilot_provider.GH_KEYCHAIN_SERVICE] = "gho_plain"
        router.add("GET", copilot_provider.USAGE_URL, json_response(401, {}))
        router.add(
            "POST",
            copilot_provider.DEVICE_FLOW.device_code_url,
            json_response(200, {"device_code": "dev", "user_code": "WXYZ-0000"}),
        )

        with pytest.raises(DeviceFlowPendingError):
            await run_probe(CopilotProvider(), host)

        assert secrets.writes == []
        assert len(router.calls_to(copilot_provider.USAGE_URL)) == 1

    @pytest.mark.asyncio
    async def test_rejected_own_token_is_exhausted(self, host, secrets, router):
        secrets.entries[copilot_provider.KEYCHAIN_SERVICE] = '{"token": "gho_ours"}'
        router.add("GET", copilot_provider.USAGE_URL, json_response(401, {}))

        provider = CopilotProvider()
        with pytest.raises(Exception) as exc_info:
            await run_probe(provider, host)

        classified = classify_error(exc_info.value, "copilot", provider.error_messages)
        assert classified.kind is ErrorKind.AUTH_RETRY_EXHAUSTED
        assert classified.message == "Token invalid. Refresh to sign in again."

    @pytest.mark.asyncio
    async def test_rejected_own_token_is_cleared_and_next_refresh_signs_in(
        self, host, secrets, router
    ):
        secrets.entries[copilot_provider.KEYCHAIN_SERVICE] = '{"token": "bad-token"}'
        router.add("GET", copilot_provider.USAGE_URL, json_response(401, {}))
        router.add(
            "POST",
            copilot_provider.DEVICE_FLOW.device_code_url,
            json_response(200, {"device_code": "dev", "user_code": "NEW-CODE"}),
        )
        provider = CopilotProvider()
        engine = make_engine(provider)
        ctx = host.context_for("copilot")

        with pytest.raises(AuthRetryExhaustedError):
            await provider.probe(ctx, engine)
        assert copilot_provider.KEYCHAIN_SERVICE not in secrets.entries
        assert router.calls_to(copilot_provider.DEVICE_FLOW.device_code_url) == []

        with pytest.raises(DeviceFlowPendingError) as exc_info:
            await provider.probe(ctx, engine)

        assert exc_info.value.user_code == "NEW-CODE"
        assert len(router.calls_to(copilot_provider.USAGE_URL)) == 1
        assert len(router.calls_to(copilot_provider.DEVICE_FLOW.device_code_url)) == 1


# =============================================================================
# CURSOR
# =============================================================================


def make_state_db(path, access_token, refresh_token="r1"):
    conn = sqlite3.connect(str(path))
    conn.execute("CREATE TABLE ItemTable (key TEXT PRIMARY KEY, value BLOB)")
    conn.executemany(
        "INSERT INTO ItemTable (key, value) VALUES (?, ?)",
        [("cursorAuth/accessToken", access_token), ("cursorAuth/refreshToken", refresh_token)],
    )
    conn.commit()
    conn.close()


CURSOR_USAGE = {
    "enabled": True,
    "billingCycleEnd": 1_752_000_000_000,
    "planUsage": {"totalSpend": 1234, "limit": 2000, "bonusSpend": 0},
    "spendLimitUsage": {"individualLimit": 5000, "individualRemaining": 3500},
}


class TestCursor:
    @pytest.mark.asyncio
    async def test_usage_lines_and_plan(self, host, router, tmp_path):
        db = tmp_path / "state.vscdb"
        token = make_jwt({"exp": NOW_MS // 1000 + 3600})
        make_state_db(db, token)
        router.add("POST", CURSOR_USAGE_URL, json_response(200, CURSOR_USAGE))
        router.add("POST", CURSOR_PLAN_URL, json_response(200, {"planInfo": {"planName": "pro"}}))

        output = await run_probe(CursorProvider(state_db=str(db)), host)

        request = router.calls_to(CURSOR_USAGE_URL)[0]
        assert request.headers["authorization"] == f"Bearer {token}"
        assert request.headers["connect-protocol-version"] == "1"
        assert router.calls_to(CURSOR_REFRESH_URL) == []
        assert output.plan == "Pro"
        assert [(line.label, line.used, line.limit) for line in output.lines] == [
            ("Plan usage", 12.34, 20.0),
            ("On-demand", 15.0, 50.0),
        ]

    @pytest.mark.asyncio
    async def test_plan_failure_is_soft(self, host, router, tmp_path):
        db = tmp_path / "state.vscdb"
        make_state_db(db, make_jwt({"exp": NOW_MS // 1000 + 3600}))
        usage = dict(CURSOR_USAGE, planUsage={"totalSpend": 0, "limit": 2000, "bonusSpend": 150})
        router.add("POST", CURSOR_USAGE_URL, json_response(200, usage))
        router.add("POST", CURSOR_PLAN_URL, json_response(500, {}))

        output = await run_probe(CursorProvider(state_db=str(db)), host)

        assert output.plan is None
        assert TextLine("Bonus spend", "$1.5") in output.lines

    @pytest.mark.asyncio
    async def test_tracking_disabled(self, host, router, tmp_path):
        db = tmp_path / "state.vscdb"
        make_state_db(db, make_jwt({"exp": NOW_MS // 1000 + 3600}))
        router.add("POST", CURSOR_USAGE_URL, json_response(200, {"enabled": False}))

        with pytest.raises(FeatureUnavailableError):
            await run_probe(CursorProvider(state_db=str(db)), host)

    @pytest.mark.asyncio
    async def test_expired_jwt_refreshed_and_written_back(self, host, router, tmp_path):
        db = tmp_path / "state.vscdb"
        make_state_db(db, make_jwt({"exp": NOW_MS // 1000 - 60}))
        fresh = make_jwt({"exp": NOW_MS // 1000 + 3600})
        router.add("POST", CURSOR_REFRESH_URL, json_response(200, {"access_token": fresh}))
        router.add("POST", CURSOR_USAGE_URL, json_response(200, CURSOR_USAGE))
        router.add("POST", CURSOR_PLAN_URL, json_response(200, {}))

        await run_probe(CursorProvider(state_db=str(db)), host)

        conn = sqlite3.connect(str(db))
        stored = conn.execute(
            "SELECT value FROM ItemTable WHERE key = 'cursorAuth/accessToken'"
        ).fetchone()[0]
        conn.close()
        assert stored == fresh

    @pytest.mark.asyncio
    async def test_logout_signal(self, host, router, tmp_path):
        db = tmp_path / "state.vscdb"
        make_state_db(db, make_jwt({"exp": NOW_MS // 1000 - 60}))
        router.add("POST", CURSOR_REFRESH_URL, json_response(200, {"shouldLogout": True}))

        with pytest.raises(ReAuthRequiredError) as exc_info:
            await run_probe(CursorProvider(state_db=str(db)), host)
        assert exc_info.value.message == "Session expired. Sign in via Cursor app."
        assert router.calls_to(CURSOR_USAGE_URL) == []

    @pytest.mark.asyncio
    async def test_locked_state_db_does_not_stall_batch(self, host, tmp_path):
        db = tmp_path / "state.vscdb"
        make_state_db(db, make_jwt({"exp": NOW_MS // 1000 + 3600}))
        runner = make_runner(
            host, CursorProvider(state_db=str(db)), ScriptedProvider("fast"), probe_timeout=0.3
        )
        events = []
        runner.subscribe(events.append)
        lock = sqlite3.connect(str(db), isolation_level=None)
        lock.execute("BEGIN EXCLUSIVE")
        loop = asyncio.get_running_loop()
        try:
            started = loop.time()
            runner.start_probe_batch(batch_id="b1")
            await runner.wait_idle()
            elapsed = loop.time() - started
        finally:
            lock.execute("ROLLBACK")
            lock.close()

        assert elapsed < 2.0
        results = {e.provider_id: e for e in events if isinstance(e, ProbeResult)}
        assert results["fast"].ok
        assert results["cursor"].error.kind is ErrorKind.NETWORK
        assert results["cursor"].error.message == PROBE_TIMEOUT_MESSAGE
        assert events[-1] == BatchComplete("b1")


# =============================================================================
# MOCK AND REGISTRY
# =============================================================================


class TestMock:
    @pytest.mark.asyncio
    async def test_default_mode_ok(self, host, router):
        output = await run_probe(MockProvider(), host)

        assert output.plan == "Mock"
        assert [line.label for line in output.lines] == ["Mode", "Percent", "Dollars", "Now"]
        config = host.context_for("mock").data_dir / "config.json"
        assert json.loads(host.files.read_text(config)) == {"mode": "ok"}
        assert router.calls == []

    @pytest.mark.asyncio
    async def test_chaos_cycles(self, host):
        ctx = host.context_for("mock")
        host.files.write_text(ctx.data_dir / "config.json", '{"mode": "chaos"}')
        provider = MockProvider()

        first = await run_probe(provider, host)
        second = await run_probe(provider, host)
        with pytest.raises(MalformedResponseError):
            await run_probe(provider, host)

        assert first.plan == "Mock"
        assert second.plan is None
        state = json.loads(host.files.read_text(ctx.data_dir / "state.json"))
        assert state["counter"] == 2
        assert state["picked"] == "malformed"


class TestRegistry:
    def test_create_providers(self):
        providers = create_providers(["cursor", "nope", "claude"])
        assert [p.provider_id for p in providers] == ["cursor", "claude"]
        assert [p.provider_id for p in create_providers()] == [
            "claude",
            "codex",
            "cursor",
            "copilot",
            "mock",
        ]

    def test_default_error_wording_is_read_only(self):
        provider = MockProvider()
        assert dict(provider.error_messages) == {}
        with pytest.raises(TypeError):
            provider.error_messages[ErrorKind.NETWORK] = "changed"
        assert dict(CopilotProvider.error_messages)[ErrorKind.AUTH_RETRY_EXHAUSTED] == (
            "Token invalid. Refresh to sign in again."
        )
