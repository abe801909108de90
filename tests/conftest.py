"""Shared fakes: clock, secret store, routed HTTP transport, scripted providers and a temp home."""

import asyncio
import base64
import json
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import httpx
import pytest

from openusage.auth.token_manager import TokenLifecycleManager
from openusage.core.errors import SecretNotFoundError
from openusage.core.types import Credential, ProbeOutput
from openusage.credentials.backends import CredentialBackend
from openusage.credentials.store import CredentialStore
from openusage.host import Clock, FileStore, HostServices, HttpClient, SecretStore
from openusage.orchestrator.runner import ProbeBatchRunner
from openusage.providers.probe_engine import ProbeEngine
from openusage.providers.provider_interface import UsageProvider

NOW_MS = 1_750_000_000_000


class FakeClock(Clock):
    def __init__(self, now_ms: int = NOW_MS):
        self.current_ms = now_ms

    def now_ms(self) -> int:
        return self.current_ms

    def advance(self, ms: int) -> None:
        self.current_ms += ms


class FakeSecretStore(SecretStore):
    def __init__(self, entries: Optional[Dict[str, str]] = None):
        self.entries: Dict[str, str] = dict(entries or {})
        self.writes: List[Tuple[str, str]] = []

    async def read_generic_password(self, service: str) -> str:
        if service not in self.entries:
            raise SecretNotFoundError(service)
        return self.entries[service]

    async def write_generic_password(self, service: str, value: str) -> None:
        self.entries[service] = value
        self.writes.append((service, value))

    async def delete_generic_password(self, service: str) -> None:
        if self.entries.pop(service, None) is None:
            raise SecretNotFoundError(service)


RouteItem = Union[httpx.Response, Exception, Callable[[httpx.Request], httpx.Response]]


class MockRouter:
    """
    Queued responses per (method, url) for httpx.MockTransport.

    Responses are consumed in order; the last one repeats. Requests to
    unknown routes fail the test.
    """

    def __init__(self):
        self.routes: Dict[Tuple[str, str], List[RouteItem]] = {}
        self.calls: List[httpx.Request] = []

    def add(self, method: str, url: str, *responses: RouteItem) -> None:
        self.routes.setdefault((method.upper(), url), []).extend(responses)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        url = str(request.url).split("?")[0]
        queue = self.routes.get((request.method, url))
        if not queue:
            raise AssertionError(f"Unexpected request: {request.method} {url}")
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        if callable(item):
            return item(request)
        return item

    def calls_to(self, url: str) -> List[httpx.Request]:
        return [c for c in self.calls if str(c.url).split("?")[0] == url]


class MemoryBackend(CredentialBackend):
    """In-memory backend recording every save."""

    def __init__(self, name: str, credential: Optional[Credential] = None, writable: bool = True):
        self.name = name
        self.credential = credential
        self.writable = writable
        self.saved: List[Credential] = []
        self.fail_save = False

    async def load(self, ctx) -> Optional[Credential]:
        return self.credential

    async def save(self, ctx, credential: Credential) -> None:
        if self.fail_save:
            raise OSError("disk full")
        self.saved.append(credential)
        self.credential = credential

    async def clear(self, ctx) -> None:
        self.credential = None


def make_jwt(payload: Dict[str, Any]) -> str:
    def segment(value: Dict[str, Any]) -> str:
        raw = json.dumps(value).encode("utf-8")
        return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")

    return f"{segment({'alg': 'none'})}.{segment(payload)}.sig"


def json_response(status: int = 200, body: Any = None, headers: Optional[Dict[str, str]] = None):
    return httpx.Response(status, json=body if body is not None else {}, headers=headers)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def secrets() -> FakeSecretStore:
    return FakeSecretStore()


@pytest.fixture
def router() -> MockRouter:
    return MockRouter()


@pytest.fixture
def home(tmp_path):
    path = tmp_path / "home"
    path.mkdir()
    return path


@pytest.fixture
def files(home) -> FileStore:
    return FileStore(home=home)


@pytest.fixture
def http(router) -> HttpClient:
    return HttpClient(httpx.AsyncClient(transport=httpx.MockTransport(router.handle)))


@pytest.fixture
def host(http, secrets, files, clock, tmp_path) -> HostServices:
    return HostServices(
        http=http, secrets=secrets, files=files, clock=clock, data_root=tmp_path / "openusage"
    )


class ScriptedProvider(UsageProvider):
    """Provider whose probe returns or raises a fixed outcome, optionally after a gate opens."""

    def __init__(self, provider_id: str, outcome: Any = None, gate: Optional[asyncio.Event] = None):
        self.provider_id = provider_id
        self.display_name = provider_id.title()
        self.outcome = outcome if outcome is not None else ProbeOutput(plan=provider_id)
        self.gate = gate
        self.calls = 0

    def build_backends(self):
        return []

    async def probe(self, ctx, engine) -> ProbeOutput:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return self.outcome


def make_runner(host: HostServices, *providers: UsageProvider, **kwargs) -> ProbeBatchRunner:
    store = CredentialStore()
    engine = ProbeEngine(store, TokenLifecycleManager(store))
    return ProbeBatchRunner(engine, host, providers, **kwargs)
