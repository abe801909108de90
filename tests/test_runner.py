"""Tests for the probe batch runner."""

import asyncio
import uuid

import pytest
from conftest import ScriptedProvider, make_runner

from openusage.core.errors import ErrorKind, NotAuthenticatedError
from openusage.core.types import BatchComplete, ProbeOutput, ProbeResult
from openusage.orchestrator import PROBE_TIMEOUT_MESSAGE


def collect(runner):
    events = []
    runner.subscribe(events.append)
    return events


class TestStartProbeBatch:
    @pytest.mark.asyncio
    async def test_one_result_per_provider_then_complete(self, host):
        runner = make_runner(host, ScriptedProvider("a"), ScriptedProvider("b"))
        events = collect(runner)

        batch = runner.start_probe_batch(["a", "b"], batch_id="batch-1")
        await runner.wait_idle()

        assert batch.provider_ids == ("a", "b")
        results = [e for e in events if isinstance(e, ProbeResult)]
        assert sorted(r.provider_id for r in results) == ["a", "b"]
        assert all(r.batch_id == "batch-1" and r.ok for r in results)
        assert events[-1] == BatchComplete("batch-1")
        assert sum(isinstance(e, BatchComplete) for e in events) == 1

    @pytest.mark.asyncio
    async def test_returns_before_probes_finish(self, host):
        gate = asyncio.Event()
        runner = make_runner(host, ScriptedProvider("a", gate=gate))
        events = collect(runner)

        runner.start_probe_batch(["a"], batch_id="b1")
        await asyncio.sleep(0)
        assert events == []

        gate.set()
        await runner.wait_idle()
        assert [type(e) for e in events] == [ProbeResult, BatchComplete]

    @pytest.mark.asyncio
    async def test_unknown_and_duplicate_ids_are_dropped(self, host):
        provider = ScriptedProvider("a")
        runner = make_runner(host, provider)
        events = collect(runner)

        batch = runner.start_probe_batch(["a", "zzz", "a"], batch_id="b1")
        await runner.wait_idle()

        assert batch.provider_ids == ("a",)
        assert provider.calls == 1
        assert len([e for e in events if isinstance(e, ProbeResult)]) == 1

    @pytest.mark.asyncio
    async def test_empty_selection_completes_immediately(self, host):
        runner = make_runner(host, ScriptedProvider("a"))
        events = collect(runner)

        batch = runner.start_probe_batch(["missing"], batch_id="b1")

        assert batch.provider_ids == ()
        assert events == [BatchComplete("b1")]

    @pytest.mark.asyncio
    async def test_blank_batch_id_gets_uuid(self, host):
        runner = make_runner(host, ScriptedProvider("a"))

        batch = runner.start_probe_batch(["a"], batch_id="  ")
        await runner.wait_idle()

        assert str(uuid.UUID(batch.batch_id)) == batch.batch_id

    @pytest.mark.asyncio
    async def test_default_selection_is_every_provider(self, host):
        runner = make_runner(host, ScriptedProvider("a"), ScriptedProvider("b"))
        batch = runner.start_probe_batch()
        await runner.wait_idle()
        assert batch.provider_ids == ("a", "b")


class TestProbeFailures:
    @pytest.mark.asyncio
    async def test_hung_probe_times_out(self, host):
        runner = make_runner(
            host,
            ScriptedProvider("slow", gate=asyncio.Event()),
            ScriptedProvider("fast"),
            probe_timeout=0.05,
        )
        events = collect(runner)

        runner.start_probe_batch(batch_id="b1")
        await runner.wait_idle()

        results = {e.provider_id: e for e in events if isinstance(e, ProbeResult)}
        assert results["fast"].ok
        assert results["slow"].error.kind is ErrorKind.NETWORK
        assert results["slow"].error.message == PROBE_TIMEOUT_MESSAGE
        assert events[-1] == BatchComplete("b1")

    @pytest.mark.asyncio
    async def test_exceptions_are_classified_with_provider_wording(self, host):
        provider = ScriptedProvider("a", NotAuthenticatedError())
        provider.error_messages = {ErrorKind.NOT_AUTHENTICATED: "Run `a login`."}
        runner = make_runner(host, provider)
        events = collect(runner)

        runner.start_probe_batch(batch_id="b1")
        await runner.wait_idle()

        assert events[0].error.kind is ErrorKind.NOT_AUTHENTICATED
        assert events[0].error.message == "Run `a login`."

    @pytest.mark.asyncio
    async def test_unexpected_exception_still_completes(self, host):
        runner = make_runner(host, ScriptedProvider("a", RuntimeError("kaboom")))
        events = collect(runner)

        runner.start_probe_batch(batch_id="b1")
        await runner.wait_idle()

        assert events[0].error.kind is ErrorKind.SERVER_ERROR
        assert "kaboom" not in events[0].error.message
        assert events[1] == BatchComplete("b1")

    @pytest.mark.asyncio
    async def test_listener_failure_does_not_stop_batch(self, host):
        runner = make_runner(host, ScriptedProvider("a"))

        def broken(event):
            raise RuntimeError("listener bug")

        runner.subscribe(broken)
        events = collect(runner)

        runner.start_probe_batch(batch_id="b1")
        await runner.wait_idle()

        assert [type(e) for e in events] == [ProbeResult, BatchComplete]

    @pytest.mark.asyncio
    async def test_unsubscribe(self, host):
        runner = make_runner(host, ScriptedProvider("a"))
        events = []
        unsubscribe = runner.subscribe(events.append)
        unsubscribe()

        runner.start_probe_batch(batch_id="b1")
        await runner.wait_idle()

        assert events == []

    @pytest.mark.asyncio
    async def test_aclose_cancels_running_probes(self, host):
        runner = make_runner(host, ScriptedProvider("a", gate=asyncio.Event()), probe_timeout=60)
        events = collect(runner)

        runner.start_probe_batch(batch_id="b1")
        await asyncio.sleep(0)
        await runner.aclose()

        assert events == []


def test_output_payload_passes_through():
    output = ProbeOutput(plan="Pro")
    assert ProbeResult("b", "a", output=output).ok
