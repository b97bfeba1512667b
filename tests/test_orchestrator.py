from __future__ import annotations

import threading
import time
from datetime import timedelta

import pytest

from conftest import ScriptedClient
from taskpulse.analysis import (
    AnalysisOrchestrator,
    AnalysisState,
    ContextError,
    ReplyQuality,
    RiskLevel,
    StaticSubjectProvider,
    SubjectNotFoundError,
)
from taskpulse.analysis.logs import load_analysis_log
from taskpulse.config import PipelineConfig
from taskpulse.memory.aggregation import AggregationEngine
from taskpulse.memory.schema import DataKind
from taskpulse.memory.store import ContextualDataStore
from taskpulse.models.llm_client import LLMTransportError

FENCED_REPLY = '```json\n{"statusSummary":"ok","nextSteps":"go","riskLevel":"high","intelligentActions":[]}\n```'


def _reply(summary: str) -> str:
    return f'{{"statusSummary": "{summary}", "nextSteps": "go", "riskLevel": "low", "intelligentActions": []}}'


def _wait_for(predicate, timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        time.sleep(0.01)


class CountingProvider(StaticSubjectProvider):
    def __init__(self, *records) -> None:
        super().__init__(records)
        self.fetches = 0

    def fetch_subject(self, subject_id: str):
        self.fetches += 1
        return super().fetch_subject(subject_id)


def test_fenced_reply_resolves_to_typed_result(clock, subject_record) -> None:
    client = ScriptedClient(FENCED_REPLY)
    with AnalysisOrchestrator(StaticSubjectProvider([subject_record]), client, clock=clock) as orchestrator:
        result = orchestrator.execute_analysis("T1", timeout=5)

        assert result.to_payload() == {
            "statusSummary": "ok",
            "nextSteps": "go",
            "riskLevel": "high",
            "intelligentActions": [],
        }
        assert orchestrator.state("T1") is AnalysisState.CACHED_SUCCESS
        assert orchestrator.latest_result("T1") == result
        assert orchestrator.resolutions()[-1].quality is ReplyQuality.REPAIRED


def test_concurrent_requests_share_one_model_call(clock, subject_record) -> None:
    gate = threading.Event()
    client = ScriptedClient(_reply("shared"), gate=gate)
    with AnalysisOrchestrator(StaticSubjectProvider([subject_record]), client, clock=clock) as orchestrator:
        first = orchestrator.submit_analysis("T1")
        assert client.started.wait(5)
        assert orchestrator.state("T1") is AnalysisState.LLM_IN_FLIGHT

        second = orchestrator.submit_analysis("T1")
        results = []
        waiter = threading.Thread(target=lambda: results.append(orchestrator.execute_analysis("T1", timeout=5)))
        waiter.start()

        gate.set()
        waiter.join(5)

        assert second is first
        assert first.result(5) == second.result(5) == results[0]
        assert client.calls == 1


def test_cached_result_is_served_until_ttl_expires(clock, subject_record) -> None:
    client = ScriptedClient(lambda call: _reply(f"call {call}"))
    with AnalysisOrchestrator(StaticSubjectProvider([subject_record]), client, clock=clock) as orchestrator:
        first = orchestrator.execute_analysis("T1", timeout=5)
        clock.advance(minutes=9)
        cached = orchestrator.execute_analysis("T1", timeout=5)
        clock.advance(minutes=2)
        refreshed = orchestrator.execute_analysis("T1", timeout=5)

    assert cached == first
    assert refreshed.status_summary == "call 2"
    assert client.calls == 2


def test_context_snapshot_has_its_own_ttl(clock, subject_record) -> None:
    provider = CountingProvider(subject_record)
    client = ScriptedClient(_reply("fresh"))
    config = PipelineConfig.from_mapping({"analysis": {"result_ttl_minutes": 0}})
    with AnalysisOrchestrator(provider, client, config=config, clock=clock) as orchestrator:
        orchestrator.execute_analysis("T1", timeout=5)
        orchestrator.execute_analysis("T1", timeout=5)
        assert provider.fetches == 1
        assert client.calls == 2

        clock.advance(minutes=4)
        orchestrator.execute_analysis("T1", timeout=5)
        assert provider.fetches == 2


def test_cleared_inflight_result_is_not_surfaced(clock, subject_record) -> None:
    gate = threading.Event()
    client = ScriptedClient(lambda call: _reply("old" if call == 1 else "new"), gate=gate)
    with AnalysisOrchestrator(StaticSubjectProvider([subject_record]), client, clock=clock) as orchestrator:
        stale = orchestrator.submit_analysis("T1")
        assert client.started.wait(5)

        assert orchestrator.clear_analysis("T1") == 1
        gate.set()

        assert stale.result(5).status_summary == "old"
        assert orchestrator.state("T1") is AnalysisState.IDLE
        assert orchestrator.latest_result("T1") is None

        fresh = orchestrator.execute_analysis("T1", timeout=5)

        assert fresh.status_summary == "new"
        assert client.calls == 2
        resolutions = orchestrator.resolutions()
        assert [entry.stale for entry in resolutions] == [True, False]
        assert [entry.generation for entry in resolutions] == [0, 1]


def test_clear_drops_cached_result(clock, subject_record) -> None:
    client = ScriptedClient(lambda call: _reply(f"call {call}"))
    with AnalysisOrchestrator(StaticSubjectProvider([subject_record]), client, clock=clock) as orchestrator:
        orchestrator.execute_analysis("T1", timeout=5)
        orchestrator.clear_analysis("T1")

        result = orchestrator.execute_analysis("T1", timeout=5)

    assert result.status_summary == "call 2"


def test_manual_trigger_holds_the_model_call(clock, subject_record) -> None:
    client = ScriptedClient(_reply("manual"))
    config = PipelineConfig.from_mapping({"analysis": {"manual_trigger": True}})
    with AnalysisOrchestrator(StaticSubjectProvider([subject_record]), client, config=config, clock=clock) as orchestrator:
        pending = orchestrator.submit_analysis("T1")
        _wait_for(lambda: orchestrator.state("T1") is AnalysisState.CONTEXT_READY)

        assert not pending.done()
        assert client.calls == 0

        triggered = orchestrator.trigger_analysis("T1")

        assert triggered is pending
        assert pending.result(5).status_summary == "manual"
        assert client.calls == 1


def test_manual_trigger_without_pending_request_runs_immediately(clock, subject_record) -> None:
    client = ScriptedClient(_reply("direct"))
    config = PipelineConfig.from_mapping({"analysis": {"manual_trigger": True}})
    with AnalysisOrchestrator(StaticSubjectProvider([subject_record]), client, config=config, clock=clock) as orchestrator:
        result = orchestrator.trigger_analysis("T1").result(5)

    assert result.status_summary == "direct"


def test_clearing_a_held_request_cancels_it(clock, subject_record) -> None:
    client = ScriptedClient(_reply("never"))
    config = PipelineConfig.from_mapping({"analysis": {"manual_trigger": True}})
    with AnalysisOrchestrator(StaticSubjectProvider([subject_record]), client, config=config, clock=clock) as orchestrator:
        pending = orchestrator.submit_analysis("T1")
        _wait_for(lambda: orchestrator.state("T1") is AnalysisState.CONTEXT_READY)

        orchestrator.clear_analysis("T1")

        assert pending.cancelled()
        assert client.calls == 0


@pytest.mark.parametrize("error", [LLMTransportError("HTTP 401"), ConnectionError("reset by peer")])
def test_transport_failure_resolves_with_fallback(clock, subject_record, error) -> None:
    client = ScriptedClient(error=error)
    with AnalysisOrchestrator(StaticSubjectProvider([subject_record]), client, clock=clock) as orchestrator:
        result = orchestrator.execute_analysis("T1", timeout=5)

        assert result.risk_level is RiskLevel.MEDIUM
        assert subject_record.task.title in result.status_summary
        assert result.intelligent_actions == []
        assert orchestrator.state("T1") is AnalysisState.CACHED_FALLBACK
        assert orchestrator.resolutions()[-1].quality is ReplyQuality.FALLBACK


def test_malformed_reply_is_not_an_error(clock, subject_record) -> None:
    client = ScriptedClient("I think you should review the open invoices first.")
    with AnalysisOrchestrator(StaticSubjectProvider([subject_record]), client, clock=clock) as orchestrator:
        result = orchestrator.execute_analysis("T1", timeout=5)

        assert result.intelligent_actions[0].label == "the open invoices first"
        assert orchestrator.resolutions()[-1].quality is ReplyQuality.EXTRACTED


def test_missing_subject_propagates_and_is_not_cached(clock, subject_record) -> None:
    client = ScriptedClient(_reply("unused"))
    provider = CountingProvider(subject_record)
    with AnalysisOrchestrator(provider, client, clock=clock) as orchestrator:
        with pytest.raises(SubjectNotFoundError):
            orchestrator.execute_analysis("missing", timeout=5)
        assert orchestrator.state("missing") is AnalysisState.CONTEXT_ERROR

        with pytest.raises(SubjectNotFoundError):
            orchestrator.execute_analysis("missing", timeout=5)

    assert provider.fetches == 2
    assert client.calls == 0


def test_unexpected_provider_errors_become_context_errors(clock) -> None:
    class BrokenProvider:
        def fetch_subject(self, subject_id):
            raise KeyError("table missing")

    class EmptyProvider:
        def fetch_subject(self, subject_id):
            return None

    with AnalysisOrchestrator(BrokenProvider(), ScriptedClient(), clock=clock) as orchestrator:
        with pytest.raises(ContextError) as excinfo:
            orchestrator.execute_analysis("T1", timeout=5)
    assert not isinstance(excinfo.value, SubjectNotFoundError)

    with AnalysisOrchestrator(EmptyProvider(), ScriptedClient(), clock=clock) as orchestrator:
        with pytest.raises(SubjectNotFoundError):
            orchestrator.execute_analysis("T1", timeout=5)


def test_async_provider_is_supported(clock, subject_record) -> None:
    class AsyncProvider:
        async def fetch_subject(self, subject_id):
            return subject_record

    client = ScriptedClient(_reply("async"))
    with AnalysisOrchestrator(AsyncProvider(), client, clock=clock) as orchestrator:
        result = orchestrator.execute_analysis("T1", timeout=5)

    assert result.status_summary == "async"


def test_behaviour_trends_reach_the_prompt(clock, make_point, subject_record) -> None:
    store = ContextualDataStore()
    store.insert(
        [
            make_point(
                DataKind.PRODUCTIVITY_METRICS,
                payload={"average_productivity": value},
                timestamp=clock.now() - timedelta(hours=hours_ago),
            )
            for hours_ago, value in ((150, 2.0), (140, 2.0), (130, 2.0), (30, 4.0), (20, 4.0), (10, 4.0))
        ]
    )
    client = ScriptedClient(_reply("trends"))
    with AnalysisOrchestrator(
        StaticSubjectProvider([subject_record]),
        client,
        clock=clock,
        aggregation=AggregationEngine(store),
    ) as orchestrator:
        orchestrator.execute_analysis("T1", timeout=5)

    user_prompt = client.payloads[0]["input"][-1]["content"][0]["text"]
    assert "## Behaviour Trends" in user_prompt
    assert "average_productivity: increasing (+100.0%" in user_prompt
    assert "Ship quarterly report" in user_prompt


def test_analysis_logs_are_written_when_configured(clock, subject_record, tmp_path) -> None:
    config = PipelineConfig.from_mapping({"paths": {"logs": str(tmp_path)}})
    client = ScriptedClient(_reply("logged"))
    with AnalysisOrchestrator(StaticSubjectProvider([subject_record]), client, config=config, clock=clock) as orchestrator:
        orchestrator.execute_analysis("T1", timeout=5)

    log_files = sorted((tmp_path / "analysis").glob("analysis__T1__*.json"))
    assert len(log_files) == 1
    entry = load_analysis_log(log_files[0])
    assert entry.subject_id == "T1"
    assert entry.quality == "strict"
    assert entry.result["statusSummary"] == "logged"
    assert "Ship quarterly report" in entry.context["user_prompt"]
    assert entry.raw_reply == _reply("logged")


def test_deeply_nested_reply_resolves_and_releases_the_subject(clock, subject_record) -> None:
    client = ScriptedClient("[" * 100000)
    config = PipelineConfig.from_mapping({"analysis": {"result_ttl_minutes": 0}})
    with AnalysisOrchestrator(StaticSubjectProvider([subject_record]), client, config=config, clock=clock) as orchestrator:
        first = orchestrator.submit_analysis("T1")
        result = first.result(5)

        assert result.status_summary
        assert orchestrator.state("T1") is AnalysisState.CACHED_SUCCESS
        second = orchestrator.submit_analysis("T1")
        assert second is not first
        second.result(5)
        assert client.calls == 2


def test_failures_after_the_model_call_resolve_with_fallback(clock, subject_record, monkeypatch, tmp_path) -> None:
    import taskpulse.analysis.orchestrator as orchestrator_module

    def broken(*args, **kwargs):
        raise RuntimeError("parser exploded")

    monkeypatch.setattr(orchestrator_module, "parse_analysis_reply", broken)
    monkeypatch.setattr(orchestrator_module, "write_analysis_log", broken)
    config = PipelineConfig.from_mapping({"paths": {"logs": str(tmp_path)}})
    client = ScriptedClient(_reply("ignored"))
    with AnalysisOrchestrator(StaticSubjectProvider([subject_record]), client, config=config, clock=clock) as orchestrator:
        result = orchestrator.execute_analysis("T1", timeout=5)

        assert result.risk_level is RiskLevel.MEDIUM
        assert result.intelligent_actions == []
        assert orchestrator.state("T1") is AnalysisState.CACHED_FALLBACK
        assert orchestrator.resolutions()[-1].quality is ReplyQuality.FALLBACK
        assert orchestrator.execute_analysis("T1", timeout=5) == result
        assert client.calls == 1
