import asyncio
import json
from types import SimpleNamespace

import pytest
from conftest import HOUR_MS, ScriptedAI, alternating, make_conversation, ms, sse_events
from openai import OpenAIError

from chatscope.exceptions import AICallError, AIResponseError
from chatscope.metrics import compute
from chatscope.sampling import sample
from chatscope.streaming import (
    HEARTBEAT,
    STAGE_ORDER,
    AnalysisInput,
    AnalysisPipeline,
    CompleteEvent,
    ErrorEvent,
    FallbackAIClient,
    OpenAIClient,
    ProgressEvent,
    ResultStore,
    StreamingSession,
    briefing_from_payload,
    default_ai_client,
    encode,
    ordered_stages,
    parse_ai_json,
)


def _collect(session, pipeline):
    async def run():
        return "".join([frame async for frame in session.run(pipeline)])

    return asyncio.run(run())


async def _stored(results, analysis_id):
    while results.get(analysis_id) is None:
        await asyncio.sleep(0.001)
    return results.get(analysis_id)


def _analysis_input(settings, count=40):
    conversation = make_conversation(alternating(count, start=ms(2024, 1, 1), step_ms=HOUR_MS))
    quantitative = compute(conversation, settings)
    return AnalysisInput(
        conversation=conversation,
        quantitative=quantitative,
        samples=sample(conversation, quantitative, settings=settings),
        settings=settings,
    )


def test_encode_frames():
    assert encode(ProgressEvent(status="x")) == 'data: {"type":"progress","status":"x"}\n\n'
    assert encode(ErrorEvent(error="nope")) == 'data: {"type":"error","error":"nope"}\n\n'
    frame = encode(CompleteEvent(result={"a": 1}))
    assert json.loads(frame[len("data: ") :]) == {"type": "complete", "result": {"a": 1}}
    assert HEARTBEAT == ":\n\n"


def test_heartbeats_are_interleaved():
    async def pipeline(session):
        await asyncio.sleep(0.08)
        session.complete({"ok": True})

    body = _collect(StreamingSession(heartbeat_interval=0.01), pipeline)
    events, heartbeats = sse_events(body)
    assert heartbeats >= 1
    assert events == [{"type": "complete", "result": {"ok": True}}]


def test_only_one_terminal_event():
    results = ResultStore(60)

    async def pipeline(session):
        session.progress("working", "main")
        assert session.complete({"n": 1})
        assert not session.complete({"n": 2})
        assert not session.fail("late")
        assert not session.progress("after")

    session = StreamingSession(heartbeat_interval=10, analysis_id="req-1", results=results)
    events, _ = sse_events(_collect(session, pipeline))
    assert [e["type"] for e in events] == ["progress", "complete"]
    assert results.get("req-1").to_dict() == {"status": "complete", "result": {"n": 1}}


def test_pipeline_without_result_reports_error():
    async def pipeline(session):
        session.progress("working")

    events, _ = sse_events(_collect(StreamingSession(heartbeat_interval=10), pipeline))
    assert events[-1] == {"type": "error", "error": "Analysis ended without a result."}


def test_pipeline_crash_reports_generic_error():
    async def pipeline(session):
        raise RuntimeError("boom")

    events, _ = sse_events(_collect(StreamingSession(heartbeat_interval=10), pipeline))
    assert events == [{"type": "error", "error": "Analysis failed. Please try again."}]


def test_upstream_error_uses_user_message():
    async def pipeline(session):
        raise AICallError("connection reset")

    events, _ = sse_events(_collect(StreamingSession(heartbeat_interval=10), pipeline))
    assert events == [{"type": "error", "error": AICallError.user_message}]


def test_disconnect_lets_pipeline_finish_detached():
    async def scenario():
        gate = asyncio.Event()
        results = ResultStore(60)
        session = StreamingSession(heartbeat_interval=10, analysis_id="r1", results=results)

        async def pipeline(s):
            s.progress("working")
            await gate.wait()
            s.complete({"done": True})

        stream = session.run(pipeline)
        first = await stream.__anext__()
        await stream.aclose()
        assert session.aborted.is_set()
        gate.set()
        stored = await asyncio.wait_for(_stored(results, "r1"), timeout=2)
        return first, stored

    first, stored = asyncio.run(scenario())
    assert first == encode(ProgressEvent(status="working"))
    assert stored.status == "complete"
    assert stored.result == {"done": True}


def test_disconnect_probe_aborts_stream():
    async def scenario():
        session = StreamingSession(heartbeat_interval=10, is_disconnected=lambda: _true())

        async def pipeline(s):
            s.progress("working")
            s.complete({})

        frames = [frame async for frame in session.run(pipeline)]
        return session, frames

    async def _true():
        return True

    session, frames = asyncio.run(scenario())
    assert frames == []
    assert session.aborted.is_set()


def test_result_store_expires_entries():
    store = ResultStore(0)
    store.put("gone", "complete", result={})
    assert store.get("gone") is None
    assert len(store) == 0


def test_result_store_keeps_first_outcome():
    store = ResultStore(60)
    assert store.put("a1", "complete", result={"analysis": "first"}) is True
    assert store.put("a1", "error", error="second") is False
    assert store.get("a1").to_dict() == {"status": "complete", "result": {"analysis": "first"}}



def test_pipeline_runs_stages_in_order(settings):
    ai = ScriptedAI()
    data = _analysis_input(settings)
    session = StreamingSession(heartbeat_interval=10, analysis_id="abc")
    events, _ = sse_events(_collect(session, AnalysisPipeline(ai, data)))

    assert ai.calls == list(STAGE_ORDER)
    assert [e.get("stage") for e in events if e["type"] == "progress"] == list(STAGE_ORDER)
    result = events[-1]["result"]
    assert result["analysisId"] == "abc"
    assert result["stages"] == list(STAGE_ORDER)
    assert result["analysis"] == {"summary": "40 messages reviewed"}
    assert result["briefing"] == {"flaggedDateRanges": [], "topicsToInvestigate": []}


def test_pipeline_stage_subset_keeps_order(settings):
    ai = ScriptedAI()
    pipeline = AnalysisPipeline(ai, _analysis_input(settings), stages=["main", "recon"])
    events, _ = sse_events(_collect(StreamingSession(heartbeat_interval=10), pipeline))
    assert ai.calls == ["recon", "main"]
    assert events[-1]["type"] == "complete"


def test_malformed_recon_reply_fails_stream(settings):
    ai = ScriptedAI({"recon": {"unexpected": True}})
    pipeline = AnalysisPipeline(ai, _analysis_input(settings))
    events, _ = sse_events(_collect(StreamingSession(heartbeat_interval=10), pipeline))
    assert ai.calls == ["recon"]
    assert events[-1] == {"type": "error", "error": AIResponseError.user_message}


def test_aborted_pipeline_skips_remaining_stages(settings):
    async def scenario():
        gate = asyncio.Event()
        ai = ScriptedAI(gate=gate)
        results = ResultStore(60)
        session = StreamingSession(heartbeat_interval=10, analysis_id="r2", results=results)
        stream = session.run(AnalysisPipeline(ai, _analysis_input(settings)))
        await stream.__anext__()
        await stream.aclose()
        gate.set()
        stored = await asyncio.wait_for(_stored(results, "r2"), timeout=2)
        return ai, stored

    ai, stored = asyncio.run(scenario())
    assert ai.calls == ["recon"]
    assert stored.status == "aborted"


def test_parse_ai_json_accepts_fenced_object():
    assert parse_ai_json('```json\n{"a": 1}\n```') == {"a": 1}
    assert parse_ai_json(' {"b": [1, 2]} ') == {"b": [1, 2]}


@pytest.mark.parametrize("text", ["", "   ", None, "not json", "[1, 2]", '"text"'])
def test_parse_ai_json_rejects_non_objects(text):
    with pytest.raises(AIResponseError):
        parse_ai_json(text)


def test_parse_ai_json_rejects_deep_nesting():
    with pytest.raises(AIResponseError, match="nested too deeply"):
        parse_ai_json("[" * 200_000 + "]" * 200_000)


def _fake_openai(*, content=None, error=None, choices=True):
    calls = []

    async def create(**kwargs):
        calls.append(kwargs)
        if error is not None:
            raise error
        if not choices:
            return SimpleNamespace(choices=[])
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])

    client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
    return client, calls


def test_openai_client_requests_json_mode():
    fake, calls = _fake_openai(content='{"summary": "ok"}')
    client = OpenAIClient(model="gpt-test", client=fake)
    reply = asyncio.run(client.complete("main", "prompt", {"title": "Zażółć"}))
    assert reply == {"summary": "ok"}
    assert calls[0]["model"] == "gpt-test"
    assert calls[0]["response_format"] == {"type": "json_object"}
    assert calls[0]["messages"][0] == {"role": "system", "content": "prompt"}
    assert json.loads(calls[0]["messages"][1]["content"]) == {"title": "Zażółć"}


def test_openai_client_maps_errors():
    fake, _ = _fake_openai(error=OpenAIError("rate limited"))
    with pytest.raises(AICallError):
        asyncio.run(OpenAIClient(model="m", client=fake).complete("main", "p", {}))

    fake, _ = _fake_openai(choices=False)
    with pytest.raises(AIResponseError):
        asyncio.run(OpenAIClient(model="m", client=fake).complete("main", "p", {}))


def test_fallback_client_flags_bursts():
    context = {
        "bursts": [{"startDate": "2024-01-01", "endDate": "2024-01-03", "messageCount": 50, "avgDaily": 16.7}],
        "briefing": None,
    }
    reply = asyncio.run(FallbackAIClient().complete("recon", "p", context))
    assert reply["flaggedDateRanges"][0]["start"] == "2024-01-01"
    assert briefing_from_payload(reply).flagged_date_ranges[0].priority == "high"

    summary = asyncio.run(
        FallbackAIClient().complete(
            "main", "p", {"quantitativeContext": "digest", "participants": ["A"], "samples": {"overview": [1, 2]}}
        )
    )
    assert summary == {"summary": "digest", "participants": ["A"], "sampledMessages": 2, "usedLlm": False}


def test_default_ai_client_depends_on_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    assert isinstance(default_ai_client("gpt-4o-mini"), FallbackAIClient)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    assert isinstance(default_ai_client("gpt-4o-mini"), OpenAIClient)


def test_ordered_stages():
    assert ordered_stages(None) == STAGE_ORDER
    assert ordered_stages(["main", "recon"]) == ("recon", "main")
    with pytest.raises(ValueError):
        ordered_stages(["bogus"])
    with pytest.raises(ValueError):
        ordered_stages([])


def test_briefing_from_payload_skips_bad_entries():
    briefing = briefing_from_payload(
        {
            "flaggedDateRanges": [{"start": "2024-01", "end": "2024-02"}, {"start": "soon", "end": "x"}, "junk"],
            "topicsToInvestigate": [{"topic": "holiday"}, {"reason": "no topic"}],
        }
    )
    assert len(briefing.flagged_date_ranges) == 1
    assert [t.topic for t in briefing.topics] == ["holiday"]


@pytest.mark.parametrize("payload", [{}, {"flaggedDateRanges": "2024-01"}, {"topicsToInvestigate": {}}])
def test_briefing_from_payload_rejects_wrong_shape(payload):
    with pytest.raises(AIResponseError):
        briefing_from_payload(payload)
