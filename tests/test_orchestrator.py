"""
Tests for the turn orchestrator: event order, tool execution, direct answers,
cancellation and the blocking call() wrapper.
"""

import json
import threading

import pytest

from legalchat.agent.graph import AgentOrchestrator, direct_context, format_tool_results
from legalchat.agent.prompts import (
    FIRST_IRRELEVANT_USER_QUESTION,
    STATUS_ANALYZING,
    STATUS_DIRECT,
    STATUS_FINAL,
)
from legalchat.core.errors import EmptyResponseError
from legalchat.schemas.chat import Message
from tests.fakes import FakeLLM, make_tool

ACT = {"type": "legal_acts", "acts": [{"eli": "DU/1971/114", "title": "Kodeks wykroczeń"}]}
LEGAL_OUTPUT = json.dumps({"result": "Art. 51: grzywna", "artifact": ACT})


def _events(orchestrator: AgentOrchestrator, messages, cancel_event=None):
    return [(e.type, e.content, e.artifacts) for e in orchestrator.invoke(messages, cancel_event)]


class TestDirectGeneration:
    def test_no_enabled_tools_streams_last_three_messages(self, conversation) -> None:
        llm = FakeLLM()
        events = _events(AgentOrchestrator(llm, []), conversation)
        assert events == [
            ("status", STATUS_ANALYZING, None),
            ("status", STATUS_DIRECT, None),
            ("response", "Kara ", None),
            ("response", "wynosi ", None),
            ("response", "grzywnę.", None),
        ]
        assert [m.content for m in llm.generation_calls[0]] == [m.content for m in conversation[-3:]]
        assert llm.classifier_calls == []

    def test_irrelevant_tools_emit_no_tool_events(self, conversation) -> None:
        calls: list = []
        llm = FakeLLM(relevant=[])
        tools = [make_tool("legal", calls=calls), make_tool("web", calls=calls)]
        events = _events(AgentOrchestrator(llm, tools), conversation)
        assert "tool_execution" not in [e[0] for e in events]
        assert calls == []
        assert len(llm.classifier_calls) == 2

    def test_first_question_gets_filler_without_model_call(self, system_message) -> None:
        llm = FakeLLM()
        messages = [system_message, Message(role="user", content="Cześć!")]
        events = _events(AgentOrchestrator(llm, [make_tool("legal")]), messages)
        assert events == [
            ("status", STATUS_ANALYZING, None),
            ("status", STATUS_DIRECT, None),
            ("response", FIRST_IRRELEVANT_USER_QUESTION, None),
        ]
        assert llm.generation_calls == []

    def test_generation_failure_propagates(self, conversation) -> None:
        orchestrator = AgentOrchestrator(FakeLLM(fail_on_answer=True), [])
        with pytest.raises(RuntimeError, match="model stream broke"):
            list(orchestrator.invoke(conversation))


class TestToolTurn:
    def test_one_relevant_tool_of_two(self, conversation) -> None:
        llm = FakeLLM(relevant=["legal description"])
        tools = [make_tool("legal", output=LEGAL_OUTPUT), make_tool("web")]
        events = _events(AgentOrchestrator(llm, tools), conversation)
        assert events[:5] == [
            ("status", STATUS_ANALYZING, None),
            ("status", "Postanowiłem użyć 1 narzędzi: legal", None),
            ("status", "Czekam na odpowiedź od legal...", None),
            ("tool_execution", "Wykonanie narzędzia legal zakończone", [ACT]),
            ("status", STATUS_FINAL, None),
        ]
        responses = events[5:]
        assert [e[0] for e in responses] == ["response"] * 3
        assert "".join(e[1] for e in responses) == "Kara wynosi grzywnę."
        assert all(e[2] == [ACT] for e in responses)

    def test_final_generation_uses_fresh_two_message_context(self, conversation, system_message) -> None:
        llm = FakeLLM(relevant=["legal description"])
        list(AgentOrchestrator(llm, [make_tool("legal", output=LEGAL_OUTPUT)]).invoke(conversation))
        final = llm.generation_calls[0]
        assert len(final) == 2
        assert final[0].role == "system"
        assert final[0].content == system_message.content
        assert final[1].role == "user"
        assert "What is the penalty for X?" in final[1].content
        assert "Art. 51" not in final[1].content
        assert final[1].data == [{"type": "tool_results", "content": "legal: Art. 51: grzywna"}]

    def test_tools_run_in_registration_order_before_response(self, conversation) -> None:
        calls: list = []
        llm = FakeLLM(relevant=["a description", "b description"])
        tools = [make_tool("a", calls=calls), make_tool("b", calls=calls), make_tool("c", calls=calls)]
        events = _events(AgentOrchestrator(llm, tools), conversation)
        kinds = [e[0] for e in events]
        tool_events = [e for e in events if e[0] == "tool_execution"]
        assert [e[1] for e in tool_events] == [
            "Wykonanie narzędzia a zakończone",
            "Wykonanie narzędzia b zakończone",
        ]
        assert all(e[2] is None for e in tool_events)
        assert max(i for i, k in enumerate(kinds) if k == "tool_execution") < kinds.index("response")
        assert calls == [("a", "What is the penalty for X?"), ("b", "What is the penalty for X?")]

    @pytest.mark.parametrize(
        "output, artifacts",
        [
            (json.dumps({"result": 42, "artifact": {"id": 1}}), [{"id": 1}]),
            (json.dumps({"result": "r", "artifact": "doc-1"}), None),
        ],
    )
    def test_odd_structured_output_does_not_fail_turn(self, conversation, output, artifacts) -> None:
        llm = FakeLLM(relevant=["legal description"])
        events = _events(AgentOrchestrator(llm, [make_tool("legal", output=output)]), conversation)
        assert ("tool_execution", "Wykonanie narzędzia legal zakończone", artifacts) in events
        assert "".join(e[1] for e in events if e[0] == "response") == "Kara wynosi grzywnę."
        assert llm.generation_calls[0][1].data[0]["content"] == f"legal: {output}"

    def test_failing_tool_still_reaches_final_generation(self, conversation) -> None:
        llm = FakeLLM(relevant=["legal description", "web description"])
        tools = [make_tool("legal", raises=True), make_tool("web", output="news")]
        events = _events(AgentOrchestrator(llm, tools), conversation)
        assert ("tool_execution", "Wykonanie narzędzia legal zakończone", None) in events
        assert events[-1][0] == "response"
        summary = llm.generation_calls[0][1].data[0]["content"]
        assert summary == "legal: Error: Failed to execute tool legal\nweb: news"

    def test_unknown_tool_name_is_skipped_silently(self, conversation) -> None:
        llm = FakeLLM()
        orchestrator = AgentOrchestrator(llm, [make_tool("legal", output="ok")])
        orchestrator.classifier.analyze_query = lambda query, tools, context: ["ghost", "legal"]
        events = _events(orchestrator, conversation)
        awaiting = [e[1] for e in events if e[1].startswith("Czekam")]
        assert awaiting == ["Czekam na odpowiedź od legal..."]
        assert [e[1] for e in events if e[0] == "tool_execution"] == ["Wykonanie narzędzia legal zakończone"]
        assert llm.generation_calls[0][1].data[0]["content"] == "legal: ok"


class TestCancellation:
    def test_cancel_before_start_emits_nothing(self, conversation) -> None:
        cancel = threading.Event()
        cancel.set()
        assert _events(AgentOrchestrator(FakeLLM(), []), conversation, cancel) == []

    def test_cancel_during_tools_stops_events_and_remaining_tools(self, conversation) -> None:
        calls: list = []
        llm = FakeLLM(relevant=["a description", "b description"])
        orchestrator = AgentOrchestrator(llm, [make_tool("a", calls=calls), make_tool("b", calls=calls)])
        cancel = threading.Event()
        seen = []
        for event in orchestrator.invoke(conversation, cancel):
            seen.append(event.type)
            if event.type == "tool_execution":
                cancel.set()
        assert seen.count("tool_execution") == 1
        assert "response" not in seen
        assert calls == [("a", "What is the penalty for X?")]
        assert llm.generation_calls == []

    def test_cancel_mid_stream_closes_model_stream(self, conversation) -> None:
        llm = FakeLLM()
        cancel = threading.Event()
        responses = []
        for event in AgentOrchestrator(llm, []).invoke(conversation, cancel):
            if event.type == "response":
                responses.append(event.content)
                cancel.set()
        assert responses == ["Kara "]
        assert llm.closed == 1


class TestCall:
    def test_concatenates_response_and_keeps_last_artifacts(self, conversation) -> None:
        llm = FakeLLM(relevant=["legal description"])
        answer = AgentOrchestrator(llm, [make_tool("legal", output=LEGAL_OUTPUT)]).call(conversation)
        assert answer.content == "Kara wynosi grzywnę."
        assert answer.artifacts == [ACT]

    def test_string_input_is_a_cold_start(self) -> None:
        llm = FakeLLM()
        answer = AgentOrchestrator(llm, []).call("Dzień dobry")
        assert answer.content == FIRST_IRRELEVANT_USER_QUESTION
        assert answer.artifacts == []
        assert llm.calls == []

    def test_empty_response_raises(self, conversation) -> None:
        with pytest.raises(EmptyResponseError, match="Nie wygenerowano odpowiedzi"):
            AgentOrchestrator(FakeLLM(answer_chunks=[]), []).call(conversation)


def test_direct_context_keeps_only_latest_artifacts() -> None:
    old, new = {"eli": "old"}, {"eli": "new"}
    messages = [
        Message(role="system", content="sys"),
        Message(role="assistant", content="a1", artifacts=[old]),
        Message(role="user", content="q2"),
        Message(role="assistant", content="a2", artifacts=[new]),
        Message(role="user", content="q3"),
    ]
    window = direct_context(messages)
    assert [m.content for m in window] == ["q2", "a2", "q3"]
    assert [m.artifacts for m in window] == [[], [new], []]
    # the caller's history is not modified
    assert messages[3].artifacts == [new]


def test_direct_context_drops_older_carriers_in_window() -> None:
    messages = [
        Message(role="assistant", content="a1", artifacts=[{"eli": "old"}]),
        Message(role="user", content="q2"),
        Message(role="assistant", content="a2", artifacts=[{"eli": "new"}]),
    ]
    assert [m.artifacts for m in direct_context(messages)] == [[], [], [{"eli": "new"}]]


def test_format_tool_results() -> None:
    results = [{"tool": "a", "result": "x"}, {"tool": "b", "result": "y\nz"}]
    assert format_tool_results(results) == "a: x\nb: y\nz"
