"""Tests for the orchestration loop: tools, approvals, handoffs, turn budget and cancellation."""

import asyncio

import pytest

from switchboard import Agent, PolicyApprovalChannel, function_tool
from switchboard.demo import UserInfo, build_instructions, fetch_user_age, get_weather
from switchboard.services.approvals import ApprovalRecord
from switchboard.services.model import ModelResponse, ToolCallRequest
from switchboard.stores.history import (
    AssistantMessage,
    HandoffEvent,
    ToolCall,
    ToolResult,
    UserMessage,
)
from switchboard.utils.exceptions import AgentError, MaxTurnsExceeded, ModelBackendError
from tests.helpers import calls, handoff, last_tool_output, text


def assert_calls_paired(history):
    """Every ToolCall is followed by exactly one ToolResult with the same call id."""
    call_ids = [i.call_id for i in history if isinstance(i, ToolCall)]
    result_ids = [i.call_id for i in history if isinstance(i, ToolResult)]
    assert call_ids == result_ids
    for index, item in enumerate(history):
        if isinstance(item, ToolCall):
            later = [r for r in history[index + 1:] if isinstance(r, ToolResult) and r.call_id == item.call_id]
            assert len(later) == 1


def make_counter_tool(needs_approval=False):
    executed = []

    @function_tool(name="counter", needs_approval=needs_approval)
    def counter(label: str) -> str:
        """Count executions."""
        executed.append(label)
        return f"counted {label}"

    return counter, executed


@pytest.mark.asyncio
async def test_plain_message_is_final_output(scripted):
    model, runner = scripted([text("Hello there")])
    agent = Agent(name="Assistant", instructions="Be brief.")

    result = await runner.run(agent, "Hi")

    assert result.final_output == "Hello there"
    assert result.history == [UserMessage("Hi"), AssistantMessage("Hello there", "Assistant")]
    assert result.last_agent is agent
    assert result.usage.requests == 1
    assert result.usage.total_tokens == 15
    assert model.requests[0].instructions == "Be brief."


@pytest.mark.asyncio
async def test_user_age_answer_uses_tool_output(scripted):
    model, runner = scripted([
        calls(("fetch_user_age", {})),
        lambda request: text(f"According to my records: {last_tool_output(request)}"),
    ])
    agent = Agent(name="User Age Assistant", instructions="Answer age questions.", tools=[fetch_user_age])

    result = await runner.run(agent, "What is the age of the user?", context=UserInfo(name="John", uid=123))

    assert "47" in result.final_output
    assert [type(i) for i in result.history] == [UserMessage, ToolCall, ToolResult, AssistantMessage]
    assert result.history[2].output == "User John is 47 years old"
    assert_calls_paired(result.history)
    assert [t.name for t in model.requests[0].tools] == ["fetch_user_age"]


@pytest.mark.asyncio
async def test_computed_instructions_see_context(scripted):
    model, runner = scripted([text("Hi John"), text("Hello")])
    agent = Agent(name="Assistant", instructions=build_instructions)

    await runner.run(agent, "Greet the user!", context=UserInfo(name="John", uid=123))
    await runner.run(agent, "Greet the user!")

    assert model.requests[0].instructions == "The user's name is John. Be extra friendly!"
    assert model.requests[1].instructions == "You are a helpful assistant"


@pytest.mark.asyncio
async def test_agent_without_model_uses_default_model(scripted):
    model, runner = scripted([text("ok")])

    await runner.run(Agent(name="Assistant"), "Hi")

    assert runner.config.model_provider.requested == [runner.config.default_model]


@pytest.mark.asyncio
async def test_unknown_tool_is_reported_to_model(scripted):
    model, runner = scripted([calls(("call_x", "does_not_exist", {})), text("Sorry, I can't do that.")])

    result = await runner.run(Agent(name="Assistant"), "Do something")

    tool_result = next(i for i in result.history if isinstance(i, ToolResult))
    assert tool_result.call_id == "call_x"
    assert tool_result.is_error
    assert tool_result.output["error"] == "unknown_tool"
    assert result.final_output == "Sorry, I can't do that."


@pytest.mark.asyncio
async def test_invalid_arguments_are_reported_to_model(scripted):
    bad_json = ModelResponse(tool_calls=[ToolCallRequest("c1", "get_weather", None, "{not json")])
    missing_city = calls(("c2", "get_weather", {}))
    model, runner = scripted([bad_json, missing_city, text("done")])
    agent = Agent(name="Weather bot", tools=[get_weather])

    result = await runner.run(agent, "Weather?")

    errors = [i.output["error"] for i in result.history if isinstance(i, ToolResult)]
    assert errors == ["invalid_tool_arguments", "invalid_tool_arguments"]
    assert_calls_paired(result.history)


@pytest.mark.asyncio
async def test_tool_exception_is_folded_into_result(scripted):
    @function_tool
    def explode() -> str:
        """Always raises."""
        raise RuntimeError("boom")

    model, runner = scripted([calls(("explode", {})), text("It failed.")])

    result = await runner.run(Agent(name="Assistant", tools=[explode]), "Go")

    tool_result = next(i for i in result.history if isinstance(i, ToolResult))
    assert tool_result.is_error
    assert tool_result.output["error"] == "tool_execution_failed"
    assert "boom" in tool_result.output["message"]
    assert result.final_output == "It failed."


@pytest.mark.asyncio
async def test_tool_calls_in_one_turn_run_concurrently_and_keep_issue_order(scripted):
    started = []
    both_started = asyncio.Event()

    @function_tool
    async def slow(label: str) -> str:
        """Wait until both calls are running."""
        started.append(label)
        if len(started) == 2:
            both_started.set()
        await asyncio.wait_for(both_started.wait(), timeout=2)
        return label

    model, runner = scripted([
        calls(("a", "slow", {"label": "first"}), ("b", "slow", {"label": "second"})),
        text("both done"),
    ])

    result = await runner.run(Agent(name="Assistant", tools=[slow]), "Go")

    assert sorted(started) == ["first", "second"]
    pairs = [(i.call_id, type(i).__name__) for i in result.history if isinstance(i, (ToolCall, ToolResult))]
    assert pairs == [("a", "ToolCall"), ("a", "ToolResult"), ("b", "ToolCall"), ("b", "ToolResult")]
    outputs = [i.output for i in result.history if isinstance(i, ToolResult)]
    assert outputs == ["first", "second"]


@pytest.mark.asyncio
async def test_assistant_text_alongside_tool_calls_is_kept(scripted):
    counter, executed = make_counter_tool()
    model, runner = scripted([calls(("counter", {"label": "x"}), content="Let me count."), text("Counted.")])

    result = await runner.run(Agent(name="Assistant", tools=[counter]), "Count")

    assert result.history[1] == AssistantMessage("Let me count.", "Assistant")
    assert executed == ["x"]


# ============================================================================
# Approvals
# ============================================================================

@pytest.mark.asyncio
async def test_san_francisco_weather_waits_for_approval(scripted):
    model, runner = scripted([
        calls(("call_sf", "get_weather", {"city": "San Francisco"})),
        lambda request: text(last_tool_output(request)),
    ])
    agent = Agent(name="Weather bot", tools=[get_weather])

    result = await runner.run(agent, "What is the current weather in San Francisco?")

    assert result.final_output is None
    assert [i.call_id for i in result.interruptions] == ["call_sf"]
    assert not any(isinstance(i, (ToolCall, ToolResult)) for i in result.history)
    assert len(model.requests) == 1

    state = result.to_state()
    state.approve(result.interruptions[0])
    resumed = await runner.resume(state)

    assert resumed.final_output == "The weather in San Francisco is sunny."
    assert resumed.approvals == [ApprovalRecord("call_sf", "get_weather", True)]
    assert resumed.interruptions == []
    assert_calls_paired(resumed.history)


@pytest.mark.asyncio
async def test_other_cities_do_not_need_approval(scripted):
    model, runner = scripted([
        calls(("get_weather", {"city": "Paris"})),
        lambda request: text(last_tool_output(request)),
    ])

    result = await runner.run(Agent(name="Weather bot", tools=[get_weather]), "Weather in Paris?")

    assert result.final_output == "The weather in Paris is sunny."
    assert result.interruptions == []
    assert result.approvals == []


@pytest.mark.asyncio
async def test_rejected_call_is_never_executed(scripted):
    counter, executed = make_counter_tool(needs_approval=True)
    model, runner = scripted([calls(("c1", "counter", {"label": "x"})), text("Okay, I won't.")])
    agent = Agent(name="Assistant", tools=[counter])

    result = await runner.run(agent, "Count")
    state = result.to_state()
    state.reject(result.interruptions[0])
    resumed = await runner.resume(state)

    assert executed == []
    tool_result = next(i for i in resumed.history if isinstance(i, ToolResult))
    assert tool_result.is_error
    assert tool_result.output["error"] == "approval_denied"
    assert resumed.final_output == "Okay, I won't."


@pytest.mark.asyncio
async def test_pending_approval_only_suspends_its_own_call(scripted):
    counter, executed = make_counter_tool(needs_approval=lambda ctx, args: args["label"] == "guarded")
    model, runner = scripted([
        calls(("free", "counter", {"label": "free"}), ("guarded", "counter", {"label": "guarded"})),
        text("done"),
    ])
    agent = Agent(name="Assistant", tools=[counter])

    result = await runner.run(agent, "Count twice")
    assert executed == ["free"]
    assert [i.call_id for i in result.interruptions] == ["guarded"]

    state = result.to_state()
    state.approve(result.interruptions[0])
    resumed = await runner.resume(state)

    # the call that already ran is not executed again
    assert executed == ["free", "guarded"]
    assert [i.call_id for i in resumed.history if isinstance(i, ToolCall)] == ["free", "guarded"]
    assert_calls_paired(resumed.history)


@pytest.mark.asyncio
async def test_undecided_interruptions_interrupt_again(scripted):
    counter, executed = make_counter_tool(needs_approval=True)
    model, runner = scripted([calls(("c1", "counter", {"label": "x"})), text("done")])

    result = await runner.run(Agent(name="Assistant", tools=[counter]), "Count")
    again = await runner.resume(result.to_state())

    assert [i.call_id for i in again.interruptions] == ["c1"]
    assert executed == []
    assert len(model.requests) == 1


@pytest.mark.asyncio
async def test_approval_channel_decides_inline(scripted):
    asked = []

    def policy(request):
        asked.append(request.tool_name)
        return request.arguments["city"] != "San Francisco"

    model, runner = scripted([
        calls(("sf", "get_weather", {"city": "San Francisco"}), ("la", "get_weather", {"city": "Los Angeles"})),
        text("done"),
    ])
    agent = Agent(name="Weather bot", tools=[get_weather])

    result = await runner.run(agent, "Weather?", approvals=PolicyApprovalChannel(policy))

    assert asked == ["get_weather"]
    assert result.approvals == [ApprovalRecord("sf", "get_weather", False)]
    outputs = {i.call_id: i for i in result.history if isinstance(i, ToolResult)}
    assert outputs["sf"].output["error"] == "approval_denied"
    assert outputs["la"].output == "The weather in Los Angeles is sunny."
    assert result.final_output == "done"


@pytest.mark.asyncio
async def test_resume_without_interruption_fails(scripted):
    model, runner = scripted([text("done")])
    result = await runner.run(Agent(name="Assistant"), "Hi")

    with pytest.raises(AgentError):
        result.to_state()


# ============================================================================
# Handoffs
# ============================================================================

def make_triage():
    math = Agent(name="Math Tutor", instructions="You help with math.")
    history = Agent(name="History Tutor", instructions="You help with history.")
    triage = Agent(name="Triage Agent", instructions="Route the question.", handoffs=[math, history])
    return triage, math, history


@pytest.mark.asyncio
async def test_handoff_switches_active_agent(scripted):
    triage, math, _ = make_triage()
    model, runner = scripted([handoff("Math Tutor"), text("2 + 2 = 4")])

    result = await runner.run(triage, "What is 2 + 2?")

    assert result.last_agent is math
    assert result.final_output == "2 + 2 = 4"
    events = [i for i in result.history if isinstance(i, HandoffEvent)]
    assert [(e.source, e.target) for e in events] == [("Triage Agent", "Math Tutor")]
    assert [h.tool_name for h in model.requests[0].handoffs] == ["transfer_to_math_tutor", "transfer_to_history_tutor"]
    assert model.requests[1].instructions == "You help with math."
    assert model.requests[1].handoffs == []
    assert result.history[-1] == AssistantMessage("2 + 2 = 4", "Math Tutor")


@pytest.mark.asyncio
async def test_handoff_by_tool_name_is_accepted(scripted):
    triage, _, history_tutor = make_triage()
    model, runner = scripted([handoff("transfer_to_history_tutor"), text("In 1066...")])

    result = await runner.run(triage, "Tell me about 1066")

    assert result.last_agent is history_tutor


@pytest.mark.asyncio
async def test_invalid_handoff_keeps_agent_and_reports_error(scripted):
    triage, _, _ = make_triage()
    model, runner = scripted([handoff("Weather bot"), text("I can only route to tutors.")])

    result = await runner.run(triage, "Weather?")

    assert result.last_agent is triage
    assert not any(isinstance(i, HandoffEvent) for i in result.history)
    tool_result = next(i for i in result.history if isinstance(i, ToolResult))
    assert tool_result.output["error"] == "invalid_handoff"
    assert model.requests[1].instructions == "Route the question."
    assert_calls_paired(result.history)


@pytest.mark.asyncio
async def test_only_first_handoff_of_a_turn_is_applied(scripted):
    triage, math, _ = make_triage()
    model, runner = scripted([handoff("Math Tutor", "History Tutor"), text("done")])

    result = await runner.run(triage, "Both?")

    assert result.last_agent is math
    tool_result = next(i for i in result.history if isinstance(i, ToolResult))
    assert tool_result.output["error"] == "handoff_failed"


# ============================================================================
# Turn budget, cancellation and fatal errors
# ============================================================================

@pytest.mark.asyncio
async def test_max_turns_exceeded_returns_partial_history(scripted):
    counter, _ = make_counter_tool()
    model, runner = scripted(
        [lambda request: calls(("counter", {"label": "again"}))], max_turns=3, repeat_last=True
    )

    with pytest.raises(MaxTurnsExceeded) as excinfo:
        await runner.run(Agent(name="Looper", tools=[counter]), "Loop forever")

    assert len(model.requests) == 3
    assert excinfo.value.history
    assert excinfo.value.last_agent.name == "Looper"
    assert sum(isinstance(i, ToolResult) for i in excinfo.value.history) == 3
    assert_calls_paired(excinfo.value.history)


@pytest.mark.asyncio
async def test_self_handoff_loop_stops_at_turn_budget(scripted):
    looper = Agent(name="Looper", instructions="Always hand off to yourself.", allow_self_handoff=True)
    model, runner = scripted([lambda request: handoff("Looper")], repeat_last=True)

    with pytest.raises(MaxTurnsExceeded) as excinfo:
        await runner.run(looper, "Go", max_turns=5)

    assert len(model.requests) == 5
    events = [i for i in excinfo.value.history if isinstance(i, HandoffEvent)]
    assert len(events) == 5
    assert all((e.source, e.target) == ("Looper", "Looper") for e in events)
    assert [h.tool_name for h in model.requests[0].handoffs] == ["transfer_to_looper"]


@pytest.mark.asyncio
async def test_repeated_invalid_handoff_stops_at_turn_budget(scripted):
    triage, _, _ = make_triage()
    model, runner = scripted([lambda request: handoff("Triage Agent")], repeat_last=True)

    with pytest.raises(MaxTurnsExceeded) as excinfo:
        await runner.run(triage, "Route me back to you", max_turns=4)

    assert len(model.requests) == 4
    assert excinfo.value.last_agent is triage


@pytest.mark.asyncio
async def test_timeout_cancels_without_partial_results(scripted):
    @function_tool
    async def sleepy() -> str:
        """Takes too long."""
        await asyncio.sleep(10)
        return "late"

    model, runner = scripted([calls(("sleepy", {})), text("never")])

    result = await runner.run(Agent(name="Assistant", tools=[sleepy]), "Wait", timeout=0.2)

    assert result.cancelled
    assert result.final_output is None
    assert result.history == [UserMessage("Wait")]


@pytest.mark.asyncio
async def test_model_backend_error_propagates(scripted):
    def broken(request):
        raise ModelBackendError("connection refused")

    model, runner = scripted([broken])

    with pytest.raises(ModelBackendError):
        await runner.run(Agent(name="Assistant"), "Hi")


@pytest.mark.asyncio
async def test_history_with_unresolved_call_fails_the_run(scripted):
    model, runner = scripted([text("unused")])
    history = [UserMessage("Hi"), ToolCall("dangling", "counter", {"label": "x"})]

    with pytest.raises(AgentError):
        await runner.run(Agent(name="Assistant"), history)

    assert model.requests == []


@pytest.mark.asyncio
async def test_conversation_continues_from_previous_history(scripted):
    model, runner = scripted([text("Hello!"), text("You said hi before.")])
    agent = Agent(name="Assistant")

    first = await runner.run(agent, "Hi")
    second = await runner.run(agent, first.history + [UserMessage("What did I say?")])

    assert second.final_output == "You said hi before."
    assert len(model.requests[1].history) == 3
    assert len(second.history) == 4


@pytest.mark.asyncio
async def test_failing_approval_predicate_is_folded_into_result(scripted):
    sent = []

    @function_tool(needs_approval=lambda ctx, args: args["subject"].startswith("spam"))
    def send_email(to: str, subject: str = "") -> str:
        """Send an email."""
        sent.append(to)
        return "sent"

    counter, executed = make_counter_tool()
    model, runner = scripted([
        calls(("mail", "send_email", {"to": "x"}), ("count", "counter", {"label": "y"})),
        text("The email could not be checked."),
    ])

    result = await runner.run(Agent(name="Assistant", tools=[send_email, counter]), "Mail x")

    outputs = {i.call_id: i for i in result.history if isinstance(i, ToolResult)}
    assert outputs["mail"].is_error
    assert outputs["mail"].output["error"] == "tool_execution_failed"
    assert "subject" in outputs["mail"].output["message"]
    assert outputs["count"].output == "counted y"
    assert sent == []
    assert executed == ["y"]
    assert result.final_output == "The email could not be checked."
    assert_calls_paired(result.history)


@pytest.mark.asyncio
async def test_explicit_zero_turn_budget_is_respected(scripted):
    model, runner = scripted([text("unused")], max_turns=10)

    with pytest.raises(MaxTurnsExceeded) as excinfo:
        await runner.run(Agent(name="Assistant"), "Hi", max_turns=0)

    assert model.requests == []
    assert excinfo.value.max_turns == 0
    assert excinfo.value.history == [UserMessage("Hi")]
