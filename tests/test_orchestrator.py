import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from taskchat.config import Settings
from taskchat.db import Database
from taskchat.errors import QuotaExceededError, RateLimitedError, UpstreamError
from taskchat.llm.gateway import ChatGatewayProvider
from taskchat.models import LLMResponse, LLMToolCall
from taskchat.orchestrator import FALLBACK_REPLY, Orchestrator, build_system_prompt
from taskchat.tools.registry import build_task_registry

FIXED_NOW = datetime(2026, 2, 10, 12, 0, tzinfo=timezone.utc)


def _orchestrator(tmp_path, llm, **kwargs):
    db = Database(tmp_path / "taskchat.db")
    db.initialize()
    orchestrator = Orchestrator(
        llm=llm,
        tool_registry=build_task_registry(db),
        request_timeout_seconds=5,
        clock=lambda: FIXED_NOW,
        **kwargs,
    )
    return db, orchestrator


def _tool_response(name, call_id="c1", content="", **arguments):
    return LLMResponse(content=content, tool_calls=[LLMToolCall(name=name, arguments=arguments, call_id=call_id)])


class FakeProvider:
    async def generate(self, messages, tools=None):  # noqa: ANN001, ANN201
        return LLMResponse(content="hello")


@pytest.mark.asyncio
async def test_plain_reply_settles_without_tools(tmp_path):
    _, orchestrator = _orchestrator(tmp_path, FakeProvider())

    result = await orchestrator.run([{"role": "user", "content": "hi"}], "u1")

    assert result.content == "hello"
    assert result.rounds == 0
    assert result.tool_calls == 0


@pytest.mark.asyncio
async def test_system_prompt_carries_current_time_and_history(tmp_path):
    llm = MagicMock()
    llm.generate = AsyncMock(return_value=LLMResponse(content="ok"))
    _, orchestrator = _orchestrator(tmp_path, llm)

    await orchestrator.run(
        [{"role": "user", "content": "add milk"}, {"role": "assistant", "content": "sure"}],
        "u1",
    )

    messages = llm.generate.call_args.args[0]
    assert messages[0]["role"] == "system"
    assert "2026-02-10T12:00:00+00:00" in messages[0]["content"]
    assert messages[1:] == [
        {"role": "user", "content": "add milk"},
        {"role": "assistant", "content": "sure"},
    ]
    tool_names = [spec["function"]["name"] for spec in llm.generate.call_args.kwargs["tools"]]
    assert "add_task" in tool_names


def test_build_system_prompt_mentions_due_dates():
    prompt = build_system_prompt(FIXED_NOW)

    assert "Current date/time: 2026-02-10T12:00:00+00:00." in prompt
    assert "due_at" in prompt


@pytest.mark.asyncio
async def test_tool_round_executes_and_resends_transcript(tmp_path):
    llm = MagicMock()
    llm.generate = AsyncMock(
        side_effect=[
            _tool_response("add_task", title="Buy milk"),
            LLMResponse(content='Added "Buy milk" to your list.'),
        ]
    )
    db, orchestrator = _orchestrator(tmp_path, llm)

    result = await orchestrator.run([{"role": "user", "content": "add buy milk"}], "u1")

    assert result.content == 'Added "Buy milk" to your list.'
    assert result.rounds == 1
    assert result.tool_calls == 1
    assert [t.title for t in db.list_tasks("u1")] == ["Buy milk"]

    follow_up = llm.generate.call_args_list[1]
    messages = follow_up.args[0]
    assert [m["role"] for m in messages] == ["system", "user", "assistant", "tool"]
    assert messages[2]["tool_calls"][0]["id"] == "c1"
    assert messages[2]["tool_calls"][0]["function"]["name"] == "add_task"
    assert messages[3] == {"role": "tool", "tool_call_id": "c1", "content": 'Added task: "Buy milk"'}
    assert follow_up.kwargs["tools"]


@pytest.mark.asyncio
async def test_tool_calls_in_one_turn_run_in_order(tmp_path):
    llm = MagicMock()
    llm.generate = AsyncMock(
        side_effect=[
            LLMResponse(
                content="",
                tool_calls=[
                    LLMToolCall(name="add_task", arguments={"title": "Buy milk"}, call_id="a"),
                    LLMToolCall(name="toggle_task", arguments={"title": "milk"}, call_id="b"),
                    LLMToolCall(name="delete_task", arguments={"title": "__completed__"}, call_id="c"),
                ],
            ),
            LLMResponse(content="All tidy."),
        ]
    )
    db, orchestrator = _orchestrator(tmp_path, llm)

    result = await orchestrator.run([{"role": "user", "content": "do it"}], "u1")

    assert result.tool_calls == 3
    tool_messages = [m for m in llm.generate.call_args_list[1].args[0] if m["role"] == "tool"]
    assert [m["tool_call_id"] for m in tool_messages] == ["a", "b", "c"]
    assert tool_messages[1]["content"] == 'Completed: "Buy milk"'
    assert db.list_tasks("u1") == []


@pytest.mark.asyncio
async def test_loop_stops_after_round_cap(tmp_path):
    llm = MagicMock()
    llm.generate = AsyncMock(return_value=_tool_response("list_tasks"))
    _, orchestrator = _orchestrator(tmp_path, llm)

    result = await asyncio.wait_for(orchestrator.run([{"role": "user", "content": "loop"}], "u1"), timeout=5)

    assert result.rounds == 5
    assert result.tool_calls == 5
    assert llm.generate.call_count == 6
    assert result.content == FALLBACK_REPLY


@pytest.mark.asyncio
async def test_round_cap_keeps_latest_text(tmp_path):
    llm = MagicMock()
    llm.generate = AsyncMock(return_value=_tool_response("list_tasks", content="Still checking..."))
    _, orchestrator = _orchestrator(tmp_path, llm, max_tool_rounds=2)

    result = await orchestrator.run([{"role": "user", "content": "loop"}], "u1")

    assert result.rounds == 2
    assert llm.generate.call_count == 3
    assert result.content == "Still checking..."


@pytest.mark.asyncio
async def test_follow_up_failure_settles_with_fallback(tmp_path):
    llm = MagicMock()
    llm.generate = AsyncMock(side_effect=[_tool_response("add_task", title="Buy milk"), UpstreamError("boom")])
    db, orchestrator = _orchestrator(tmp_path, llm)

    result = await orchestrator.run([{"role": "user", "content": "add milk"}], "u1")

    assert result.content == "Done!"
    assert [t.title for t in db.list_tasks("u1")] == ["Buy milk"]


@pytest.mark.asyncio
async def test_follow_up_rate_limit_keeps_available_text(tmp_path):
    llm = MagicMock()
    llm.generate = AsyncMock(
        side_effect=[
            _tool_response("add_task", content="Adding it now.", title="Buy milk"),
            RateLimitedError("Rate limited"),
        ]
    )
    _, orchestrator = _orchestrator(tmp_path, llm)

    result = await orchestrator.run([{"role": "user", "content": "add milk"}], "u1")

    assert result.content == "Adding it now."


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [RateLimitedError("Rate limited"), QuotaExceededError("Payment required")])
async def test_first_call_failure_propagates(tmp_path, error):
    llm = MagicMock()
    llm.generate = AsyncMock(side_effect=error)
    _, orchestrator = _orchestrator(tmp_path, llm)

    with pytest.raises(type(error)):
        await orchestrator.run([{"role": "user", "content": "hi"}], "u1")


@pytest.mark.asyncio
async def test_first_call_timeout_is_upstream_error(tmp_path):
    class SlowProvider:
        async def generate(self, messages, tools=None):  # noqa: ANN001, ANN201
            await asyncio.sleep(1)
            return LLMResponse(content="too late")

    db = Database(tmp_path / "taskchat.db")
    db.initialize()
    orchestrator = Orchestrator(SlowProvider(), build_task_registry(db), request_timeout_seconds=0.01)

    with pytest.raises(UpstreamError):
        await orchestrator.run([{"role": "user", "content": "hi"}], "u1")


@pytest.mark.asyncio
async def test_unknown_tool_result_is_fed_back(tmp_path):
    llm = MagicMock()
    llm.generate = AsyncMock(side_effect=[_tool_response("launch_rocket"), LLMResponse(content="I can't do that.")])
    _, orchestrator = _orchestrator(tmp_path, llm)

    result = await orchestrator.run([{"role": "user", "content": "launch"}], "u1")

    assert result.content == "I can't do that."
    tool_message = llm.generate.call_args_list[1].args[0][-1]
    assert tool_message["content"] == "Unknown tool: launch_rocket"


@pytest.mark.asyncio
async def test_malformed_follow_up_body_settles_loop(tmp_path):
    first = MagicMock()
    first.status_code = 200
    first.json.return_value = {
        "choices": [
            {
                "message": {
                    "content": None,
                    "tool_calls": [
                        {"id": "c1", "function": {"name": "add_task", "arguments": '{"title": "Buy milk"}'}}
                    ],
                }
            }
        ]
    }
    broken = MagicMock()
    broken.status_code = 200
    broken.json.return_value = {"choices": [{"message": None}]}
    broken.text = '{"choices":[{"message":null}]}'
    mock_client = AsyncMock()
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    mock_client.post = AsyncMock(side_effect=[first, broken])
    provider = ChatGatewayProvider(Settings(AI_GATEWAY_API_KEY="test-key"))
    db, orchestrator = _orchestrator(tmp_path, provider)

    with patch("taskchat.llm.gateway.httpx.AsyncClient", return_value=mock_client):
        result = await orchestrator.run([{"role": "user", "content": "add milk"}], "u1")

    assert result.content == FALLBACK_REPLY
    assert result.rounds == 1
    assert [t.title for t in db.list_tasks("u1")] == ["Buy milk"]
