import json

import pytest

from agent_chat.agents.definitions import default_agents, find_agent
from agent_chat.agents.runner import AgentRunner, items_to_messages, item_text, user_item
from agent_chat.domain.exceptions import AgentLoopError, ApiError
from agent_chat.domain.models import ChatChoice, ChatMessage, ChatResult, ChatUsage
from agent_chat.tools.definitions import ToolCall


class FakeProvider:
    """按顺序返回预设回复，并记录收到的请求。"""

    name = "fake"

    def __init__(self, replies):
        self._replies = list(replies)
        self.requests = []

    def chat(self, req):
        self.requests.append(req)
        reply = self._replies.pop(0)
        if reply is None:
            return ChatResult(provider="fake", model=req.model, choices=[])
        return ChatResult(
            provider="fake",
            model=req.model,
            choices=[ChatChoice(index=0, message=reply)],
            usage=ChatUsage(prompt_tokens=2, completion_tokens=1, total_tokens=3),
        )


def _text(content):
    return ChatMessage(role="assistant", content=content)


def _calls(*names):
    return ChatMessage(
        role="assistant",
        content="",
        tool_calls=[ToolCall(id=f"call_{i}", name=n, arguments={}) for i, n in enumerate(names)],
    )


def _triage():
    return find_agent(default_agents(), "triage agent")


def test_default_agents():
    agents = default_agents()
    assert [a.name for a in agents] == ["History Tutor", "Math Tutor", "Triage Agent"]
    assert [h.name for h in agents[-1].handoffs] == ["History Tutor", "Math Tutor"]
    assert agents[1].handoff_tool_name == "transfer_to_math_tutor"
    assert find_agent(agents, "nobody") is None


def test_run_simple_answer():
    provider = FakeProvider([_text("hello")])
    runner = AgentRunner(provider)
    result = runner.run(find_agent(default_agents(), "Math Tutor"), [user_item("hi")])

    assert result.new_items == [{"type": "message", "role": "assistant", "content": "hello", "agent": "Math Tutor"}]
    assert result.last_agent.name == "Math Tutor"
    assert result.usage == {"prompt_tokens": 2, "completion_tokens": 1, "total_tokens": 3}
    req = provider.requests[0]
    assert req.tools is None
    assert req.messages[0].role == "system"
    assert req.messages[1].content == "hi"


def test_run_with_handoff():
    provider = FakeProvider([_calls("transfer_to_math_tutor"), _text("2 + 2 = 4")])
    result = AgentRunner(provider).run(_triage(), [user_item("what is 2 + 2?")])

    kinds = [i["type"] for i in result.new_items]
    assert kinds == ["function_call", "function_call_output", "message"]
    assert result.new_items[0]["name"] == "transfer_to_math_tutor"
    assert json.loads(result.new_items[1]["output"]) == {"assistant": "Math Tutor"}
    assert result.new_items[2]["agent"] == "Math Tutor"
    assert result.last_agent.name == "Math Tutor"
    assert result.usage["total_tokens"] == 6

    first, second = provider.requests
    assert [t.name for t in first.tools] == ["transfer_to_history_tutor", "transfer_to_math_tutor"]
    assert second.tools is None
    assert second.messages[0].content.startswith("You provide help with math problems")
    # 第二轮带上了上一轮的工具调用与结果
    assert second.messages[-2].tool_calls[0].name == "transfer_to_math_tutor"
    assert second.messages[-1].role == "tool"


def test_run_only_first_handoff_is_taken():
    provider = FakeProvider([_calls("transfer_to_history_tutor", "transfer_to_math_tutor"), _text("ok")])
    result = AgentRunner(provider).run(_triage(), [user_item("hi")])
    outputs = [json.loads(i["output"]) for i in result.new_items if i["type"] == "function_call_output"]
    assert outputs[0] == {"assistant": "History Tutor"}
    assert outputs[1]["error"] == "HANDOFF_IGNORED"
    assert result.last_agent.name == "History Tutor"


def test_run_unknown_tool():
    provider = FakeProvider([_calls("web_search"), _text("sorry")])
    result = AgentRunner(provider).run(_triage(), [user_item("hi")])
    assert json.loads(result.new_items[1]["output"])["error"] == "UNKNOWN_TOOL"
    assert result.last_agent.name == "Triage Agent"
    assert result.new_items[-1]["content"] == "sorry"


def test_run_max_turns():
    provider = FakeProvider([_calls("web_search")] * 3)
    with pytest.raises(AgentLoopError) as exc:
        AgentRunner(provider, max_turns=3).run(_triage(), [user_item("hi")])
    assert exc.value.code == "MAX_TURNS_EXCEEDED"
    assert len(provider.requests) == 3


def test_run_empty_choices():
    with pytest.raises(ApiError) as exc:
        AgentRunner(FakeProvider([None])).run(_triage(), [user_item("hi")])
    assert exc.value.code == "EMPTY_RESPONSE"


def test_items_to_messages():
    items = [
        user_item("hi"),
        {"type": "function_call", "call_id": "a", "name": "x", "arguments": '{"k": 1}'},
        {"type": "function_call", "call_id": "b", "name": "y", "arguments": "not json"},
        {"type": "function_call_output", "call_id": "a", "output": "done"},
        {"type": "message", "role": "assistant", "content": [{"text": "he"}, {"text": "llo"}]},
        {"type": "reasoning", "summary": []},
    ]
    messages = items_to_messages(items)
    assert [m.role for m in messages] == ["user", "assistant", "tool", "assistant"]
    assert [c.name for c in messages[1].tool_calls] == ["x", "y"]
    assert messages[1].tool_calls[0].arguments == {"k": 1}
    assert messages[1].tool_calls[1].arguments == {"_raw": "not json"}
    assert messages[2].tool_call_id == "a"
    assert messages[3].content == "hello"


def test_item_text():
    assert item_text({"content": "a"}) == "a"
    assert item_text({"content": None}) == ""
    assert item_text({"content": ["a", {"text": "b"}]}) == "ab"
