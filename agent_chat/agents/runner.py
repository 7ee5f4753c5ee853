"""Agent 运行器。

对会话历史层而言，Agent 调用只有一个契约：给定已有的对话条目与 Agent，
返回本轮新产生的对话条目。条目使用与 OpenAI Agents 相同的形状：

- {"type": "message", "role": "user" | "assistant", "content": "..."}
- {"type": "function_call", "call_id": "...", "name": "...", "arguments": "{...}"}
- {"type": "function_call_output", "call_id": "...", "output": "..."}

转交（handoff）以工具的形式暴露给模型：模型调用 transfer_to_<agent>
后，运行器切换到目标 Agent 并继续下一轮，直到得到普通回答。
"""

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence
from uuid import uuid4

from agent_chat.agents.definitions import AgentSpec
from agent_chat.domain.exceptions import AgentLoopError, ApiError
from agent_chat.domain.models import ChatMessage, ChatRequest, ChatUsage
from agent_chat.infrastructure.logging.logger import logger
from agent_chat.providers.base import ProviderClient
from agent_chat.tools.definitions import ToolCall, ToolDef, parse_arguments

ConversationItem = Dict[str, Any]


@dataclass
class RunResult:
    new_items: List[ConversationItem]
    last_agent: AgentSpec
    usage: Dict[str, int] = field(default_factory=dict)


def user_item(text: str) -> ConversationItem:
    return {"type": "message", "role": "user", "content": text}


def assistant_item(text: str, agent_name: str) -> ConversationItem:
    return {"type": "message", "role": "assistant", "content": text, "agent": agent_name}


def item_text(item: ConversationItem) -> str:
    """取出条目中的文本内容，兼容字符串与内容片段列表两种形式。"""

    content = item.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, dict):
                parts.append(str(part.get("text") or ""))
            else:
                parts.append(str(part))
        return "".join(parts)
    return "" if content is None else str(content)


def items_to_messages(items: Sequence[ConversationItem]) -> List[ChatMessage]:
    """把持久化的对话条目转换为发送给模型的 ChatMessage 列表。"""

    messages: List[ChatMessage] = []
    for item in items:
        kind = item.get("type", "message")
        if kind == "message":
            role = item.get("role") or "user"
            if role not in ("system", "user", "assistant"):
                role = "user"
            messages.append(ChatMessage(role=role, content=item_text(item)))
        elif kind == "function_call":
            call = ToolCall(
                id=item.get("call_id") or "",
                name=item.get("name") or "",
                arguments=parse_arguments(item.get("arguments")),
            )
            last = messages[-1] if messages else None
            # 同一轮的多个调用合并到一条 assistant 消息
            if last is not None and last.role == "assistant" and last.tool_calls and not last.content:
                last.tool_calls.append(call)
            else:
                messages.append(ChatMessage(role="assistant", content="", tool_calls=[call]))
        elif kind == "function_call_output":
            messages.append(
                ChatMessage(role="tool", content=str(item.get("output") or ""), tool_call_id=item.get("call_id"))
            )
        else:
            logger.debug("Skipped unsupported conversation item", extra={"extra": {"type": kind}})
    return messages


def handoff_tools(agent: AgentSpec) -> List[ToolDef]:
    return [
        ToolDef(
            name=target.handoff_tool_name,
            description=f"Handoff to the {target.name} agent to handle the request.",
        )
        for target in agent.handoffs
    ]


class AgentRunner:
    def __init__(
        self,
        provider_client: ProviderClient,
        *,
        model: str = "chat-mini",
        max_turns: int = 10,
        temperature: float = 0.7,
    ):
        self._provider_client = provider_client
        self._model = model
        self._max_turns = max_turns
        self._temperature = temperature

    def run(self, agent: AgentSpec, items: Sequence[ConversationItem]) -> RunResult:
        """运行一轮对话，返回新产生的条目（不包含传入的历史）。"""

        start_time = time.time()
        log_ctx: Dict[str, Any] = {"trace_id": f"tr-{uuid4().hex}", "agent": agent.name}
        new_items: List[ConversationItem] = []
        usage: Dict[str, int] = {}
        current = agent

        for turn in range(1, self._max_turns + 1):
            tools = handoff_tools(current)
            req = ChatRequest(
                provider=self._provider_client.name,
                model=self._model,
                messages=[ChatMessage(role="system", content=current.instructions)]
                + items_to_messages(list(items) + new_items),
                temperature=self._temperature,
                tools=tools or None,
                tool_choice="auto",
            )
            self._log(logging.INFO, "Calling provider", log_ctx, turn=turn, agent=current.name,
                      message_count=len(req.messages))
            result = self._provider_client.chat(req)
            if not result.choices:
                raise ApiError(code="EMPTY_RESPONSE", message=f"{self._provider_client.name} returned no choices")
            _add_usage(usage, result.usage)
            reply = result.choices[0].message

            if not reply.tool_calls:
                new_items.append(assistant_item(reply.content, current.name))
                self._log(
                    logging.INFO,
                    "Completed agent run",
                    log_ctx,
                    turns=turn,
                    last_agent=current.name,
                    new_items=len(new_items),
                    elapsed_seconds=round(time.time() - start_time, 2),
                )
                return RunResult(new_items=new_items, last_agent=current, usage=usage)

            next_agent = self._apply_tool_calls(current, reply.tool_calls, new_items, log_ctx)
            if next_agent is not None:
                current = next_agent

        self._log(logging.WARNING, "Reached max agent turns", log_ctx, max_turns=self._max_turns)
        raise AgentLoopError(
            code="MAX_TURNS_EXCEEDED",
            message=f"agent run exceeded {self._max_turns} turns without a final answer",
        )

    def _apply_tool_calls(
        self,
        current: AgentSpec,
        calls: List[ToolCall],
        new_items: List[ConversationItem],
        log_ctx: Dict[str, Any],
    ) -> Optional[AgentSpec]:
        targets = {a.handoff_tool_name: a for a in current.handoffs}
        chosen: Optional[AgentSpec] = None
        for call in calls:
            new_items.append(
                {
                    "type": "function_call",
                    "call_id": call.id,
                    "name": call.name,
                    "arguments": json.dumps(call.arguments, ensure_ascii=False),
                }
            )
            target = targets.get(call.name)
            if target is None:
                output = {"error": "UNKNOWN_TOOL", "message": f"Tool '{call.name}' not registered"}
                self._log(logging.WARNING, "Unknown tool call", log_ctx, tool_name=call.name)
            elif chosen is not None:
                output = {"error": "HANDOFF_IGNORED", "message": f"Already transferred to {chosen.name}"}
            else:
                chosen = target
                output = {"assistant": target.name}
                self._log(logging.INFO, "Handoff", log_ctx, source=current.name, target=target.name)
            new_items.append(
                {
                    "type": "function_call_output",
                    "call_id": call.id,
                    "output": json.dumps(output, ensure_ascii=False),
                }
            )
        return chosen

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})


def _add_usage(total: Dict[str, int], usage: Optional[ChatUsage]) -> None:
    if not usage:
        return
    total["prompt_tokens"] = total.get("prompt_tokens", 0) + usage.prompt_tokens
    total["completion_tokens"] = total.get("completion_tokens", 0) + usage.completion_tokens
    total["total_tokens"] = total.get("total_tokens", 0) + usage.total_tokens
