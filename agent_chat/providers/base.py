"""Provider 抽象接口。

AgentRunner 不直接依赖具体厂商的 HTTP 细节，而是依赖此协议：
每个厂商实现一个 ProviderClient，负责把 ChatRequest 转成 API 请求，
并把响应 JSON 解析为 ChatResult。
"""

from typing import Protocol
from agent_chat.domain.models import ChatRequest, ChatResult


class ProviderClient(Protocol):
    """LLM Provider 客户端协议。"""

    name: str

    def chat(self, req: ChatRequest) -> ChatResult:
        ...
