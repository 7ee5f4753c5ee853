"""OpenAI 兼容 Provider 适配器（OpenAI / OpenRouter）。

本模块负责：

1. 接收统一的 ChatRequest。
2. 将其转换为 /chat/completions 的 HTTP 请求格式。
3. 调用 HTTP 接口并处理网络/API 异常。
4. 将响应 JSON 解析为统一的 ChatResult / ChatMessage 结构（含工具调用）。

OpenAI 与 OpenRouter 的接口一致，只是 base_url、密钥与模型命名不同，
由 ProviderConfig 区分。
"""

import json
from typing import Any, Dict, List

import httpx

from agent_chat.domain.exceptions import ApiError, NetworkError, RateLimitError, ValidationError
from agent_chat.domain.models import ChatChoice, ChatMessage, ChatRequest, ChatResult, ChatUsage
from agent_chat.providers.registry import ModelConfig, OPENAI_CONFIG, ProviderConfig
from agent_chat.tools.definitions import ToolCall, ToolDef, parse_arguments


class OpenAICompatClient:
    """OpenAI 兼容接口的客户端实现。"""

    def __init__(self, settings, config: ProviderConfig = OPENAI_CONFIG):
        # Settings 里包含 base_url、api_key、超时等配置
        self._settings = settings
        self._config = config
        self.name = config.name

    def chat(self, req: ChatRequest) -> ChatResult:
        """执行一次非流式对话调用。"""

        api_key = getattr(self._settings, self._config.api_key_setting, None)
        if not api_key:
            raise ValidationError(
                code="MISSING_API_KEY",
                message=f"{self._config.api_key_setting.upper()} not set",
            )
        model_cfg = self._model_config(req.model)
        payload = self._build_payload(req, model_cfg)
        base = getattr(self._settings, self._config.base_url_setting, None) or self._config.base_url
        try:
            with httpx.Client(timeout=self._settings.http_timeout) as client:
                resp = client.post(
                    f"{base}/chat/completions",
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {api_key}",
                        "Content-Type": "application/json",
                    },
                )
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        if resp.status_code == 429:
            raise RateLimitError(code="RATE_LIMIT", message=f"{self.name} rate limit")
        if resp.status_code >= 400:
            raise ApiError(code="API_ERROR", message=resp.text, http_status=resp.status_code)
        return self._parse_response(resp.json(), req)

    def _model_config(self, logical_name: str) -> ModelConfig:
        cfg = self._config.models.get(logical_name)
        if cfg is not None:
            return cfg
        # 未登记的名称按厂商模型 ID 原样透传
        return ModelConfig(
            logical_name=logical_name,
            provider_model=logical_name,
            max_tokens=4096,
            default_temperature=0.7,
        )

    def _build_payload(self, req: ChatRequest, model_cfg: ModelConfig) -> dict:
        payload: Dict[str, Any] = {
            "model": model_cfg.provider_model,
            "messages": [self._message_to_payload(m) for m in req.messages],
            "temperature": req.temperature if req.temperature is not None else model_cfg.default_temperature,
            "max_tokens": req.max_tokens or model_cfg.max_tokens,
            "top_p": req.top_p,
        }
        if req.tools:
            payload["tools"] = [self._serialize_tool(tool) for tool in req.tools]
            payload["tool_choice"] = req.tool_choice
        return payload

    def _parse_response(self, data: dict, req: ChatRequest) -> ChatResult:
        choices: list[ChatChoice] = []
        for i, ch in enumerate(data.get("choices", [])):
            msg = ch.get("message") or {}
            choices.append(
                ChatChoice(index=i, message=self._build_chat_message(msg), finish_reason=ch.get("finish_reason"))
            )
        usage = None
        usage_raw = data.get("usage") or {}
        if usage_raw:
            usage = ChatUsage(
                prompt_tokens=usage_raw.get("prompt_tokens", 0),
                completion_tokens=usage_raw.get("completion_tokens", 0),
                total_tokens=usage_raw.get("total_tokens", 0),
            )
        return ChatResult(provider=self.name, model=req.model, choices=choices, usage=usage, raw=data)

    def _serialize_tool(self, tool: ToolDef) -> Dict[str, Any]:
        """把内部的 ToolDef 转成 function tool 描述。"""

        properties: Dict[str, Any] = {}
        required: List[str] = []
        for name, param in tool.params.items():
            properties[name] = param.schema or {"type": "string"}
            if param.description:
                properties[name] = {**properties[name], "description": param.description}
            if param.required:
                required.append(name)
        return {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": {
                    "type": "object",
                    "properties": properties,
                    "required": required,
                },
            },
        }

    def _build_chat_message(self, payload: Dict[str, Any]) -> ChatMessage:
        tool_calls: List[ToolCall] = []
        for idx, call in enumerate(payload.get("tool_calls") or []):
            func = call.get("function") or {}
            tool_calls.append(
                ToolCall(
                    id=call.get("id") or f"tool_call_{idx}",
                    name=func.get("name") or call.get("name") or "",
                    arguments=parse_arguments(func.get("arguments")),
                )
            )
        return ChatMessage(
            role=payload.get("role") or "assistant",
            content=payload.get("content") or "",
            tool_calls=tool_calls or None,
            tool_call_id=payload.get("tool_call_id"),
        )

    def _message_to_payload(self, message: ChatMessage) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"role": message.role}
        if message.content or not message.tool_calls:
            payload["content"] = message.content
        if message.tool_calls:
            payload["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {
                        "name": call.name,
                        "arguments": json.dumps(call.arguments, ensure_ascii=False),
                    },
                }
                for call in message.tool_calls
            ]
        if message.tool_call_id:
            payload["tool_call_id"] = message.tool_call_id
        return payload
