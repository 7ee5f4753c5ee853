"""Provider 与模型配置。

本模块将“逻辑模型名”与“具体厂商模型名”解耦：

- 逻辑名（logical_name）：在代码里使用的统一名称，例如 "chat-mini"。
- provider_model：厂商实际提供的模型 ID，例如 "gpt-4.1-mini"。

OpenRouter 以 "<vendor>/<model>" 命名模型，因此同一个逻辑名在两个
Provider 下映射到不同的 ID。"""

from dataclasses import dataclass
from typing import Dict, Mapping


@dataclass
class ModelConfig:
    """单个逻辑模型的配置。"""

    logical_name: str
    provider_model: str
    max_tokens: int
    default_temperature: float


@dataclass
class ProviderConfig:
    """某个 Provider 的整体配置。

    api_key_setting / base_url_setting 为 Settings 中对应字段的名称。
    """

    name: str
    base_url: str
    api_key_setting: str
    base_url_setting: str
    models: Dict[str, ModelConfig]


OPENAI_CONFIG = ProviderConfig(
    name="openai",
    base_url="https://api.openai.com/v1",
    api_key_setting="openai_api_key",
    base_url_setting="openai_base_url",
    models={
        "chat-mini": ModelConfig(
            logical_name="chat-mini",
            provider_model="gpt-4.1-mini",
            max_tokens=4096,
            default_temperature=0.7,
        )
    },
)

OPENROUTER_CONFIG = ProviderConfig(
    name="openrouter",
    base_url="https://openrouter.ai/api/v1",
    api_key_setting="openrouter_api_key",
    base_url_setting="openrouter_base_url",
    models={
        "chat-mini": ModelConfig(
            logical_name="chat-mini",
            provider_model="openai/gpt-4.1-mini",
            max_tokens=4096,
            default_temperature=0.7,
        )
    },
)


PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    "openai": OPENAI_CONFIG,
    "openrouter": OPENROUTER_CONFIG,
}


def get_provider_config(name: str) -> ProviderConfig:
    """根据名称获取 ProviderConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in PROVIDER_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown provider: {name!r}")
