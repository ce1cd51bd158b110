"""Provider 端点配置。

本模块把 Provider 名称映射到对应的 settings 字段，
OpenAICompatibleClient 据此读取 base_url 与 api_key。"""

from dataclasses import dataclass, field
from typing import Dict, Mapping


@dataclass
class ProviderConfig:
    """某个 OpenAI 兼容端点的配置。"""

    name: str
    base_url: str
    api_key_setting: str
    base_url_setting: str
    api_key_env: str
    extra_headers: Dict[str, str] = field(default_factory=dict)


OPENROUTER_CONFIG = ProviderConfig(
    name="openrouter",
    base_url="https://openrouter.ai/api/v1",
    api_key_setting="openrouter_api_key",
    base_url_setting="openrouter_base_url",
    api_key_env="OPENROUTER_API_KEY",
    extra_headers={"X-Title": "feather-core"},
)

OPENAI_CONFIG = ProviderConfig(
    name="openai",
    base_url="https://api.openai.com/v1",
    api_key_setting="openai_api_key",
    base_url_setting="openai_base_url",
    api_key_env="OPENAI_API_KEY",
)


PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    "openrouter": OPENROUTER_CONFIG,
    "openai": OPENAI_CONFIG,
}


def get_provider_config(name: str) -> ProviderConfig:
    """根据名称获取 ProviderConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in PROVIDER_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown provider: {name!r}")
