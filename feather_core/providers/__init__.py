"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护 Provider 端点配置 (registry)。
- 提供 OpenAI 兼容端点的具体实现 (openai_compat)。
"""

from typing import Optional

from feather_core.config.settings import settings
from feather_core.providers.base import ProviderClient
from feather_core.providers.openai_compat import OpenAICompatibleClient
from feather_core.providers.registry import get_provider_config


def create_provider(name: Optional[str] = None) -> ProviderClient:
    """根据名称创建 Provider 实例，默认取配置中的 provider。"""

    provider_name = (name or getattr(settings, "default_provider", "openrouter")).lower()
    return OpenAICompatibleClient(settings, get_provider_config(provider_name))
