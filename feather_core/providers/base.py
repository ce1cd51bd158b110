"""Provider 抽象接口。

上层 FeatherAgent 不直接依赖具体厂商的 HTTP API，而是依赖此协议：

- 每个端点实现一个 ProviderClient（如 OpenAICompatibleClient）。
- 负责：将 ChatRequest 转成具体 API 请求，并把响应 JSON 解析为 ChatResult。

这样可以在不改 Agent 代码的前提下接入更多厂商，测试中也可以直接注入假实现。
"""

from typing import Protocol
from feather_core.domain.models import ChatRequest, ChatResult


class ProviderClient(Protocol):
    """LLM Provider 客户端协议。

    实现者需要提供：
    - name: Provider 名称，用于日志/统计。
    - chat(req): 执行一次非流式对话调用，返回统一的 ChatResult。
    """

    name: str

    async def chat(self, req: ChatRequest) -> ChatResult:
        ...
