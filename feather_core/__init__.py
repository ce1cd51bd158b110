"""Feather Core 顶层包。

该包提供轻量的 LLM 对话编排引擎：FeatherAgent 驱动模型与调用方提供的
异步工具进行多轮交互，输出纯文本或符合 schema 的结构化结果。
包括配置加载、领域模型、Provider 适配、工具系统、提示词构建与状态观测等能力。
"""

from feather_core.agents.feather_agent import AgentConfig, AgentRunResult, FeatherAgent
from feather_core.agents.ids import AgentIdGenerator
from feather_core.domain.models import ResponseFormat
from feather_core.providers import create_provider
from feather_core.tools.builtin import internet_search_tool
from feather_core.tools.definitions import FunctionCall, ToolDef, ToolParam
from feather_core.tracing import AgentEventBus, TraceRecorder

__all__ = [
    "AgentConfig",
    "AgentEventBus",
    "AgentIdGenerator",
    "AgentRunResult",
    "FeatherAgent",
    "FunctionCall",
    "ResponseFormat",
    "ToolDef",
    "ToolParam",
    "TraceRecorder",
    "create_provider",
    "internet_search_tool",
]
