"""FeatherAgent：对话编排核心。

一个 FeatherAgent 独占一个 MessageStore 和一份 AgentConfig。每次 run() 都按轮次：
1. 重建 system 消息（动态变量 / 链式说明 / 输出格式说明）；
2. 带上完整历史、工具 schema、tool_choice 调用模型；
3. 根据回复决定：直接给出结果、执行工具后继续下一轮，或失败结束。

轮次循环用 LangGraph 的 StateGraph 表达（见 flows/graph.py），节点实现在本类中。
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence
from uuid import uuid4
import logging

from feather_core.agents.output import extract_output, extract_speech
from feather_core.config.settings import settings
from feather_core.domain.conversation import MessageStore
from feather_core.domain.exceptions import (
    BusinessError,
    ConfigurationError,
    EmptyResponseError,
    EndpointError,
    MaxIterationsError,
    MissingMessageError,
)
from feather_core.domain.models import ChatMessage, ChatRequest, ForcedToolChoice, ResponseFormat, ToolChoice
from feather_core.flows.graph import build_run_graph, recursion_limit
from feather_core.flows.state import RunState
from feather_core.infrastructure.logging.logger import logger
from feather_core.prompts import build_system_prompt
from feather_core.providers.base import ProviderClient
from feather_core.tools.definitions import FINISH_TOOL_NAME, FunctionCall, ToolDef, finish_tool
from feather_core.tools.executor import ToolExecutor, ToolOutcome
from feather_core.tracing.sink import AgentEventSink


@dataclass(frozen=True)
class AgentConfig:
    """Agent 构造时固定下来的运行配置。"""

    system_prompt: str
    model: Optional[str] = None  # 为空时取 settings.default_model
    agent_id: Optional[str] = None
    cognition: bool = False
    # ResponseFormat / pydantic 模型类 / {name, strict, schema} / 裸 JSON Schema
    structured_output: Any = None
    dynamic_variables: Optional[Mapping[str, Callable[[], Any]]] = None
    chain_run: bool = False
    max_chain_iterations: int = 5
    force_tool: bool = False
    auto_execute_tools: bool = True
    max_iterations: Optional[int] = None  # 为空时取 settings.max_iterations
    additional_params: Dict[str, Any] = field(default_factory=dict)
    tool_timeout: Optional[float] = None


@dataclass
class AgentRunResult:
    """一次 run() 的结果，每次调用都新建。"""

    success: bool
    output: Any
    error: Optional[str] = None
    error_code: Optional[str] = None
    function_calls: Optional[List[FunctionCall]] = None


def _default_agent_id() -> str:
    return f"agent-{uuid4().hex[:8]}"


class FeatherAgent:
    def __init__(
        self,
        config: AgentConfig,
        provider_client: Optional[ProviderClient] = None,
        tools: Optional[Sequence[ToolDef]] = None,
        event_sink: Optional[AgentEventSink] = None,
        id_generator: Optional[Callable[[], str]] = None,
    ):
        user_tools = list(tools or [])
        self._validate(config, user_tools)

        if provider_client is None:
            # 延迟导入，避免只做离线测试时也要初始化 provider 层
            from feather_core.providers import create_provider

            provider_client = create_provider()

        if config.chain_run and all(t.name != FINISH_TOOL_NAME for t in user_tools):
            user_tools.append(finish_tool())

        self._config = config
        self._provider = provider_client
        self._tools: List[ToolDef] = user_tools
        self._sink = event_sink
        self._model = config.model or settings.default_model
        self._response_format: Optional[ResponseFormat] = ResponseFormat.coerce(config.structured_output)
        self._max_iterations = self._resolve_max_iterations(config)
        self._agent_id = config.agent_id or (id_generator or _default_agent_id)()
        self._store = MessageStore(config.system_prompt)
        self._executor = ToolExecutor(self._tools, timeout=config.tool_timeout)
        self._graph = build_run_graph(self._call_model_node, self._execute_tools_node, self._exhausted_node)
        self._logs: List[str] = []
        # 跨多次 run 递增，sink 用它配对请求与响应
        self._llm_call_iteration = 0

        self._emit("on_agent_registered", config.system_prompt, self._history())
        self._log_entry(
            logging.INFO,
            "Agent created",
            model=self._model,
            tools=[t.name for t in self._tools],
            max_iterations=self._max_iterations,
        )

    # ------------------------------------------------------------------
    # 对外接口
    # ------------------------------------------------------------------

    @property
    def agent_id(self) -> str:
        return self._agent_id

    @property
    def config(self) -> AgentConfig:
        return self._config

    @property
    def tools(self) -> List[ToolDef]:
        return list(self._tools)

    @property
    def max_iterations(self) -> int:
        return self._max_iterations

    @property
    def logs(self) -> List[str]:
        return list(self._logs)

    def add_user_message(self, content: str, images: Optional[Sequence[str]] = None) -> ChatMessage:
        message = self._store.append_user(content, images)
        self._emit("on_message_history_updated", self._history())
        return message

    def add_assistant_message(self, content: str) -> ChatMessage:
        message = self._store.append_assistant(content)
        self._emit("on_message_history_updated", self._history())
        return message

    def get_messages(self) -> List[ChatMessage]:
        return self._store.snapshot()

    async def run(self, user_input: Optional[str] = None) -> AgentRunResult:
        """运行对话直到得到最终结果或失败。

        Args:
            user_input: 可选的用户输入，非空时先追加为一条 user 消息。

        Returns:
            AgentRunResult。模型端点错误和轮数耗尽以 success=False 返回，不抛异常。
        """

        if user_input:
            self.add_user_message(user_input)

        log_ctx = {"agent_id": self._agent_id, "run_id": f"run-{uuid4().hex[:12]}"}
        self._log(logging.INFO, "Run started", log_ctx, messages=len(self._store))
        state: RunState = {
            "iteration": 0,
            "max_iterations": self._max_iterations,
            "function_calls": [],
            "last_content": "",
            "result": None,
        }
        final = await self._graph.ainvoke(
            state,
            config={"recursion_limit": recursion_limit(self._max_iterations)},
        )
        result: AgentRunResult = final["result"]
        self._log(
            logging.INFO,
            "Run finished",
            log_ctx,
            success=result.success,
            iterations=final.get("iteration"),
            error_code=result.error_code,
        )
        return result

    # ------------------------------------------------------------------
    # 图节点
    # ------------------------------------------------------------------

    async def _call_model_node(self, state: RunState) -> RunState:
        iteration = state["iteration"] + 1
        state["iteration"] = iteration
        max_iterations = state["max_iterations"]

        prompt = build_system_prompt(
            self._config.system_prompt,
            dynamic_variables=self._config.dynamic_variables,
            cognition=self._config.cognition,
            response_format=self._response_format,
            chain_run=self._config.chain_run,
            iteration=iteration,
            max_iterations=max_iterations,
        )
        self._store.set_system(prompt)
        self._emit("on_system_prompt_updated", prompt)

        req = ChatRequest(
            model=self._model,
            messages=[self._with_agent_meta(m) for m in self._store],
            tools=self._tools or None,
            tool_choice=self._tool_choice(iteration, max_iterations),
            response_format=self._response_format,
            params=dict(self._config.additional_params),
        )
        self._llm_call_iteration += 1
        call_no = self._llm_call_iteration
        self._emit("on_llm_request_stored", call_no, req.to_dict())
        self._log_entry(logging.INFO, f"Iteration {iteration}/{max_iterations}: calling model", model=self._model)

        try:
            result = await self._provider.chat(req)
        except Exception as exc:  # noqa: BLE001 - 端点错误统一转换为失败结果
            message = exc.message if isinstance(exc, BusinessError) else str(exc) or type(exc).__name__
            return self._fail(
                state,
                EndpointError(
                    code="ENDPOINT_ERROR",
                    message=message,
                    cause=getattr(exc, "code", type(exc).__name__),
                ),
            )
        self._emit("on_llm_response_stored", call_no, result.to_dict())

        if not result.choices:
            return self._fail(state, EmptyResponseError(code="EMPTY_RESPONSE", message="No response from model"))
        message = result.choices[0].message
        if message is None:
            return self._fail(state, MissingMessageError(code="MISSING_MESSAGE", message="No message in model choice"))

        content = message.text_content()
        state["last_content"] = content
        # assistant 回复无条件写入历史，即使随后要执行工具
        self._store.append_assistant(content)
        self._emit("on_message_history_updated", self._history())

        calls = list(message.tool_calls or [])
        if not calls:
            if not self._config.chain_run:
                return self._finalize(state, self._extract(content))
            if iteration >= max_iterations:
                self._log_entry(logging.WARNING, "Final chain iteration without finish call, using raw content")
                return self._finalize(state, content.strip())
            self._log_entry(logging.INFO, "No tool calls in chain mode, continuing")
            return state

        if not self._config.auto_execute_tools:
            self._log_entry(logging.INFO, "Returning pending tool calls", tools=[c.name for c in calls])
            return self._finalize(state, extract_speech(content) if self._config.cognition else content.strip(), calls)

        state["function_calls"] = calls
        return state

    async def _execute_tools_node(self, state: RunState) -> RunState:
        calls: List[FunctionCall] = state.get("function_calls") or []
        state["function_calls"] = []
        self._log_entry(logging.INFO, "Executing tools", tools=[c.name for c in calls])
        outcomes = await self._executor.execute_batch(calls)

        finish: Optional[ToolOutcome] = None
        for outcome in outcomes:
            if not outcome.ok:
                self._log_entry(logging.WARNING, outcome.error.message, tool_name=outcome.call.name)
            if self._config.chain_run and outcome.call.name == FINISH_TOOL_NAME:
                if finish is None:
                    finish = outcome
                continue
            self._store.append_user(outcome.text)
        self._emit("on_message_history_updated", self._history())

        if finish is not None:
            self._log_entry(logging.INFO, "Finish tool called")
            return self._finalize(state, finish.text)
        if self._config.force_tool:
            outcome = outcomes[0]
            return self._finalize(state, outcome.value if outcome.ok else outcome.error.message)
        return state

    async def _exhausted_node(self, state: RunState) -> RunState:
        if self._config.chain_run:
            self._log_entry(logging.WARNING, "Chain iterations exhausted, using last assistant content")
            return self._finalize(state, (state.get("last_content") or "").strip())
        return self._fail(state, MaxIterationsError(code="MAX_ITERATIONS", message="Max iterations reached"))

    # ------------------------------------------------------------------
    # 内部工具
    # ------------------------------------------------------------------

    @staticmethod
    def _validate(config: AgentConfig, tools: List[ToolDef]) -> None:
        if config.cognition and config.structured_output is not None:
            raise ConfigurationError(
                code="CONFLICTING_OUTPUT_MODES",
                message="cognition and structured_output cannot be enabled together",
            )
        if config.force_tool and len(tools) != 1:
            raise ConfigurationError(
                code="FORCE_TOOL_REQUIRES_SINGLE_TOOL",
                message=f"force_tool requires exactly one tool, got {len(tools)}",
            )
        if config.force_tool and config.chain_run:
            raise ConfigurationError(
                code="CONFLICTING_RUN_MODES",
                message="force_tool and chain_run cannot be enabled together",
            )
        names = [t.name for t in tools]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ConfigurationError(
                code="DUPLICATE_TOOL_NAME",
                message=f"Duplicate tool names: {', '.join(duplicates)}",
            )
        if config.max_chain_iterations < 1:
            raise ConfigurationError(code="INVALID_ITERATIONS", message="max_chain_iterations must be >= 1")
        if config.max_iterations is not None and config.max_iterations < 1:
            raise ConfigurationError(code="INVALID_ITERATIONS", message="max_iterations must be >= 1")

    @staticmethod
    def _resolve_max_iterations(config: AgentConfig) -> int:
        if config.force_tool:
            return 1
        if config.chain_run:
            return config.max_chain_iterations
        return config.max_iterations or settings.max_iterations

    def _tool_choice(self, iteration: int, max_iterations: int) -> ToolChoice:
        if self._config.force_tool:
            return ForcedToolChoice(name=self._tools[0].name)
        if self._config.chain_run and iteration >= max_iterations:
            return ForcedToolChoice(name=FINISH_TOOL_NAME)
        return "auto"

    def _with_agent_meta(self, message: ChatMessage) -> ChatMessage:
        return ChatMessage(
            role=message.role,
            content=message.content,
            meta={**message.meta, "agent_id": self._agent_id},
        )

    def _extract(self, content: str) -> Any:
        return extract_output(content, cognition=self._config.cognition, response_format=self._response_format)

    def _finalize(
        self,
        state: RunState,
        output: Any,
        function_calls: Optional[List[FunctionCall]] = None,
    ) -> RunState:
        state["result"] = AgentRunResult(success=True, output=output, function_calls=function_calls)
        return state

    def _fail(self, state: RunState, error: BusinessError) -> RunState:
        self._log_entry(logging.ERROR, error.message, error_code=error.code)
        self._emit("on_error_updated", error.message)
        state["result"] = AgentRunResult(success=False, output="", error=error.message, error_code=error.code)
        return state

    def _history(self) -> List[Dict[str, Any]]:
        return [m.to_dict() for m in self._store]

    def _emit(self, method: str, *args: Any) -> None:
        """通知观测 sink；sink 的异常只记录日志，不影响运行。"""

        if self._sink is None:
            return
        try:
            getattr(self._sink, method)(self._agent_id, *args)
        except Exception:  # noqa: BLE001 - 观测失败不能中断对话
            logger.warning(
                "Event sink call failed",
                exc_info=True,
                extra={"extra": {"agent_id": self._agent_id, "sink_method": method}},
            )

    def _log_entry(self, level: int, message: str, **fields: Any) -> None:
        """写入结构化日志，同时追加到 agent 自身的日志列表并同步给 sink。"""

        entry = f"[{datetime.now(timezone.utc).isoformat()}] {logging.getLevelName(level)}: {message}"
        self._logs.append(entry)
        self._log(level, message, {"agent_id": self._agent_id}, **fields)
        self._emit("on_log_appended", entry)

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
