import asyncio
import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from feather_core.domain.exceptions import BusinessError, ToolExecutionError, ToolNotFoundError
from feather_core.infrastructure.logging.logger import logger
from .definitions import FINISH_TOOL_NAME, FunctionCall, ToolDef


@dataclass
class ToolOutcome:
    """一次工具调用的结果。

    text 是写回对话的文本：普通工具为 <tool_execution> 块，finish 为裸字符串。
    """

    call: FunctionCall
    text: str
    value: Any = None
    error: Optional[BusinessError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ToolExecutor:
    def __init__(self, tools: Iterable[ToolDef], timeout: Optional[float] = None):
        self._tools: Dict[str, ToolDef] = {t.name: t for t in tools}
        self._timeout = timeout

    async def execute_batch(self, calls: List[FunctionCall]) -> List[ToolOutcome]:
        """并发执行一轮中的全部工具调用，全部结束后按原顺序返回。"""

        return list(await asyncio.gather(*(self.execute(call) for call in calls)))

    async def execute(self, call: FunctionCall) -> ToolOutcome:
        tool = self._tools.get(call.name)
        if tool is None:
            error = ToolNotFoundError(
                code="TOOL_NOT_FOUND",
                message=f"Tool '{call.name}' not found",
                tool_name=call.name,
            )
            logger.error(error.message, extra={"extra": {"tool_name": call.name}})
            return ToolOutcome(call=call, text=format_tool_result(call, error.message), error=error)

        try:
            value = await self._invoke(tool, call.arguments)
        except asyncio.TimeoutError:
            error = ToolExecutionError(
                code="TOOL_EXECUTION_ERROR",
                message=f"Tool '{call.name}' errored: timed out after {self._timeout}s",
                tool_name=call.name,
            )
            logger.error(error.message, extra={"extra": {"tool_name": call.name}})
            return ToolOutcome(call=call, text=format_tool_result(call, error.message), error=error)
        except Exception as exc:  # noqa: BLE001 - 工具异常需要转换为对话文本
            error = ToolExecutionError(
                code="TOOL_EXECUTION_ERROR",
                message=f"Tool '{call.name}' errored: {exc}",
                tool_name=call.name,
            )
            logger.log(
                logging.ERROR,
                "Tool execution failed",
                exc_info=True,
                extra={"extra": {"tool_name": call.name, "tool_call_id": call.id}},
            )
            return ToolOutcome(call=call, text=format_tool_result(call, error.message), error=error)

        if call.name == FINISH_TOOL_NAME:
            return ToolOutcome(call=call, text=_stringify(value), value=value)
        return ToolOutcome(call=call, text=format_tool_result(call, _stringify(value)), value=value)

    async def _invoke(self, tool: ToolDef, arguments: Dict[str, Any]) -> Any:
        result = tool.handler(arguments)
        if inspect.isawaitable(result):
            if self._timeout is not None:
                return await asyncio.wait_for(result, timeout=self._timeout)
            return await result
        return result


def format_tool_result(call: FunctionCall, result: str) -> str:
    return (
        "<tool_execution>\n"
        f"<tool>{call.name}</tool>\n"
        f"<arguments>{json.dumps(call.arguments, ensure_ascii=False, default=str)}</arguments>\n"
        f"<result>{result}</result>\n"
        "</tool_execution>"
    )


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(value)
