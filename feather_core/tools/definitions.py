"""工具数据结构定义。

这些 dataclass 描述了“工具调用”的 schema，既用于：
- 将可用工具列表暴露给 LLM（ToolDef / ToolParam）。
- 在 FeatherAgent 中保存和执行模型触发的工具调用（FunctionCall）。

ToolDef.handler 只在本地执行，发给模型的永远只有 schema()。
"""

import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Union


ToolHandler = Callable[[Dict[str, Any]], Union[Awaitable[Any], Any]]

# 链式模式下用于结束对话的哨兵工具名
FINISH_TOOL_NAME = "finish"


@dataclass
class ToolParam:
    """单个工具参数的定义。"""

    name: str
    description: str
    required: bool
    schema: Dict[str, Any]


@dataclass(frozen=True)
class ToolDef:
    """一个可供 LLM 调用的工具定义。

    - parameters: JSON Schema（type=object），原样发给模型。
    - handler: 异步可调用对象，接收解析后的参数 dict，返回任意结果或抛出异常。
    """

    name: str
    description: str
    parameters: Dict[str, Any]
    handler: ToolHandler = field(repr=False, compare=False)

    @classmethod
    def from_params(
        cls,
        name: str,
        description: str,
        params: Dict[str, ToolParam],
        handler: ToolHandler,
    ) -> "ToolDef":
        """由 ToolParam 列表拼出 JSON Schema。"""

        properties: Dict[str, Any] = {}
        required: List[str] = []
        for key, param in params.items():
            properties[key] = param.schema or {"type": "string"}
            if param.description:
                properties[key] = {
                    **properties[key],
                    "description": param.description,
                }
            if param.required:
                required.append(key)
        return cls(
            name=name,
            description=description,
            parameters={
                "type": "object",
                "properties": properties,
                "required": required,
            },
            handler=handler,
        )

    def schema(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }


@dataclass
class FunctionCall:
    """模型发起的一次工具调用请求。"""

    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": self.arguments}


async def _finish(arguments: Dict[str, Any]) -> str:
    output = arguments.get("output")
    if output is None:
        output = arguments.get("_raw", "")
    if isinstance(output, str):
        return output
    return json.dumps(output, ensure_ascii=False)


def finish_tool() -> ToolDef:
    """链式模式自动追加的 finish 工具，其参数 output 即最终回答。"""

    return ToolDef.from_params(
        name=FINISH_TOOL_NAME,
        description=(
            "Call this tool when the task is complete. "
            "Pass the final answer for the user as `output`."
        ),
        params={
            "output": ToolParam(
                name="output",
                description="The final response to return to the user",
                required=True,
                schema={"type": "string"},
            )
        },
        handler=_finish,
    )
