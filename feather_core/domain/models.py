"""统一的对话与结果数据模型。

本模块定义了 Agent 与 Provider 之间共享的标准数据结构：

- ChatMessage: 一条对话消息（system/user/assistant），内容可以是纯文本，
  也可以是 TextPart / ImagePart 组成的多模态片段列表。
- ChatRequest: 发给底层 LLM Provider 的完整请求。
- ChatResult: 从 Provider 解析后的统一响应结果。
- ResponseFormat: 结构化输出的目标 schema（JSON Schema 或 pydantic 模型）。

所有 Provider 适配器都必须只依赖这些模型，
并负责在各自的 API JSON 和这些模型之间做转换。
"""

import json
from dataclasses import dataclass, field
from typing import Literal, Optional, Any, Dict, List, Type, Union, TYPE_CHECKING

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from feather_core.domain.exceptions import ConfigurationError, StructuredOutputParseError

if TYPE_CHECKING:
    # 仅在类型检查时导入，避免运行时循环依赖
    from feather_core.tools.definitions import FunctionCall, ToolDef


# 对话中只会出现这三种角色；工具结果以 user 消息回填
Role = Literal["system", "user", "assistant"]


@dataclass
class TextPart:
    """多模态消息中的文本片段。"""

    text: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass
class ImagePart:
    """多模态消息中的图片引用（URL 或 data URI）。"""

    url: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "image_url", "image_url": {"url": self.url}}


ContentPart = Union[TextPart, ImagePart]


@dataclass
class ChatMessage:
    """一条对话消息，既可用于请求，也可用于响应。

    - role: 消息角色，如 system/user/assistant。
    - content: 纯文本，或 ContentPart 列表（图片 + 文本）。
    - meta: 附加元数据（如 agent_id），Provider 会作为 metadata 字段透传。
    - tool_calls: 当 role 为 "assistant" 且模型触发工具调用时，
      这里保存模型发起的工具调用列表。写入 MessageStore 时不保留该字段。
    """

    role: Role
    content: Union[str, List[ContentPart]]
    meta: Dict[str, Any] = field(default_factory=dict)
    tool_calls: Optional[List["FunctionCall"]] = None

    def text_content(self) -> str:
        if isinstance(self.content, str):
            return self.content
        return "".join(part.text for part in self.content if isinstance(part, TextPart))

    def to_dict(self) -> Dict[str, Any]:
        if isinstance(self.content, str):
            content: Any = self.content
        else:
            content = [part.to_dict() for part in self.content]
        data: Dict[str, Any] = {"role": self.role, "content": content}
        if self.meta:
            data["meta"] = dict(self.meta)
        if self.tool_calls:
            data["tool_calls"] = [call.to_dict() for call in self.tool_calls]
        return data


@dataclass(frozen=True)
class ForcedToolChoice:
    """强制模型调用指定名称的工具。"""

    name: str


ToolChoice = Union[Literal["auto"], ForcedToolChoice]


@dataclass(frozen=True)
class ResponseFormat:
    """结构化输出描述。

    - schema: 发送给模型的 JSON Schema。
    - model: 可选的 pydantic 模型；提供时 parse() 返回模型实例，否则返回 dict。
    """

    name: str
    schema: Dict[str, Any]
    strict: bool = True
    model: Optional[Type[BaseModel]] = None

    @classmethod
    def from_model(cls, model: Type[BaseModel], name: Optional[str] = None, strict: bool = True) -> "ResponseFormat":
        return cls(name=name or model.__name__, schema=model.model_json_schema(), strict=strict, model=model)

    @classmethod
    def coerce(cls, value: Any) -> Optional["ResponseFormat"]:
        """接受 ResponseFormat、pydantic 模型类、{name, strict, schema} 或裸 JSON Schema。"""

        if value is None or isinstance(value, ResponseFormat):
            return value
        if isinstance(value, type) and issubclass(value, BaseModel):
            return cls.from_model(value)
        if isinstance(value, dict):
            if isinstance(value.get("schema"), dict):
                return cls(
                    name=str(value.get("name") or "response"),
                    schema=value["schema"],
                    strict=bool(value.get("strict", True)),
                )
            return cls(name="response", schema=value)
        raise ConfigurationError(
            code="INVALID_RESPONSE_FORMAT",
            message=f"Unsupported structured output schema: {type(value).__name__}",
        )

    @property
    def properties(self) -> Dict[str, Any]:
        return self.schema.get("properties") or {}

    @property
    def required(self) -> List[str]:
        return list(self.schema.get("required") or [])

    def parse(self, text: str) -> Any:
        if self.model is not None:
            try:
                return self.model.model_validate_json(text)
            except PydanticValidationError as exc:
                raise StructuredOutputParseError(
                    code="STRUCTURED_OUTPUT_PARSE_ERROR",
                    message=str(exc),
                    schema_name=self.name,
                ) from exc
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise StructuredOutputParseError(
                code="STRUCTURED_OUTPUT_PARSE_ERROR",
                message=str(exc),
                schema_name=self.name,
            ) from exc

    def to_payload(self) -> Dict[str, Any]:
        return {
            "type": "json_schema",
            "json_schema": {
                "name": self.name,
                "strict": self.strict,
                "schema": self.schema,
            },
        }


@dataclass
class ChatRequest:
    """一次完整的聊天请求。

    Agent 每轮都会重新生成 ChatRequest，再交给具体 ProviderClient。
    Provider 适配层负责把本结构转换成各家 API 的 JSON 请求体。
    """

    model: str  # 模型 ID，如 "openai/gpt-4o"
    messages: List[ChatMessage]
    # 工具定义列表：Provider 只序列化 schema，不会接触 handler
    tools: Optional[List["ToolDef"]] = None
    tool_choice: ToolChoice = "auto"
    response_format: Optional[ResponseFormat] = None
    # 透传给 API 的模型参数（temperature、max_tokens 等）
    params: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "model": self.model,
            "messages": [m.to_dict() for m in self.messages],
            "tools": [t.schema() for t in (self.tools or [])],
            "tool_choice": (
                {"name": self.tool_choice.name}
                if isinstance(self.tool_choice, ForcedToolChoice)
                else self.tool_choice
            ),
        }
        if self.response_format is not None:
            data["response_format"] = self.response_format.to_payload()
        data.update(self.params)
        return data


@dataclass
class ChatUsage:
    """Provider 返回的 token 统计信息（统一格式）。"""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass
class ChatChoice:
    """单个候选回答（Agent 只使用 index=0 的一条）。"""

    index: int
    message: Optional[ChatMessage]
    finish_reason: Optional[str] = None


@dataclass
class ChatResult:
    """一次对话调用的最终结果。

    - provider: Provider 名（如 "openrouter"）。
    - model: 模型 ID。
    - choices: 一个或多个候选回答，可能为空。
    - usage: 可选的 token 使用统计。
    - raw: 原始响应 JSON，用于调试或日志记录。
    """

    provider: str
    model: str
    choices: List[ChatChoice]
    usage: Optional[ChatUsage] = None
    raw: Optional[dict] = None

    def to_dict(self) -> Dict[str, Any]:
        if self.raw is not None:
            return self.raw
        return {
            "provider": self.provider,
            "model": self.model,
            "choices": [
                {
                    "index": ch.index,
                    "message": ch.message.to_dict() if ch.message else None,
                    "finish_reason": ch.finish_reason,
                }
                for ch in self.choices
            ],
        }
