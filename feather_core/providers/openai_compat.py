"""OpenAI 兼容 Provider 适配器（OpenRouter / OpenAI）。

本模块负责：

1. 接收统一的 ChatRequest。
2. 将其转换为 chat/completions 的 HTTP 请求格式（含工具、tool_choice、response_format）。
3. 异步调用 HTTP 接口并处理网络/API 异常。
4. 将响应 JSON 解析为统一的 ChatResult / ChatMessage 结构（含工具调用）。

换句话说，这里就是“厂商 JSON ⇄ 项目内部统一模型”的核心转换层。
"""

import httpx
import json
from typing import Any, Dict, List

from feather_core.domain.models import (
    ChatRequest,
    ChatResult,
    ChatMessage,
    ChatChoice,
    ChatUsage,
    ForcedToolChoice,
)
from feather_core.domain.exceptions import NetworkError, ApiError, RateLimitError, ValidationError
from feather_core.providers.registry import ProviderConfig
from feather_core.tools.definitions import ToolDef, FunctionCall


class OpenAICompatibleClient:
    """OpenAI 兼容端点的客户端实现。

    - name: Provider 名称（供日志/调试使用）。
    - chat: 对外统一调用入口，返回 ChatResult。
    """

    def __init__(self, settings, config: ProviderConfig):
        # Settings 里包含 base_url、api_key、超时等配置
        self._settings = settings
        self._config = config
        self.name = config.name

    async def chat(self, req: ChatRequest) -> ChatResult:
        """执行一次非流式对话调用。

        步骤：
        1. 构造 HTTP 请求 payload。
        2. 发送请求并捕获网络错误/限流/服务端错误。
        3. 使用统一的解析函数构造 ChatResult。
        """

        api_key = getattr(self._settings, self._config.api_key_setting, None)
        if not api_key:
            # 配置缺失走 ValidationError，方便上层统一处理
            raise ValidationError(
                code="MISSING_API_KEY",
                message=f"{self._config.api_key_env} not set",
            )
        payload = self._build_payload(req)
        base = getattr(self._settings, self._config.base_url_setting, None) or self._config.base_url
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = await client.post(
                    f"{base}/chat/completions",
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {api_key}",
                        "Content-Type": "application/json",
                        **self._config.extra_headers,
                    },
                )
        except httpx.RequestError as e:
            # 网络错误：DNS 失败、连接超时等
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__)
        if resp.status_code == 429:
            # 限流错误交给上层做重试/退避
            raise RateLimitError(code="RATE_LIMIT", message=f"{self.name} rate limit", http_status=429)
        if resp.status_code >= 400:
            # 其他 HTTP 错误统一包装为 ApiError
            raise ApiError(code="API_ERROR", message=resp.text, http_status=resp.status_code)
        data = resp.json()
        return self._parse_response(data, req)

    def _build_payload(self, req: ChatRequest) -> dict:
        """将 ChatRequest 转成 chat/completions 所需的请求 JSON。"""

        payload: Dict[str, Any] = {
            "model": req.model,
            "messages": [self._message_to_payload(m) for m in req.messages],
        }
        if req.tools:
            payload["tools"] = [self._serialize_tool(tool) for tool in req.tools]
            payload["tool_choice"] = self._serialize_tool_choice(req.tool_choice)
        if req.response_format is not None:
            payload["response_format"] = req.response_format.to_payload()
        # 透传参数放在最后，允许调用方覆盖默认字段
        payload.update(req.params)
        return payload

    def _parse_response(self, data: dict, req: ChatRequest) -> ChatResult:
        """将原始响应 JSON 解析为统一的 ChatResult。"""

        choices: list[ChatChoice] = []
        for i, ch in enumerate(data.get("choices") or []):
            msg = ch.get("message")
            cm = self._build_chat_message(msg) if msg else None
            choices.append(ChatChoice(index=ch.get("index", i), message=cm, finish_reason=ch.get("finish_reason")))
        usage_raw = data.get("usage") or {}
        usage = ChatUsage(
            prompt_tokens=usage_raw.get("prompt_tokens", 0),
            completion_tokens=usage_raw.get("completion_tokens", 0),
            total_tokens=usage_raw.get("total_tokens", 0),
        )
        return ChatResult(
            provider=self.name,
            model=data.get("model") or req.model,
            choices=choices,
            usage=usage,
            raw=data,
        )

    @staticmethod
    def _serialize_tool(tool: ToolDef) -> Dict[str, Any]:
        return {"type": "function", "function": tool.schema()}

    @staticmethod
    def _serialize_tool_choice(choice) -> Any:
        if isinstance(choice, ForcedToolChoice):
            return {"type": "function", "function": {"name": choice.name}}
        return choice

    def _build_chat_message(self, payload: Dict[str, Any]) -> ChatMessage:
        """将单条厂商 message 转换为 ChatMessage。

        同时负责把 tool_calls 字段解析为统一的 FunctionCall 列表，
        方便 FeatherAgent 后续执行工具。
        """

        tool_calls_raw = payload.get("tool_calls") or []
        tool_calls: List[FunctionCall] = []
        for idx, call in enumerate(tool_calls_raw):
            func = call.get("function") or {}
            name = func.get("name") or call.get("name") or ""
            tool_calls.append(
                FunctionCall(
                    id=call.get("id") or f"tool_call_{idx}",
                    name=name,
                    arguments=self._parse_arguments(func.get("arguments")),
                )
            )
        return ChatMessage(
            role="assistant",
            content=self._content_text(payload.get("content")),
            tool_calls=tool_calls or None,
        )

    @staticmethod
    def _content_text(content: Any) -> str:
        if content is None:
            return ""
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            return "".join(
                part.get("text") or "" for part in content if isinstance(part, dict)
            )
        return str(content)

    @staticmethod
    def _parse_arguments(raw: Any) -> Dict[str, Any]:
        """解析工具调用的 arguments 字段。

        端点会把 arguments 作为 JSON 字符串返回，这里做一层
        json.loads 尝试，失败时保留原始字符串到 `_raw`，避免信息丢失。
        """

        if isinstance(raw, dict):
            return raw
        if isinstance(raw, str):
            if not raw.strip():
                return {}
            try:
                parsed = json.loads(raw)
            except json.JSONDecodeError:
                return {"_raw": raw}
            return parsed if isinstance(parsed, dict) else {"_raw": raw}
        return {}

    @staticmethod
    def _message_to_payload(message: ChatMessage) -> Dict[str, Any]:
        if isinstance(message.content, str):
            content: Any = message.content
        else:
            content = [part.to_dict() for part in message.content]
        payload: Dict[str, Any] = {"role": message.role, "content": content}
        if message.meta:
            payload["metadata"] = dict(message.meta)
        return payload
