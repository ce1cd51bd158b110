"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 Agent 层统一转换为 AgentRunResult 或在调用方统一捕获。

错误分为三类：
- Provider 层：NetworkError / ApiError / RateLimitError / ValidationError，
  由 Provider 适配器抛出。
- 运行终止类：EndpointError / EmptyResponseError / MissingMessageError /
  MaxIterationsError，会变成 success=False 的运行结果。
- 本地吸收类：ToolNotFoundError / ToolExecutionError /
  StructuredOutputParseError，只会以文本形式进入对话，不会返回给调用方。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "ENDPOINT_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 agent_id、tool_name 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、超时等。"""


class ApiError(BusinessError):
    """第三方 API 返回非 2xx/429 错误时抛出。"""


class RateLimitError(BusinessError):
    """Provider 限流错误，由上层负责重试/退避策略。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class ConfigurationError(ValidationError):
    """Agent 构造参数互相冲突（例如同时开启 cognition 与结构化输出）。"""


class EndpointError(BusinessError):
    """模型端点调用失败（网络、API、鉴权等），本轮运行直接终止。"""


class EmptyResponseError(BusinessError):
    """模型端点返回的 choices 为空。"""


class MissingMessageError(BusinessError):
    """模型端点返回的首个 choice 不含 message。"""


class MaxIterationsError(BusinessError):
    """达到最大轮数仍未得到最终输出。"""


class ToolNotFoundError(BusinessError):
    """模型请求了未注册的工具。"""


class ToolExecutionError(BusinessError):
    """工具执行时抛出异常或超时。"""


class StructuredOutputParseError(BusinessError):
    """模型输出无法解析为声明的结构化格式。"""
