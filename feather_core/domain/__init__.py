"""领域层模型与协议。

包含：
- models: 统一的 ChatMessage / ChatRequest / ChatResult / ResponseFormat 模型。
- conversation: 单个 Agent 独占的内存消息存储 MessageStore。
- exceptions: 业务异常类型定义。
"""
