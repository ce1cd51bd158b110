"""Agent 标识生成器。

由创建 Agent 的一方持有并注入，不使用模块级全局计数器。
"""

import itertools
import threading


class AgentIdGenerator:
    """生成 "agent-1"、"agent-2" ... 形式的递增标识。"""

    def __init__(self, prefix: str = "agent", start: int = 1):
        self._prefix = prefix
        self._counter = itertools.count(start)
        self._lock = threading.Lock()

    def __call__(self) -> str:
        with self._lock:
            n = next(self._counter)
        return f"{self._prefix}-{n}"
