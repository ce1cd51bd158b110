"""从模型原始回复中提取调用方可见的输出。

标签提取只做首个匹配，不处理嵌套或不闭合的标签。
"""

import re
from typing import Any, Optional

from feather_core.domain.exceptions import StructuredOutputParseError
from feather_core.domain.models import ResponseFormat
from feather_core.infrastructure.logging.logger import logger


def extract_tag(content: str, tag: str) -> Optional[str]:
    """返回第一个 <tag>...</tag> 之间的内容（已 strip），不存在时返回 None。"""

    match = re.search(rf"<{re.escape(tag)}>(.*?)</{re.escape(tag)}>", content or "", re.DOTALL)
    if not match:
        return None
    return match.group(1).strip()


def extract_speech(content: str) -> str:
    speech = extract_tag(content, "speak")
    if speech is None:
        return (content or "").strip()
    return speech


def extract_output(
    content: str,
    *,
    cognition: bool = False,
    response_format: Optional[ResponseFormat] = None,
) -> Any:
    text = extract_speech(content) if cognition else (content or "").strip()
    if response_format is None:
        return text
    try:
        return response_format.parse(text)
    except StructuredOutputParseError as exc:
        # 解析失败时按纯文本返回
        logger.info(
            "Structured output parse failed, falling back to text",
            extra={"extra": {"schema": response_format.name, "error": exc.message[:200]}},
        )
        return text
