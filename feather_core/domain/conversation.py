"""会话消息存储。

MessageStore 只存在于内存中，由一个 FeatherAgent 独占：
- 下标 0 永远是 system 消息，每次调用模型前被整体改写（不追加）。
- 其余消息只追加，不修改、不删除。
"""

from typing import Iterator, List, Optional, Sequence

from .models import ChatMessage, ContentPart, ImagePart, TextPart


class MessageStore:
    def __init__(self, system_prompt: str = ""):
        self._messages: List[ChatMessage] = [ChatMessage(role="system", content=system_prompt)]

    @property
    def system(self) -> ChatMessage:
        return self._messages[0]

    def set_system(self, content: str) -> None:
        self._messages[0] = ChatMessage(role="system", content=content)

    def append(self, message: ChatMessage) -> ChatMessage:
        if message.role == "system":
            raise ValueError("system message can only be replaced via set_system()")
        self._messages.append(message)
        return message

    def append_user(self, content: str, images: Optional[Sequence[str]] = None) -> ChatMessage:
        if images:
            parts: List[ContentPart] = [ImagePart(url=url) for url in images]
            if content:
                parts.insert(0, TextPart(text=content))
            return self.append(ChatMessage(role="user", content=parts))
        return self.append(ChatMessage(role="user", content=content))

    def append_assistant(self, content: str) -> ChatMessage:
        return self.append(ChatMessage(role="assistant", content=content))

    def snapshot(self) -> List[ChatMessage]:
        return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[ChatMessage]:
        return iter(list(self._messages))
