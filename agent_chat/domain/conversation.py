"""会话历史的领域模型。

Chat 与 Message 以普通 JSON dict 的形式写入存储，字段名沿用日志格式
（"msgID"、"prevID"），这样内存中的值与回放得到的值完全一致。
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

from agent_chat.domain.exceptions import StoreError

# 对话条目由 Agent 层定义，存储层只把它当作不透明的 JSON 值
ConversationItem = Any


@dataclass
class Chat:
    """一个会话。

    - id: 会话的稳定标识（毫秒时间戳）。
    - msg_id: 最近一条消息的 id，空会话为 None。
    """

    id: str
    msg_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"id": self.id}
        if self.msg_id is not None:
            data["msgID"] = self.msg_id
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Chat":
        if not isinstance(data, dict) or data.get("id") is None:
            raise StoreError(code="CORRUPT_CHAT", message=f"chat record has no id: {data!r}", record=data)
        msg_id = data.get("msgID")
        return cls(id=str(data["id"]), msg_id=None if msg_id is None else str(msg_id))


@dataclass
class Message:
    """一条消息，prev_id 指向同一会话中的上一条消息。"""

    item: ConversationItem
    prev_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"item": self.item}
        if self.prev_id is not None:
            data["prevID"] = self.prev_id
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        return cls(item=data.get("item"), prev_id=data.get("prevID"))


class ConversationHistory(Protocol):
    """会话历史的操作协议，CLI 与测试只依赖这些方法。"""

    @property
    def current_chat(self) -> Chat:
        ...

    def history(self) -> List[ConversationItem]:
        ...

    def append(self, items: List[ConversationItem]) -> None:
        ...

    def delete_last_message(self) -> Optional[Message]:
        ...

    def new_chat(self) -> str:
        ...

    def open_chat(self, chat_id: str) -> Chat:
        ...
