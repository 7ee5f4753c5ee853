from typing import Generic, Optional, TypeVar

from agent_chat.domain.exceptions import ValidationError
from agent_chat.infrastructure.storage.base import Store

T = TypeVar("T")

SEPARATOR = "/"


class NamespacedStore(Generic[T]):
    """给所有键加上命名空间前缀的存储组合器。

    多个逻辑上独立的键空间（会话元数据、各会话的消息）可以共用同一个
    内存字典和同一个日志文件。命名空间可以嵌套：
    NamespacedStore(NamespacedStore(disk, "messages"), chat_id) 的物理键为
    "messages/<chat_id>/<key>"。
    """

    def __init__(self, source: Store[T], tag: str):
        if not tag or SEPARATOR in tag:
            raise ValidationError(
                code="INVALID_NAMESPACE",
                message=f"namespace tag must be non-empty and must not contain {SEPARATOR!r}: {tag!r}",
            )
        self.source = source
        self.tag = tag

    def _key(self, key: str) -> str:
        return f"{self.tag}{SEPARATOR}{key}"

    def get(self, key: str) -> Optional[T]:
        return self.source.get(self._key(key))

    def put(self, key: str, value: T) -> None:
        self.source.put(self._key(key), value)

    def delete(self, key: str) -> None:
        self.source.delete(self._key(key))

    def rebind(self, tag: str) -> "NamespacedStore[T]":
        """在同一个 source 上创建另一个同级命名空间。"""

        return NamespacedStore(self.source, tag)

    def __repr__(self) -> str:
        return f"NamespacedStore(tag={self.tag!r}, source={self.source!r})"
