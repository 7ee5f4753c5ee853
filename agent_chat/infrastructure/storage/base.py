"""存储能力抽象。

所有存储组件（内存字典、JSONL 持久化、命名空间）都只需满足 Store 协议：
get / put / delete，键为字符串。组合器通过持有内层 Store 的引用叠加功能，
而不是继承某个具体实现，因此可以按任意顺序嵌套、单独测试。
"""

from dataclasses import dataclass
from typing import Any, Literal, Optional, Protocol, Tuple, TypeVar

T = TypeVar("T")

# 日志记录的操作类型，是一个封闭集合
Operation = Literal["put", "delete"]
OPERATIONS: Tuple[str, ...] = ("put", "delete")


class Store(Protocol[T]):
    """键值存储协议。"""

    def get(self, key: str) -> Optional[T]:
        ...

    def put(self, key: str, value: T) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


@dataclass
class LogRecord:
    """持久化日志中的一行。

    - operation 为 "delete" 时 value 没有意义，约定为 None。
    - operation 为 "put" 时 value 是完整的替换值（不支持增量更新）。
    """

    key: str
    operation: Operation
    value: Any = None

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "operation": self.operation,
            "value": self.value if self.operation == "put" else None,
        }
