from typing import Dict, Generic, Optional, TypeVar

T = TypeVar("T")


class DictStore(Generic[T]):
    """进程内的字典存储，是单次会话期间的权威状态。

    没有容量上限也没有淘汰策略，它不是缓存。
    """

    def __init__(self) -> None:
        self._data: Dict[str, T] = {}

    def get(self, key: str) -> Optional[T]:
        return self._data.get(key)

    def put(self, key: str, value: T) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def snapshot(self) -> Dict[str, T]:
        """返回当前全部键值的浅拷贝，主要用于测试与调试。"""

        return dict(self._data)

    def __len__(self) -> int:
        return len(self._data)
