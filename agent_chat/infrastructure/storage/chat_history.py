"""基于存储组合器的会话历史。

物理键布局（同一个内存字典、同一个 JSONL 日志）：

- chats/current              当前会话 {"id", "msgID"}
- chats/<chat id>            每个会话的最新状态，用于重新打开旧会话
- messages/<chat id>/<msg>   消息 {"prevID", "item"}

消息组成按会话划分的反向单链表：Chat.msgID 指向最新一条，
每条消息的 prevID 指向上一条。删除最后一条消息只回退指针，
被删除的消息记录仍保留在存储与日志中。
"""

from __future__ import annotations

import copy
import time
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, List, Optional

from agent_chat.domain.conversation import Chat, ConversationItem, Message
from agent_chat.domain.exceptions import ChatNotFoundError, DanglingPointerError, StoreError
from agent_chat.infrastructure.logging.logger import logger
from agent_chat.infrastructure.storage.base import Store
from agent_chat.infrastructure.storage.jsonl_log import JsonlAppender, ReplayStats, replay_jsonl
from agent_chat.infrastructure.storage.memory_store import DictStore
from agent_chat.infrastructure.storage.namespace import NamespacedStore

CURRENT_KEY = "current"
CHATS_NAMESPACE = "chats"
MESSAGES_NAMESPACE = "messages"

Clock = Callable[[], int]


def now_ms() -> int:
    return time.time_ns() // 1_000_000


class ChatHistory:
    """会话历史。所有读写都经过命名空间视图，最终落到同一个存储上。"""

    def __init__(
        self,
        current_chat: Chat,
        chats: Store[Any],
        all_messages: Store[Any],
        clock: Clock = now_ms,
    ):
        self._chat = current_chat
        self._chats = chats
        self._all_messages = all_messages
        self._messages = NamespacedStore(all_messages, current_chat.id)
        self._clock = clock
        self.replay_stats: Optional[ReplayStats] = None

    @classmethod
    def open(
        cls,
        filename: str | Path,
        *,
        strict: bool = False,
        fsync: bool = False,
        clock: Clock = now_ms,
    ) -> "ChatHistory":
        """回放日志重建内存状态，再用 JsonlAppender 包装以持久化后续修改。"""

        memory: DictStore[Any] = DictStore()
        stats = replay_jsonl(filename, memory, strict=strict)
        disk = JsonlAppender(filename, memory, fsync=fsync)
        history = cls.from_store(disk, clock=clock)
        history.replay_stats = stats
        return history

    @classmethod
    def from_store(cls, store: Store[Any], *, clock: Clock = now_ms) -> "ChatHistory":
        chats: NamespacedStore[Any] = NamespacedStore(store, CHATS_NAMESPACE)
        all_messages: NamespacedStore[Any] = NamespacedStore(store, MESSAGES_NAMESPACE)
        entry = chats.get(CURRENT_KEY)
        if entry is not None:
            chat = Chat.from_dict(entry)
            logger.info("Loaded current chat", extra={"extra": {"chat_id": chat.id, "msg_id": chat.msg_id}})
        else:
            # 新会话只在内存中创建，第一次 append 时才落盘
            chat = Chat(id=str(clock()))
            logger.info("Created new chat", extra={"extra": {"chat_id": chat.id}})
        return cls(chat, chats, all_messages, clock=clock)

    @property
    def current_chat(self) -> Chat:
        return replace(self._chat)

    def history(self) -> List[ConversationItem]:
        """从 msgID 沿 prevID 回溯，返回从旧到新的对话条目。"""

        items: List[ConversationItem] = []
        seen: set[str] = set()
        msg_id = self._chat.msg_id
        while msg_id is not None:
            if msg_id in seen:
                raise StoreError(
                    code="HISTORY_CYCLE",
                    message=f"message chain of chat {self._chat.id} loops at {msg_id}",
                    chat_id=self._chat.id,
                    msg_id=msg_id,
                )
            seen.add(msg_id)
            msg = self._get_message(msg_id)
            items.append(copy.deepcopy(msg.item))
            msg_id = msg.prev_id
        items.reverse()
        return items

    def gen_msg_id(self) -> str:
        """基于会话创建以来的毫秒数生成消息 id，冲突时追加递增计数。"""

        base = str(max(0, self._clock() - int(self._chat.id)))
        msg_id = base
        i = 0
        while self._messages.get(msg_id) is not None:
            msg_id = f"{base}-{i}"
            i += 1
        return msg_id

    def append(self, items: List[ConversationItem]) -> None:
        if not items:
            return
        prev_id = self._chat.msg_id
        for item in items:
            msg_id = self.gen_msg_id()
            self._messages.put(msg_id, Message(item=copy.deepcopy(item), prev_id=prev_id).to_dict())
            prev_id = msg_id
        self._chat.msg_id = prev_id
        self._save_chat()
        logger.info(
            "Appended messages",
            extra={"extra": {"chat_id": self._chat.id, "count": len(items), "msg_id": prev_id}},
        )

    def delete_last_message(self) -> Optional[Message]:
        """回退最后一条消息。没有消息时返回 None 且不写入任何内容。"""

        if self._chat.msg_id is None:
            return None
        removed_id = self._chat.msg_id
        last = self._get_message(removed_id)
        self._chat.msg_id = last.prev_id
        self._save_chat()
        logger.info(
            "Deleted last message",
            extra={"extra": {"chat_id": self._chat.id, "removed_msg_id": removed_id, "msg_id": last.prev_id}},
        )
        return last

    def new_chat(self) -> str:
        """开始新会话；旧会话的数据保持不变。新会话在第一次 append 时落盘。"""

        chat_id = str(max(self._clock(), int(self._chat.id) + 1))
        self._chat = Chat(id=chat_id)
        self._messages = NamespacedStore(self._all_messages, chat_id)
        logger.info("Created new chat", extra={"extra": {"chat_id": chat_id}})
        return chat_id

    def open_chat(self, chat_id: str) -> Chat:
        """按 id 重新打开已持久化的会话，并设为当前会话。"""

        if chat_id == self._chat.id:
            return self.current_chat
        data = self._chats.get(chat_id) if chat_id != CURRENT_KEY else None
        if not data:
            raise ChatNotFoundError(code="CHAT_NOT_FOUND", message=f"chat not found: {chat_id}", chat_id=chat_id)
        self._chat = Chat.from_dict(data)
        self._messages = NamespacedStore(self._all_messages, self._chat.id)
        self._chats.put(CURRENT_KEY, self._chat.to_dict())
        logger.info("Opened chat", extra={"extra": {"chat_id": self._chat.id, "msg_id": self._chat.msg_id}})
        return self.current_chat

    def _get_message(self, msg_id: str) -> Message:
        data = self._messages.get(msg_id)
        if data is None:
            raise DanglingPointerError(
                code="DANGLING_POINTER",
                message=f"chat {self._chat.id} references missing message {msg_id}",
                chat_id=self._chat.id,
                msg_id=msg_id,
            )
        return Message.from_dict(data)

    def _save_chat(self) -> None:
        self._chats.put(self._chat.id, self._chat.to_dict())
        self._chats.put(CURRENT_KEY, self._chat.to_dict())
