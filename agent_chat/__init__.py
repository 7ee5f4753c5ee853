"""agent-chat 顶层包。

该包提供一个多 Agent 终端聊天程序及其持久化层：
可组合的键值存储（内存字典、JSONL 追加日志、命名空间）、
启动时的日志回放，以及基于反向链表的会话历史。
"""

from agent_chat.infrastructure.storage.chat_history import ChatHistory

__all__ = ["ChatHistory"]
