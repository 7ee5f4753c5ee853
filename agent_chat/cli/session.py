"""终端会话：把会话历史、Agent 运行器与斜杠命令组合在一起。

命令处理只依赖 ChatSession，不依赖终端，便于测试。
"""

from dataclasses import dataclass, field
from typing import Any, List

import yaml
from rich.console import Console

from agent_chat.agents.definitions import AgentSpec
from agent_chat.agents.runner import AgentRunner, ConversationItem, user_item
from agent_chat.domain.conversation import ConversationHistory
from agent_chat.domain.exceptions import ChatNotFoundError

HELP_LINES = [
    "Available commands:",
    "/help - Show this help message",
    "/agent - List available agents",
    "/agent <number> - Select an agent",
    "/del-last-msg - Delete the last message",
    "/clear - Start a new chat",
    "/chat - Show the current chat id",
    "/open <chat id> - Reopen a previous chat",
]


def to_yaml(data: Any) -> str:
    return yaml.safe_dump(data, allow_unicode=True, sort_keys=False, default_flow_style=False)


@dataclass
class ChatSession:
    history: ConversationHistory
    runner: AgentRunner
    agents: List[AgentSpec]
    agent: AgentSpec
    console: Console = field(default_factory=Console)

    @property
    def prompt(self) -> str:
        return f"{self.agent.name}> "

    def print_yaml(self, data: Any) -> None:
        self.console.print(to_yaml(data), markup=False, highlight=False, end="")

    def run_turn(self, text: str) -> List[ConversationItem]:
        """追加用户输入，调用 Agent，并把新条目写入历史。"""

        self.history.append([user_item(text.strip())])
        before = self.history.history()
        result = self.runner.run(self.agent, before)
        if result.new_items:
            self.history.append(result.new_items)
        return result.new_items


def handle_command(user_input: str, session: ChatSession) -> None:
    """处理以 / 开头的命令。"""

    out = session.console
    command, *args = user_input[1:].strip().split() or [""]
    if command == "help":
        for line in HELP_LINES:
            out.print(line, markup=False)
    elif command == "agent":
        if not args:
            out.print("Available agents:", markup=False)
            for i, agent in enumerate(session.agents):
                out.print(f"{i}: {agent.name}", markup=False)
            out.print(f"Current agent is: {session.agent.name}", markup=False)
            return
        try:
            index = int(args[0])
        except ValueError:
            index = -1
        if 0 <= index < len(session.agents):
            session.agent = session.agents[index]
            out.print(f"Switched to agent: {session.agent.name}", markup=False)
        else:
            out.print("Invalid agent number.", markup=False)
    elif command == "del-last-msg":
        deleted = session.history.delete_last_message()
        if deleted is None:
            out.print("No message to delete.", markup=False)
            return
        out.print("Deleted last message:", markup=False)
        session.print_yaml(deleted.item)
        out.print("New history:", markup=False)
        session.print_yaml(session.history.history())
    elif command == "clear":
        chat_id = session.history.new_chat()
        out.print(f"New chat (id:{chat_id}) started.", markup=False)
    elif command == "chat":
        out.print(f"Current chat id: {session.history.current_chat.id}", markup=False)
    elif command == "open":
        if not args:
            out.print("Usage: /open <chat id>", markup=False)
            return
        try:
            chat = session.history.open_chat(args[0])
        except ChatNotFoundError:
            out.print(f"Chat not found: {args[0]}", markup=False)
            return
        out.print(f"Opened chat (id:{chat.id}).", markup=False)
        session.print_yaml(session.history.history())
    else:
        out.print(f"Unknown command: {command}", markup=False)
