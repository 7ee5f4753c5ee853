"""agent-chat 命令行入口。"""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape

from agent_chat.agents.definitions import default_agents, find_agent
from agent_chat.agents.runner import AgentRunner
from agent_chat.cli.session import ChatSession, handle_command
from agent_chat.config.settings import settings
from agent_chat.domain.exceptions import BusinessError, StoreError
from agent_chat.infrastructure.logging.logger import logger
from agent_chat.infrastructure.storage.chat_history import ChatHistory
from agent_chat.infrastructure.storage.jsonl_log import ReplayStats
from agent_chat.providers import create_provider

app = typer.Typer(
    name="agent-chat",
    help="Multi-agent terminal chat with a replayable JSONL history",
    no_args_is_help=False,
)

_console = Console()


def report_replay(stats: Optional[ReplayStats], history_file: Path, console: Console) -> None:
    """把回放中被跳过的行告知终端用户，详细信息在日志文件中。"""

    if stats is None:
        return
    log_file = Path(settings.log_dir) / "agent.log"
    if stats.skipped_malformed:
        console.print(
            f"[yellow]Warning:[/yellow] skipped {stats.skipped_malformed} malformed line(s) "
            f"while replaying {escape(str(history_file))}, see {escape(str(log_file))} for details"
        )
    if stats.truncated_tail:
        console.print(
            f"[yellow]Warning:[/yellow] ignored an incomplete write left by an earlier crash "
            f"in {escape(str(history_file))}"
        )


def build_session(
    history_file: Path,
    agent_name: Optional[str] = None,
    provider_name: Optional[str] = None,
    console: Optional[Console] = None,
) -> ChatSession:
    """回放历史并组装终端会话。回放失败或会话记录损坏时抛出 StoreError。"""

    console = console or _console
    history = ChatHistory.open(history_file, strict=settings.replay_strict)
    report_replay(history.replay_stats, history_file, console)
    agents = default_agents()
    agent = find_agent(agents, agent_name or settings.default_agent) or agents[-1]
    runner = AgentRunner(
        create_provider(provider_name),
        model=settings.default_model,
        max_turns=settings.max_agent_turns,
    )
    return ChatSession(history=history, runner=runner, agents=agents, agent=agent, console=console)


def repl(session: ChatSession) -> None:
    console = session.console
    session.print_yaml(session.history.history())
    while True:
        try:
            user_input = console.input(session.prompt, markup=False)
        except (EOFError, KeyboardInterrupt):
            console.print()
            return
        if not user_input.strip():
            continue
        try:
            if user_input.startswith("/"):
                handle_command(user_input, session)
                continue
            session.print_yaml([{"type": "message", "role": "user", "content": user_input.strip()}])
            new_items = session.run_turn(user_input)
            if new_items:
                session.print_yaml(new_items)
        except BusinessError as e:
            # 中止本轮对话，已落盘的内容保持不变
            logger.error("Turn aborted", extra={"extra": {"code": e.code, "error": e.message}})
            console.print(f"[red]Error ({e.code}):[/red] {escape(e.message)}")


@app.command()
def chat(
    history_file: Optional[Path] = typer.Option(
        None,
        "--history-file",
        "-f",
        help="JSONL history log (defaults to settings.history_file)",
    ),
    agent: Optional[str] = typer.Option(None, "--agent", "-a", help="Agent to start with"),
    provider: Optional[str] = typer.Option(None, "--provider", "-p", help="openai or openrouter"),
) -> None:
    """Start an interactive chat session."""

    path = history_file or Path(settings.history_file)
    try:
        session = build_session(path, agent_name=agent, provider_name=provider)
    except StoreError as e:
        _console.print(f"[red]Failed to replay {path}:[/red] {escape(e.message)}")
        raise typer.Exit(code=1)
    except KeyError as e:
        _console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(code=2)
    repl(session)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
