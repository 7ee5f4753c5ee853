"""Agent 定义与默认 Agent 列表。

每个 Agent 由名称、系统提示词以及可转交的下游 Agent 组成。
Triage Agent 根据问题把对话转交给对应的 Tutor。
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence


@dataclass
class AgentSpec:
    name: str
    instructions: str
    handoffs: List["AgentSpec"] = field(default_factory=list)

    @property
    def handoff_tool_name(self) -> str:
        """转交到本 Agent 时使用的工具名，例如 transfer_to_math_tutor。"""

        slug = re.sub(r"[^a-z0-9]+", "_", self.name.lower()).strip("_")
        return f"transfer_to_{slug}"


def default_agents() -> List[AgentSpec]:
    """返回默认 Agent 列表，最后一个为入口 Agent。"""

    history_tutor = AgentSpec(
        name="History Tutor",
        instructions=(
            "You provide assistance with historical queries. Explain important events and context clearly. "
            "Refuse to help with non-history question"
        ),
    )
    math_tutor = AgentSpec(
        name="Math Tutor",
        instructions=(
            "You provide help with math problems. Explain your reasoning at each step and include examples. "
            "Refuse to help with non-math questions"
        ),
    )
    triage = AgentSpec(
        name="Triage Agent",
        instructions="You determine which agent to use based on the user's question",
        handoffs=[history_tutor, math_tutor],
    )
    return [history_tutor, math_tutor, triage]


def find_agent(agents: Sequence[AgentSpec], name: str) -> Optional[AgentSpec]:
    key = name.strip().lower()
    for agent in agents:
        if agent.name.lower() == key:
            return agent
    return None
