"""Tool-driven agents, sub-agent delegation and a validated task list."""

from .agent_loop import ToolInvocationLoop, run_todo_agent
from .llm_client import LLMClient
from .orchestrator import Orchestrator
from .subagents import SubAgentRegistry
from .todo_store import TaskListStore
from .tools import ToolRegistry

__all__ = [
    "LLMClient",
    "Orchestrator",
    "SubAgentRegistry",
    "TaskListStore",
    "ToolInvocationLoop",
    "ToolRegistry",
    "run_todo_agent",
]
