"""
Command line entry point.

    python -m agent_orchestrator "Write a short report on remote work"
    python -m agent_orchestrator --mode todo "Build a small web app"

Exit codes: 0 success, 1 fatal error, 2 tool loop hit its iteration cap.
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from .agent_loop import run_todo_agent
from .config import configure_logging, load_settings
from .llm_client import LLMClient
from .orchestrator import Orchestrator
from .sandbox import SandboxedFileSystem, register_file_tools
from .subagents import SubAgentRegistry, register_default_agents
from .todo_store import TaskListStore
from .tools import ToolRegistry

logger = logging.getLogger(__name__)

DEFAULT_REQUEST = (
    "Explain cloud computing in detail, review the explanation, "
    "and finish with a short summary."
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agent-orchestrator",
        description="Drive sub-agents or a task-tracking agent from the command line.",
    )
    parser.add_argument("request", nargs="*", help="free-text request")
    parser.add_argument(
        "--mode",
        choices=("orchestrate", "todo"),
        default="orchestrate",
        help="orchestrate sub-agents (default) or run one agent with a task list",
    )
    parser.add_argument("--provider", help="override LLM_PROVIDER")
    parser.add_argument("--max-iterations", type=int, help="override MAX_TOOL_ITERATIONS")
    parser.add_argument("--env-file", help="read settings from this .env file")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    settings = load_settings(args.env_file)
    if args.provider:
        settings = settings.model_copy(update={"provider": args.provider.lower()})
    if args.max_iterations is not None:
        settings = settings.model_copy(update={"max_tool_iterations": args.max_iterations})
    configure_logging(settings.log_level)

    request = " ".join(args.request).strip() or DEFAULT_REQUEST
    client = LLMClient(settings)

    try:
        if args.mode == "todo":
            tools = register_file_tools(ToolRegistry(), SandboxedFileSystem(settings.workspace_dir))
            result = run_todo_agent(
                client,
                request,
                TaskListStore(settings.todo_file),
                max_iterations=settings.max_tool_iterations,
                max_tokens=settings.max_tokens,
                registry=tools,
            )
            print(result.text)
            if not result.completed:
                logger.error("Stopped after %d iterations without a final answer", result.iterations)
                return 2
            return 0

        agents = register_default_agents(
            SubAgentRegistry(client, max_tokens=settings.max_tokens)
        )
        orchestrator = Orchestrator(
            client,
            agents,
            max_tokens=settings.max_tokens,
            branch_timeout=settings.branch_timeout,
        )
        print(asyncio.run(orchestrator.orchestrate(request)))
        return 0
    except Exception:
        logger.exception("Run failed")
        return 1


if __name__ == "__main__":
    sys.exit(main())
