"""
Tool invocation loop: model proposes tool calls, we run them, we send the
results back, until the model answers with plain text.
"""

import logging
from typing import List, Optional

from .llm_client import LLMClient
from .models import ConversationTurn, LoopResult, ModelRequest, ModelResponse
from .todo_store import TaskListStore
from .tools import ToolRegistry, register_todo_tools

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 30

TODO_AGENT_PROMPT = (
    "You are a capable assistant.\n"
    "When you receive a complex request, always use the todo_write tool to:\n"
    "1. break the work into small steps\n"
    "2. track the progress of each step\n"
    "3. update the status as soon as a step is done\n"
    "\n"
    "Rules:\n"
    "- only one task may be \"in_progress\" at a time\n"
    "- mark a task \"completed\" right after finishing it\n"
    "- finish the current task before starting a new one"
)


class ToolInvocationLoop:
    """
    Drives one conversation through repeated tool use.

    The loop owns its conversation; tool calls proposed in one response
    run one after the other, in the order the model listed them, since a
    later call may depend on state changed by an earlier one.
    """

    def __init__(
        self,
        client: LLMClient,
        registry: ToolRegistry,
        system_prompt: str = "",
        model: Optional[str] = None,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        max_tokens: int = 4096,
        name: str = "agent",
    ):
        if max_iterations < 0:
            raise ValueError("max_iterations must be >= 0")
        self.client = client
        self.registry = registry
        self.system_prompt = system_prompt
        self.model = model
        self.max_iterations = max_iterations
        self.max_tokens = max_tokens
        self.name = name

    def _request(self, messages: List[ConversationTurn]) -> ModelResponse:
        request = ModelRequest(
            model=self.model or self.client.default_model,
            system=self.system_prompt,
            # Snapshot so later appends don't leak into a request a client kept.
            messages=list(messages),
            tools=self.registry.definitions() or None,
            max_tokens=self.max_tokens,
        )
        return self.client.create(request)

    def run(self, user_message: str) -> LoopResult:
        messages: List[ConversationTurn] = [ConversationTurn(role="user", content=user_message)]
        iterations = 0

        response = self._request(messages)

        while response.stop_reason == "tool_use":
            calls = response.tool_uses()
            if not calls:
                logger.warning("[%s] stop reason is tool_use but no tool calls were sent", self.name)
                break

            if iterations >= self.max_iterations:
                messages.append(ConversationTurn(role="assistant", content=response.content))
                logger.warning(
                    "[%s] stopped after %d tool iterations with tool calls still pending",
                    self.name,
                    iterations,
                )
                return LoopResult(
                    status="iteration_cap_exceeded",
                    text=response.text() or "",
                    iterations=iterations,
                    messages=messages,
                )

            iterations += 1
            messages.append(ConversationTurn(role="assistant", content=response.content))

            text = response.text()
            if text:
                logger.info("[%s] %s", self.name, text)

            results = []
            for call in calls:
                logger.info("[%s] tool %s", self.name, call.name)
                result = self.registry.dispatch(call)
                if result.is_error:
                    logger.info("[%s] tool %s returned an error: %s", self.name, call.name, result.content)
                results.append(result)

            messages.append(ConversationTurn(role="user", content=results))
            response = self._request(messages)

        messages.append(ConversationTurn(role="assistant", content=response.content))
        final_text = response.text()
        if final_text is None:
            logger.info("[%s] final response had no text", self.name)

        logger.info("[%s] done after %d tool iterations", self.name, iterations)
        return LoopResult(
            status="completed",
            text=final_text or "",
            iterations=iterations,
            messages=messages,
        )


def run_todo_agent(
    client: LLMClient,
    user_request: str,
    store: TaskListStore,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
    max_tokens: int = 4096,
    registry: Optional[ToolRegistry] = None,
) -> LoopResult:
    """
    Run a single agent that plans and tracks its work with todo_write.

    Extra tools (for example the sandboxed file tools) can be passed in
    `registry`; the task list tools are added to it.
    """
    if registry is None:
        registry = ToolRegistry()
    register_todo_tools(registry, store)
    loop = ToolInvocationLoop(
        client,
        registry,
        system_prompt=TODO_AGENT_PROMPT,
        max_iterations=max_iterations,
        max_tokens=max_tokens,
        name="todo-agent",
    )
    logger.info("Todo agent request: %s", user_request)
    result = loop.run(user_request)
    store.display()
    return result
