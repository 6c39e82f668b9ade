"""
Orchestrator: plan with the model, hand the steps to sub-agents, then ask
the model for one consolidated answer.
"""

import asyncio
import logging
import re
from typing import Iterable, List, Optional, Sequence, Union

from pydantic import ValidationError

from .llm_client import LLMClient
from .models import (
    ConversationTurn,
    ExecutionPlan,
    ModelRequest,
    PlanStep,
    SubAgentResult,
)
from .subagents import SubAgentRegistry

logger = logging.getLogger(__name__)

StepLike = Union[PlanStep, dict]

FENCE_RE = re.compile(r"```[A-Za-z0-9_-]*[ \t]*\n?(.*?)```", re.DOTALL)

PLANNING_PROMPT = (
    "You are a task orchestrator.\n"
    "Analyze the user's request and build an execution plan that delegates it "
    "to one or more of the following sub-agents.\n"
    "\n"
    "Available sub-agents:\n"
    "{agents}\n"
    "\n"
    "Reply with the plan as JSON:\n"
    "{{\n"
    '  "plan": "short description of the plan",\n'
    '  "tasks": [\n'
    '    {{"agentName": "agent name", "prompt": "concrete instructions for that agent"}}\n'
    "  ],\n"
    '  "parallel": true or false (whether the tasks can run at the same time)\n'
    "}}\n"
    "\n"
    "Return only the JSON, with no other explanation."
)

SYNTHESIS_PROMPT = (
    "Combine the results of the sub-agents below into a final answer to the "
    "user's request.\n"
    "\n"
    "Original request: {request}\n"
    "\n"
    "Results:\n"
    "{results}\n"
    "\n"
    "Write one consolidated answer."
)


class PlanParseError(ValueError):
    """The planning reply could not be turned into an ExecutionPlan."""

    def __init__(self, message: str, raw: str = ""):
        self.raw = raw
        super().__init__(message)


def strip_code_fences(text: str) -> str:
    """
    Return the body of the first fenced block (```json or bare ```),
    or the trimmed text when there is no fence.
    """
    text = (text or "").strip()
    match = FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    return text


def parse_plan(raw: str) -> ExecutionPlan:
    """
    Parse a planning reply. Any failure is fatal; there is no fallback plan.
    """
    body = strip_code_fences(raw)
    if not body:
        raise PlanParseError("Planning reply was empty.", raw)
    try:
        plan = ExecutionPlan.model_validate_json(body)
    except ValidationError as e:
        raise PlanParseError(f"Planning reply is not a valid plan: {e}", raw) from e
    if not plan.tasks:
        raise PlanParseError("Plan contains no tasks.", raw)
    return plan


def format_results(results: Sequence[SubAgentResult]) -> str:
    blocks = []
    for r in results:
        lines = [f"[{r.agent_name}]", r.output]
        if r.error:
            lines.append(f"Error: {r.error}")
        blocks.append("\n".join(lines))
    return "\n---\n".join(blocks)


def _as_step(task: StepLike) -> PlanStep:
    if isinstance(task, PlanStep):
        return task
    return PlanStep.model_validate(task)


class Orchestrator:
    def __init__(
        self,
        client: LLMClient,
        agents: SubAgentRegistry,
        model: Optional[str] = None,
        max_tokens: int = 4096,
        plan_max_tokens: int = 2048,
        branch_timeout: Optional[float] = None,
    ):
        self.client = client
        self.agents = agents
        self.model = model
        self.max_tokens = max_tokens
        self.plan_max_tokens = plan_max_tokens
        self.branch_timeout = branch_timeout

    async def delegate(self, agent_name: str, prompt: str) -> str:
        """Single delegation; errors (AgentNotFoundError included) propagate."""
        return await asyncio.to_thread(self.agents.execute, agent_name, prompt)

    async def _run_step(self, step: PlanStep) -> SubAgentResult:
        try:
            if self.branch_timeout:
                output = await asyncio.wait_for(
                    self.delegate(step.agent_name, step.prompt), self.branch_timeout
                )
            else:
                output = await self.delegate(step.agent_name, step.prompt)
        except asyncio.TimeoutError:
            logger.warning("[%s] timed out after %ss", step.agent_name, self.branch_timeout)
            return SubAgentResult(
                agent_name=step.agent_name,
                error=f"Timed out after {self.branch_timeout}s",
            )
        except Exception as e:
            logger.warning("[%s] failed: %s", step.agent_name, e)
            return SubAgentResult(agent_name=step.agent_name, error=str(e) or type(e).__name__)
        return SubAgentResult(agent_name=step.agent_name, output=output)

    async def delegate_sequential(self, tasks: Iterable[StepLike]) -> List[SubAgentResult]:
        steps = [_as_step(t) for t in tasks]
        logger.info("Sequential run: %d tasks", len(steps))
        results = []
        for step in steps:
            results.append(await self._run_step(step))
        return results

    async def delegate_parallel(self, tasks: Iterable[StepLike]) -> List[SubAgentResult]:
        """
        Run every task at once and wait for all of them.

        Each branch catches its own failure, so gather never cancels a
        sibling; results come back in input order.
        """
        steps = [_as_step(t) for t in tasks]
        logger.info("Parallel run: %d tasks", len(steps))
        results = await asyncio.gather(*(self._run_step(step) for step in steps))
        logger.info(
            "Parallel run finished: %d ok, %d failed",
            sum(1 for r in results if r.ok),
            sum(1 for r in results if not r.ok),
        )
        return list(results)

    def _one_shot(self, system: str, user: str, max_tokens: int) -> str:
        response = self.client.create(
            ModelRequest(
                model=self.model or self.client.default_model,
                system=system,
                messages=[ConversationTurn(role="user", content=user)],
                max_tokens=max_tokens,
            )
        )
        return response.text() or ""

    async def plan(self, user_request: str) -> ExecutionPlan:
        agents = "\n".join(
            f"- {c.name}" + (f": {c.description}" if c.description else "")
            for c in self.agents.configs()
        )
        raw = await asyncio.to_thread(
            self._one_shot,
            PLANNING_PROMPT.format(agents=agents),
            user_request,
            self.plan_max_tokens,
        )
        logger.info("Plan reply: %s", raw)
        plan = parse_plan(raw)
        logger.info("Plan: %d tasks, parallel=%s", len(plan.tasks), plan.parallel)
        return plan

    async def synthesize(self, user_request: str, results: Sequence[SubAgentResult]) -> str:
        prompt = SYNTHESIS_PROMPT.format(request=user_request, results=format_results(results))
        return await asyncio.to_thread(self._one_shot, "", prompt, self.max_tokens)

    async def orchestrate(self, user_request: str) -> str:
        """
        Plan, execute, synthesize.

        A plan that cannot be parsed and a failing planning or synthesis
        call abort the whole run; sub-agent failures only show up in the
        synthesis input.
        """
        logger.info("Orchestrating: %s", user_request)
        plan = await self.plan(user_request)

        if plan.parallel and len(plan.tasks) > 1:
            results = await self.delegate_parallel(plan.tasks)
        else:
            results = await self.delegate_sequential(plan.tasks)

        final_text = await self.synthesize(user_request, results)
        logger.info("Orchestration finished")
        return final_text
