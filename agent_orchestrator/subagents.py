"""
Named sub-agents.

Each sub-agent is a role prompt plus an optional model override and tool
subset. Every execution starts a fresh conversation that holds only the
delegated prompt; nothing is shared between agents or between calls.
"""

import logging
from typing import Dict, List, Optional

from .agent_loop import DEFAULT_MAX_ITERATIONS, ToolInvocationLoop
from .llm_client import LLMClient
from .models import ConversationTurn, ModelRequest, SubAgentConfig
from .tools import ToolRegistry

logger = logging.getLogger(__name__)


class AgentNotFoundError(KeyError):
    def __init__(self, agent_name: str):
        self.agent_name = agent_name
        super().__init__(agent_name)

    def __str__(self) -> str:
        return f"Sub-agent not found: {self.agent_name}"


DEFAULT_AGENTS: List[SubAgentConfig] = [
    SubAgentConfig(
        name="writer",
        description="Writes engaging, readable content",
        role_prompt=(
            "You are a creative writer.\n"
            "Produce engaging, easy-to-read content on the given topic.\n"
            "Use concrete examples and write so the reader stays with you."
        ),
        allowed_tools=[],
    ),
    SubAgentConfig(
        name="analyst",
        description="Analyzes data, trends and trade-offs",
        role_prompt=(
            "You are a data analyst.\n"
            "Analyze the given topic logically and objectively.\n"
            "Point out trends, patterns and trade-offs, and back claims with reasoning."
        ),
        allowed_tools=[],
    ),
    SubAgentConfig(
        name="reviewer",
        description="Reviews content and suggests improvements",
        role_prompt=(
            "You are a critical reviewer.\n"
            "Evaluate the given content or topic and list its strengths, weaknesses "
            "and concrete suggestions for improvement."
        ),
        allowed_tools=[],
    ),
    SubAgentConfig(
        name="summarizer",
        description="Condenses material into a short summary",
        role_prompt=(
            "You are a summarization specialist.\n"
            "Condense the given material into a short, accurate summary that keeps "
            "the key points."
        ),
        allowed_tools=[],
    ),
]


class SubAgentRegistry:
    def __init__(
        self,
        client: LLMClient,
        tools: Optional[ToolRegistry] = None,
        max_tokens: int = 4096,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
    ):
        self.client = client
        self.tools = tools
        self.max_tokens = max_tokens
        self.max_iterations = max_iterations
        self._agents: Dict[str, SubAgentConfig] = {}

    def register(self, config: SubAgentConfig) -> None:
        if config.name in self._agents:
            # Re-registering moves nothing: dict keeps the first insertion position.
            logger.info("Replacing sub-agent %s", config.name)
        else:
            logger.info("Registered sub-agent %s", config.name)
        self._agents[config.name] = config

    def get(self, agent_name: str) -> SubAgentConfig:
        config = self._agents.get(agent_name)
        if config is None:
            raise AgentNotFoundError(agent_name)
        return config

    def list(self) -> List[str]:
        return list(self._agents)

    def configs(self) -> List[SubAgentConfig]:
        return list(self._agents.values())

    def __contains__(self, agent_name: object) -> bool:
        return agent_name in self._agents

    def __len__(self) -> int:
        return len(self._agents)

    def tools_for(self, config: SubAgentConfig) -> Optional[ToolRegistry]:
        """Tool subset an agent may use, or None for a plain one-shot agent."""
        if self.tools is None or not len(self.tools):
            return None
        subset = self.tools.subset(config.allowed_tools)
        return subset if len(subset) else None

    def execute(self, agent_name: str, prompt: str) -> str:
        """
        Run `prompt` through one agent and return its text answer.

        Raises AgentNotFoundError for an unknown name. Model errors propagate.
        """
        config = self.get(agent_name)
        model = config.model_override or self.client.default_model
        logger.info("[%s] starting: %s", config.name, prompt[:100])

        tools = self.tools_for(config)
        if tools is not None:
            loop = ToolInvocationLoop(
                self.client,
                tools,
                system_prompt=config.role_prompt,
                model=model,
                max_iterations=self.max_iterations,
                max_tokens=self.max_tokens,
                name=config.name,
            )
            result = loop.run(prompt)
            if not result.completed:
                logger.warning("[%s] hit the tool iteration cap", config.name)
            output = result.text
        else:
            response = self.client.create(
                ModelRequest(
                    model=model,
                    system=config.role_prompt,
                    messages=[ConversationTurn(role="user", content=prompt)],
                    max_tokens=self.max_tokens,
                )
            )
            output = response.text() or ""

        logger.info("[%s] finished (%d chars)", config.name, len(output))
        return output


def register_default_agents(registry: SubAgentRegistry) -> SubAgentRegistry:
    for config in DEFAULT_AGENTS:
        registry.register(config)
    return registry
