# agent_orchestrator/models.py

"""
Core data models for the agent orchestrator.

These Pydantic models define the shapes of tasks, conversation turns,
tool definitions and sub-agent results that flow between the tool loop,
the orchestrator and the HTTP API.
"""

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

# Allowed task statuses in the task list
TaskStatus = Literal["pending", "in_progress", "completed"]

TASK_STATUSES = ("pending", "in_progress", "completed")

# Why a single model response ended
StopReason = Literal["end_turn", "max_tokens", "tool_use", "stop_sequence"]

# How a tool loop run ended
# - "completed": the model stopped asking for tools
# - "iteration_cap_exceeded": max_iterations ran out while tools were still requested
LoopStatus = Literal["completed", "iteration_cap_exceeded"]

Role = Literal["user", "assistant"]


class Task(BaseModel):
    """
    One entry in the agent's task list.

    `content` is the imperative form ("Write the tests"), `activeForm`
    the progressive form shown while the task runs ("Writing the tests").
    """

    model_config = ConfigDict(populate_by_name=True)

    content: str
    status: TaskStatus = "pending"
    active_form: str = Field(alias="activeForm")


class TaskStats(BaseModel):
    total: int = 0
    pending: int = 0
    in_progress: int = 0
    completed: int = 0
    progress_percent: int = 0


# ----------------------------
# CONVERSATION
# ----------------------------

class TextBlock(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ToolUseBlock(BaseModel):
    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: Dict[str, Any] = Field(default_factory=dict)
    # Set when the provider sent arguments that could not be decoded; never
    # sent back to the model.
    input_error: Optional[str] = Field(default=None, exclude=True)


class ToolResultBlock(BaseModel):
    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: str
    is_error: bool = False


ContentBlock = Annotated[
    Union[TextBlock, ToolUseBlock, ToolResultBlock],
    Field(discriminator="type"),
]


class ConversationTurn(BaseModel):
    role: Role
    content: Union[str, List[ContentBlock]]


class ToolDefinition(BaseModel):
    """
    What the model sees of a tool: its name, what it does and the JSON
    schema its input must follow.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    input_schema: Dict[str, Any]


class ModelRequest(BaseModel):
    model: str
    system: str = ""
    messages: List[ConversationTurn]
    tools: Optional[List[ToolDefinition]] = None
    max_tokens: int = 4096


class ModelResponse(BaseModel):
    content: List[ContentBlock] = Field(default_factory=list)
    stop_reason: StopReason = "end_turn"

    def text(self) -> Optional[str]:
        """First text block of the response, if any."""
        for block in self.content:
            if isinstance(block, TextBlock):
                return block.text
        return None

    def tool_uses(self) -> List[ToolUseBlock]:
        return [b for b in self.content if isinstance(b, ToolUseBlock)]


class LoopResult(BaseModel):
    status: LoopStatus
    text: str = ""
    iterations: int = 0

    # Full conversation, including the initial user turn
    messages: List[ConversationTurn] = Field(default_factory=list)

    @property
    def completed(self) -> bool:
        return self.status == "completed"


# ----------------------------
# SUB-AGENTS + PLANS
# ----------------------------

class SubAgentConfig(BaseModel):
    """
    A named agent persona. `allowed_tools=None` means every registered
    tool; an empty list means a plain one-shot agent.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    role_prompt: str
    description: str = ""
    model_override: Optional[str] = None
    allowed_tools: Optional[List[str]] = None


class PlanStep(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    agent_name: str = Field(alias="agentName")
    prompt: str


class ExecutionPlan(BaseModel):
    plan: str = ""
    tasks: List[PlanStep] = Field(default_factory=list)
    parallel: bool = False


class SubAgentResult(BaseModel):
    agent_name: str
    output: str = ""
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None
