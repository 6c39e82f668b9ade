"""
Tool registry and the task list tools.

A tool is a ToolDefinition (what the model sees), a Pydantic input model
(what the raw input is parsed into) and a handler. The registry parses the
input once, at dispatch, so handlers always receive a typed value.
"""

import json
import logging
from typing import Any, Callable, Dict, Iterable, List, NamedTuple, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .models import ToolDefinition, ToolResultBlock, ToolUseBlock
from .todo_store import TaskListStore, TaskValidationError

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Any]


class RegisteredTool(NamedTuple):
    definition: ToolDefinition
    input_model: Type[BaseModel]
    handler: Handler


def _encode_payload(payload: Any) -> str:
    if isinstance(payload, str):
        return payload
    if isinstance(payload, BaseModel):
        return payload.model_dump_json(by_alias=True)
    return json.dumps(payload, ensure_ascii=False, default=str)


def _format_validation_error(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err["loc"]) or "input"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


class ToolRegistry:
    def __init__(self) -> None:
        self._tools: Dict[str, RegisteredTool] = {}

    def register(
        self,
        name: str,
        description: str,
        input_model: Type[BaseModel],
        handler: Handler,
        input_schema: Optional[Dict[str, Any]] = None,
    ) -> ToolDefinition:
        """
        Add a tool, replacing any tool already registered under `name`.

        The JSON schema shown to the model defaults to the one generated
        from `input_model`.
        """
        definition = ToolDefinition(
            name=name,
            description=description,
            input_schema=input_schema or input_model.model_json_schema(by_alias=True),
        )
        if name in self._tools:
            logger.debug("Replacing tool %s", name)
        self._tools[name] = RegisteredTool(definition, input_model, handler)
        return definition

    def add(self, tool: RegisteredTool) -> None:
        self._tools[tool.definition.name] = tool

    def get(self, name: str) -> Optional[RegisteredTool]:
        return self._tools.get(name)

    def names(self) -> List[str]:
        return list(self._tools)

    def definitions(self) -> List[ToolDefinition]:
        return [t.definition for t in self._tools.values()]

    def subset(self, names: Optional[Iterable[str]] = None) -> "ToolRegistry":
        """New registry holding only `names` (all tools when None)."""
        registry = ToolRegistry()
        if names is None:
            for tool in self._tools.values():
                registry.add(tool)
            return registry

        for name in names:
            tool = self._tools.get(name)
            if tool is None:
                logger.warning("Tool %s is not registered; skipping", name)
                continue
            registry.add(tool)
        return registry

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def dispatch(self, call: ToolUseBlock) -> ToolResultBlock:
        """
        Run one tool invocation and wrap the outcome as a tool result.

        Unknown tools, malformed input and handler exceptions all come back
        as is_error results; nothing is raised to the caller.
        """
        tool = self._tools.get(call.name)
        if tool is None:
            logger.warning("Model requested unknown tool %s", call.name)
            return ToolResultBlock(
                tool_use_id=call.id, content=f"Unknown tool: {call.name}", is_error=True
            )

        if call.input_error:
            logger.warning("Undecodable input for tool %s: %s", call.name, call.input_error)
            return ToolResultBlock(
                tool_use_id=call.id,
                content=f"Invalid input for {call.name}: {call.input_error}",
                is_error=True,
            )

        try:
            args = tool.input_model.model_validate(call.input)
        except ValidationError as e:
            logger.warning("Invalid input for tool %s: %s", call.name, e)
            return ToolResultBlock(
                tool_use_id=call.id,
                content=f"Invalid input for {call.name}: {_format_validation_error(e)}",
                is_error=True,
            )

        try:
            payload = tool.handler(args)
        except Exception as e:
            logger.exception("Tool %s failed", call.name)
            return ToolResultBlock(tool_use_id=call.id, content=str(e) or type(e).__name__, is_error=True)

        return ToolResultBlock(tool_use_id=call.id, content=_encode_payload(payload))


# ----------------------------
# TASK LIST TOOLS
# ----------------------------

TODO_WRITE_DESCRIPTION = (
    "Create or update the task list.\n"
    "\n"
    "Use it to:\n"
    "- break complex work into steps\n"
    "- track progress\n"
    "- move tasks through pending -> in_progress -> completed\n"
    "\n"
    "Rules:\n"
    "- always send the whole list; it replaces the previous one\n"
    "- keep exactly one task in_progress while working\n"
    "- mark a task completed as soon as it is done\n"
    "- write content in imperative form and activeForm in progressive form"
)

TODO_WRITE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "todos": {
            "type": "array",
            "description": "The complete, updated task list",
            "items": {
                "type": "object",
                "properties": {
                    "content": {
                        "type": "string",
                        "description": "What to do, imperative form (e.g. \"Read the file\")",
                        "minLength": 1,
                    },
                    "status": {
                        "type": "string",
                        "enum": ["pending", "in_progress", "completed"],
                        "description": "pending, in_progress (only one at a time) or completed",
                    },
                    "activeForm": {
                        "type": "string",
                        "description": "Progressive form (e.g. \"Reading the file\")",
                        "minLength": 1,
                    },
                },
                "required": ["content", "status", "activeForm"],
            },
        }
    },
    "required": ["todos"],
}


class TodoItemInput(BaseModel):
    # Only shapes are checked here; TaskListStore enforces the list rules
    # so rejected updates come back as typed errors.
    model_config = ConfigDict(populate_by_name=True)

    content: str = ""
    status: str = ""
    active_form: str = Field("", alias="activeForm")


class TodoWriteInput(BaseModel):
    todos: List[TodoItemInput]


class TodoReadInput(BaseModel):
    pass


def make_todo_write(store: TaskListStore) -> Handler:
    def todo_write(args: TodoWriteInput) -> str:
        try:
            stats = store.update([t.model_dump(by_alias=True) for t in args.todos])
        except TaskValidationError as e:
            logger.info("Rejected task list update: %s", e)
            return f"Error: {e}"
        return (
            f"Task list updated. Progress: {stats.completed}/{stats.total} "
            f"({stats.progress_percent}%), {stats.in_progress} in progress, "
            f"{stats.pending} pending."
        )

    return todo_write


def make_todo_read(store: TaskListStore) -> Handler:
    def todo_read(args: TodoReadInput) -> str:
        return store.render()

    return todo_read


def register_todo_tools(registry: ToolRegistry, store: TaskListStore) -> ToolRegistry:
    registry.register(
        "todo_write",
        TODO_WRITE_DESCRIPTION,
        TodoWriteInput,
        make_todo_write(store),
        input_schema=TODO_WRITE_SCHEMA,
    )
    registry.register(
        "todo_read",
        "Show the current task list with its progress.",
        TodoReadInput,
        make_todo_read(store),
        input_schema={"type": "object", "properties": {}},
    )
    return registry
