"""
HTTP API over the task list, the sub-agents and the orchestrator.

There is no module-level app; serve it with
`uvicorn --factory agent_orchestrator.main:create_app`.
"""

from typing import List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from .agent_loop import run_todo_agent
from .config import Settings, configure_logging, load_settings
from .llm_client import LLMClient, LLMError, QuotaExceededError
from .models import LoopStatus, PlanStep, SubAgentConfig, SubAgentResult, Task, TaskStats
from .orchestrator import Orchestrator, PlanParseError
from .sandbox import SandboxedFileSystem, register_file_tools
from .subagents import AgentNotFoundError, SubAgentRegistry, register_default_agents
from .todo_store import TaskListStore, TaskValidationError
from .tools import ToolRegistry


# ----------------------------
# REQUEST / RESPONSE MODELS
# ----------------------------

class TodoListResponse(BaseModel):
    todos: List[Task]
    stats: TaskStats


class TodoUpdateRequest(BaseModel):
    todos: List[dict] = Field(..., description="The complete new task list")


class DelegateRequest(BaseModel):
    tasks: List[PlanStep] = Field(..., min_length=1)
    parallel: bool = False


class OrchestrateRequest(BaseModel):
    request: str = Field(..., min_length=1, description="Free-form user request")


class OrchestrateResponse(BaseModel):
    result: str


class RunRequest(BaseModel):
    request: str = Field(..., min_length=1)
    max_iterations: Optional[int] = Field(None, ge=0)


class RunResponse(BaseModel):
    status: LoopStatus
    text: str
    iterations: int
    todos: List[Task]
    stats: TaskStats


def create_app(
    settings: Optional[Settings] = None,
    client: Optional[LLMClient] = None,
    store: Optional[TaskListStore] = None,
) -> FastAPI:
    """
    Build the API with its collaborators.

    Everything lives on app.state, so two apps (or two tests) never share
    a client, a task list or a sub-agent registry.
    """
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    client = client or LLMClient(settings)
    store = store or TaskListStore(settings.todo_file)

    file_tools = register_file_tools(ToolRegistry(), SandboxedFileSystem(settings.workspace_dir))
    agents = register_default_agents(
        SubAgentRegistry(
            client,
            tools=file_tools,
            max_tokens=settings.max_tokens,
            max_iterations=settings.max_tool_iterations,
        )
    )

    app = FastAPI(title="Agent Orchestrator")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # ok for dev / demo; tighten for production if needed
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.client = client
    app.state.store = store
    app.state.file_tools = file_tools
    app.state.agents = agents
    app.state.orchestrator = Orchestrator(
        client,
        agents,
        max_tokens=settings.max_tokens,
        branch_timeout=settings.branch_timeout,
    )

    # ----------------------------
    # TASK LIST
    # ----------------------------

    @app.get("/api/todos", response_model=TodoListResponse)
    def api_get_todos(request: Request) -> TodoListResponse:
        store: TaskListStore = request.app.state.store
        return TodoListResponse(todos=store.get_all(), stats=store.get_stats())

    @app.put("/api/todos", response_model=TodoListResponse)
    def api_update_todos(req: TodoUpdateRequest, request: Request) -> TodoListResponse:
        """
        Replace the whole task list. A rejected list leaves the stored one
        untouched.
        """
        store: TaskListStore = request.app.state.store
        try:
            stats = store.update(req.todos)
        except TaskValidationError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return TodoListResponse(todos=store.get_all(), stats=stats)

    @app.delete("/api/todos", response_model=TodoListResponse)
    def api_clear_todos(request: Request) -> TodoListResponse:
        store: TaskListStore = request.app.state.store
        store.clear()
        return TodoListResponse(todos=[], stats=store.get_stats())

    # ----------------------------
    # SUB-AGENTS
    # ----------------------------

    @app.get("/api/agents", response_model=List[SubAgentConfig])
    def api_list_agents(request: Request) -> List[SubAgentConfig]:
        return request.app.state.agents.configs()

    @app.get("/api/agents/{name}", response_model=SubAgentConfig)
    def api_get_agent(name: str, request: Request) -> SubAgentConfig:
        try:
            return request.app.state.agents.get(name)
        except AgentNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))

    @app.post("/api/agents", response_model=SubAgentConfig)
    def api_register_agent(config: SubAgentConfig, request: Request) -> SubAgentConfig:
        request.app.state.agents.register(config)
        return config

    @app.post("/api/delegate", response_model=List[SubAgentResult])
    async def api_delegate(req: DelegateRequest, request: Request) -> List[SubAgentResult]:
        """Branch failures, quota included, come back as per-task errors."""
        orchestrator: Orchestrator = request.app.state.orchestrator
        if req.parallel:
            return await orchestrator.delegate_parallel(req.tasks)
        return await orchestrator.delegate_sequential(req.tasks)

    @app.post("/api/orchestrate", response_model=OrchestrateResponse)
    async def api_orchestrate(req: OrchestrateRequest, request: Request) -> OrchestrateResponse:
        """
        1) The model plans which sub-agents handle the request.
        2) The sub-agents run, in parallel when the plan allows it.
        3) The model merges their results into one answer.
        """
        orchestrator: Orchestrator = request.app.state.orchestrator

        cleaned = req.request.strip()
        if not cleaned:
            raise HTTPException(status_code=400, detail="Request cannot be empty.")

        try:
            result = await orchestrator.orchestrate(cleaned)
        except QuotaExceededError as e:
            raise HTTPException(status_code=429, detail=str(e))
        except PlanParseError as e:
            raise HTTPException(status_code=502, detail=str(e))
        except LLMError as e:
            # Pass through clear LLM / config errors (missing keys, Ollama down, etc.)
            raise HTTPException(status_code=500, detail=str(e))
        return OrchestrateResponse(result=result)

    # ----------------------------
    # SINGLE AGENT WITH TASK LIST
    # ----------------------------

    @app.post("/api/run", response_model=RunResponse)
    def api_run(req: RunRequest, request: Request) -> RunResponse:
        state = request.app.state
        max_iterations = req.max_iterations
        if max_iterations is None:
            max_iterations = state.settings.max_tool_iterations

        try:
            result = run_todo_agent(
                state.client,
                req.request.strip(),
                state.store,
                max_iterations=max_iterations,
                max_tokens=state.settings.max_tokens,
                # A copy, so todo_write/todo_read never leak into the sub-agents' tools.
                registry=state.file_tools.subset(),
            )
        except QuotaExceededError as e:
            raise HTTPException(status_code=429, detail=str(e))
        except LLMError as e:
            raise HTTPException(status_code=500, detail=str(e))

        return RunResponse(
            status=result.status,
            text=result.text,
            iterations=result.iterations,
            todos=state.store.get_all(),
            stats=state.store.get_stats(),
        )

    return app
