"""
Runtime configuration.

Values come from the environment (optionally a .env file). Nothing here is
read at import time: callers build a Settings object with load_settings()
and pass it to the components that need it.
"""

import logging
import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class Settings(BaseModel):
    provider: str = "mock"

    anthropic_api_key: Optional[str] = None
    anthropic_model: str = "claude-3-5-sonnet-20241022"

    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4.1-mini"

    hf_api_key: Optional[str] = None
    hf_model: str = "openai/gpt-oss-20b"

    ollama_host: str = "http://localhost:11434"
    ollama_model: str = "llama3.2"

    max_llm_calls: int = 1000
    max_tokens: int = 4096
    max_tool_iterations: int = 30

    # None disables persistence of the task list
    todo_file: Optional[str] = ".todos.json"
    workspace_dir: str = "workspace"
    branch_timeout: Optional[float] = None

    log_level: str = "INFO"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def load_settings(env_file: Optional[str] = None) -> Settings:
    """
    Build Settings from the environment.

    Unset variables keep the model defaults; TODO_FILE="" turns
    persistence off.
    """
    load_dotenv(env_file)

    defaults = Settings()
    todo_file = os.getenv("TODO_FILE", defaults.todo_file)
    branch_timeout = os.getenv("BRANCH_TIMEOUT")

    return Settings(
        provider=os.getenv("LLM_PROVIDER", defaults.provider).strip().lower(),
        anthropic_api_key=os.getenv("ANTHROPIC_API_KEY"),
        anthropic_model=os.getenv("ANTHROPIC_MODEL", defaults.anthropic_model),
        openai_api_key=os.getenv("OPENAI_API_KEY"),
        openai_model=os.getenv("OPENAI_MODEL", defaults.openai_model),
        hf_api_key=os.getenv("HF_API_KEY"),
        hf_model=os.getenv("HF_MODEL", defaults.hf_model),
        ollama_host=os.getenv("OLLAMA_HOST", defaults.ollama_host),
        ollama_model=os.getenv("OLLAMA_MODEL", defaults.ollama_model),
        max_llm_calls=_env_int("MAX_LLM_CALLS", defaults.max_llm_calls),
        max_tokens=_env_int("MAX_TOKENS", defaults.max_tokens),
        max_tool_iterations=_env_int("MAX_TOOL_ITERATIONS", defaults.max_tool_iterations),
        todo_file=todo_file or None,
        workspace_dir=os.getenv("WORKSPACE_DIR", defaults.workspace_dir),
        branch_timeout=float(branch_timeout) if branch_timeout else None,
        log_level=os.getenv("LOG_LEVEL", defaults.log_level).upper(),
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)
