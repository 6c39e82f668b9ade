"""Shared fixtures: a scripted model client and isolated settings."""

from __future__ import annotations

import threading
import time
from typing import Callable, List, Optional, Union

import pytest

from agent_orchestrator.config import Settings
from agent_orchestrator.models import (
    ModelRequest,
    ModelResponse,
    TextBlock,
    ToolUseBlock,
)

Reply = Union[ModelResponse, Callable[[ModelRequest], ModelResponse], Exception]


def text_response(text: str) -> ModelResponse:
    return ModelResponse(content=[TextBlock(text=text)], stop_reason="end_turn")


def tool_response(*calls: ToolUseBlock, text: Optional[str] = None) -> ModelResponse:
    content: list = [TextBlock(text=text)] if text else []
    content.extend(calls)
    return ModelResponse(content=content, stop_reason="tool_use")


class ScriptedClient:
    """
    Stands in for LLMClient.

    Replies are consumed in order; a callable reply is called with the
    request, an exception reply is raised. Every request is recorded.
    """

    default_model = "test-model"

    def __init__(self, replies: Optional[List[Reply]] = None):
        self.replies = list(replies or [])
        self.requests: List[ModelRequest] = []
        self._lock = threading.Lock()

    def create(self, request: ModelRequest) -> ModelResponse:
        with self._lock:
            self.requests.append(request)
            if not self.replies:
                raise AssertionError("ScriptedClient ran out of replies")
            reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(request)
        return reply


class RoutingClient:
    """
    Answers by system prompt, for concurrent tests where call order is
    not fixed. `delays` maps a system prompt to seconds to sleep first.
    """

    default_model = "test-model"

    def __init__(self, answers: dict, delays: Optional[dict] = None):
        self.answers = answers
        self.delays = delays or {}
        self.requests: List[ModelRequest] = []
        self.finished: List[str] = []
        self._lock = threading.Lock()

    def create(self, request: ModelRequest) -> ModelResponse:
        with self._lock:
            self.requests.append(request)
        time.sleep(self.delays.get(request.system, 0))
        answer = self.answers[request.system]
        with self._lock:
            self.finished.append(request.system)
        if isinstance(answer, Exception):
            raise answer
        return text_response(answer)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        provider="mock",
        todo_file=str(tmp_path / "todos.json"),
        workspace_dir=str(tmp_path / "workspace"),
        log_level="DEBUG",
    )


@pytest.fixture
def todo_file(tmp_path):
    return tmp_path / "todos.json"
