"""
Unified model client with five modes:
- mock       : deterministic offline replies (no external calls)
- anthropic  : calls Anthropic's Messages API
- openai     : calls OpenAI's chat API
- hf/huggingface : calls Hugging Face Inference Providers using an
                   OpenAI-compatible chat completions API.
- ollama     : calls a local Ollama model

Every mode takes a ModelRequest and returns a ModelResponse made of
content blocks plus a stop reason, so the tool loop never sees a
provider-specific shape.
"""

import json
import logging
import re
import threading
from typing import Any, Dict, List, Optional, Tuple

import requests

from .config import Settings
from .models import (
    ModelRequest,
    ModelResponse,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
)

logger = logging.getLogger(__name__)

HF_BASE_URL = "https://router.huggingface.co/v1"

# Markers the mock provider keys on; they appear in the prompts built by
# the orchestrator and the todo agent.
PLANNING_MARKER = "task orchestrator"
SYNTHESIS_MARKER = "consolidated answer"


class QuotaExceededError(Exception):
    pass


class LLMError(RuntimeError):
    """A provider call failed or returned something we cannot use."""


class LLMClient:
    """
    Model RPC collaborator.

    One instance per application (or per test); it holds its own settings
    and call counter, so several clients can live side by side.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings()
        self.provider = (self.settings.provider or "mock").strip().lower()
        self.call_count = 0
        self._lock = threading.Lock()

    @property
    def default_model(self) -> str:
        if self.provider == "anthropic":
            return self.settings.anthropic_model
        if self.provider == "openai":
            return self.settings.openai_model
        if self.provider in ("hf", "huggingface"):
            return self.settings.hf_model
        if self.provider == "ollama":
            return self.settings.ollama_model
        return "mock"

    def create(self, request: ModelRequest) -> ModelResponse:
        prov = self.provider
        logger.debug("LLM call via %s (model=%s, %d turns)", prov, request.model, len(request.messages))

        if prov == "anthropic":
            self._check_quota()
            return self._call_anthropic(request)
        elif prov == "openai":
            self._check_quota()
            return self._call_openai(request)
        elif prov in ("hf", "huggingface"):
            self._check_quota()
            return self._call_huggingface(request)
        elif prov == "ollama":
            return self._call_ollama(request)
        else:
            return _call_mock(request)

    def _check_quota(self) -> None:
        with self._lock:
            if self.call_count >= self.settings.max_llm_calls:
                raise QuotaExceededError(
                    f"LLM usage limit reached ({self.settings.max_llm_calls} calls)."
                )
            self.call_count += 1

    # ----------------------------
    # PROVIDERS
    # ----------------------------

    def _call_anthropic(self, request: ModelRequest) -> ModelResponse:
        if not self.settings.anthropic_api_key:
            raise LLMError("ANTHROPIC_API_KEY not set.")

        from anthropic import Anthropic

        client = Anthropic(api_key=self.settings.anthropic_api_key)

        kwargs: Dict[str, Any] = {
            "model": request.model,
            "max_tokens": request.max_tokens,
            "messages": [t.model_dump(exclude_none=True) for t in request.messages],
        }
        if request.system:
            kwargs["system"] = request.system
        if request.tools:
            kwargs["tools"] = [t.model_dump() for t in request.tools]

        try:
            resp = client.messages.create(**kwargs)
        except Exception as e:
            raise LLMError(f"Error calling Anthropic: {e}") from e

        blocks = [
            b.model_dump() for b in resp.content if b.type in ("text", "tool_use")
        ]
        stop_reason = resp.stop_reason
        if stop_reason not in ("end_turn", "max_tokens", "tool_use", "stop_sequence"):
            stop_reason = "end_turn"
        return ModelResponse.model_validate(
            {"content": blocks, "stop_reason": stop_reason}
        )

    def _call_openai(self, request: ModelRequest) -> ModelResponse:
        if not self.settings.openai_api_key:
            raise LLMError("OPENAI_API_KEY not set.")

        from openai import OpenAI

        client = OpenAI(api_key=self.settings.openai_api_key)
        return _chat_completion(client, request, "OpenAI")

    def _call_huggingface(self, request: ModelRequest) -> ModelResponse:
        if not self.settings.hf_api_key:
            raise LLMError("HF_API_KEY not set.")

        from openai import OpenAI

        client = OpenAI(api_key=self.settings.hf_api_key, base_url=HF_BASE_URL)
        return _chat_completion(client, request, "Hugging Face")

    def _call_ollama(self, request: ModelRequest) -> ModelResponse:
        payload: Dict[str, Any] = {
            "model": request.model,
            "messages": to_chat_messages(request, arguments_as_text=False),
            "stream": False,
            "options": {"num_predict": request.max_tokens},
        }
        if request.tools:
            payload["tools"] = to_chat_tools(request)

        url = f"{self.settings.ollama_host.rstrip('/')}/api/chat"
        try:
            resp = requests.post(url, json=payload, timeout=120)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise LLMError(f"Error calling Ollama: {e}") from e

        data = resp.json()
        message = data.get("message") or {}
        content = message.get("content")
        if not isinstance(content, str):
            raise LLMError("Ollama returned an unexpected response format.")

        blocks: List[Any] = []
        if content:
            blocks.append(TextBlock(text=content))
        for i, call in enumerate(message.get("tool_calls") or []):
            fn = call.get("function", {})
            args, error = _loads_arguments(fn.get("arguments"))
            blocks.append(
                ToolUseBlock(
                    id=call.get("id") or f"call_{i}",
                    name=fn.get("name", ""),
                    input=args,
                    input_error=error,
                )
            )

        if any(isinstance(b, ToolUseBlock) for b in blocks):
            stop_reason = "tool_use"
        elif data.get("done_reason") == "length":
            stop_reason = "max_tokens"
        else:
            stop_reason = "end_turn"
        return ModelResponse(content=blocks, stop_reason=stop_reason)


# ----------------------------
# OPENAI-STYLE CHAT FORMAT
# ----------------------------

def to_chat_messages(request: ModelRequest, arguments_as_text: bool = True) -> List[Dict[str, Any]]:
    """
    Flatten block-based turns into chat-completions messages.

    Tool results become one "tool" message each; assistant tool calls are
    attached to the assistant message. Ollama wants arguments as an object,
    OpenAI as a JSON string.
    """
    messages: List[Dict[str, Any]] = []
    if request.system:
        messages.append({"role": "system", "content": request.system})

    for turn in request.messages:
        if isinstance(turn.content, str):
            messages.append({"role": turn.role, "content": turn.content})
            continue

        texts = [b.text for b in turn.content if isinstance(b, TextBlock)]
        calls = [b for b in turn.content if isinstance(b, ToolUseBlock)]
        results = [b for b in turn.content if isinstance(b, ToolResultBlock)]

        if turn.role == "assistant":
            msg: Dict[str, Any] = {"role": "assistant", "content": "\n".join(texts)}
            if calls:
                msg["tool_calls"] = [
                    {
                        "id": c.id,
                        "type": "function",
                        "function": {
                            "name": c.name,
                            "arguments": json.dumps(c.input) if arguments_as_text else c.input,
                        },
                    }
                    for c in calls
                ]
            messages.append(msg)
            continue

        for r in results:
            content = f"Error: {r.content}" if r.is_error else r.content
            messages.append({"role": "tool", "tool_call_id": r.tool_use_id, "content": content})
        if texts:
            messages.append({"role": "user", "content": "\n".join(texts)})

    return messages


def to_chat_tools(request: ModelRequest) -> List[Dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": t.name,
                "description": t.description,
                "parameters": t.input_schema,
            },
        }
        for t in request.tools or []
    ]


def _loads_arguments(raw: Any) -> Tuple[Dict[str, Any], Optional[str]]:
    """
    Decode tool call arguments into (input, error).

    Never raises; the error travels on the ToolUseBlock and the registry
    turns it into an is_error tool result.
    """
    if isinstance(raw, dict):
        return raw, None
    if raw is None or raw == "":
        return {}, None
    if not isinstance(raw, str):
        return {}, f"arguments must be a JSON object, got {type(raw).__name__}"
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        return {}, f"arguments are not valid JSON: {e}"
    if not isinstance(data, dict):
        return {}, "arguments must be a JSON object"
    return data, None


def _chat_completion(client: Any, request: ModelRequest, label: str) -> ModelResponse:
    kwargs: Dict[str, Any] = {
        "model": request.model,
        "messages": to_chat_messages(request),
        "max_tokens": request.max_tokens,
        "temperature": 0.4,
    }
    if request.tools:
        kwargs["tools"] = to_chat_tools(request)

    try:
        resp = client.chat.completions.create(**kwargs)
    except Exception as e:
        raise LLMError(f"Error calling {label}: {e}") from e

    choice = resp.choices[0]
    message = choice.message

    blocks: List[Any] = []
    if message.content:
        blocks.append(TextBlock(text=str(message.content)))
    for call in message.tool_calls or []:
        args, error = _loads_arguments(call.function.arguments)
        blocks.append(
            ToolUseBlock(id=call.id, name=call.function.name, input=args, input_error=error)
        )

    if message.tool_calls:
        stop_reason = "tool_use"
    elif choice.finish_reason == "length":
        stop_reason = "max_tokens"
    else:
        stop_reason = "end_turn"
    return ModelResponse(content=blocks, stop_reason=stop_reason)


# ----------------------------
# MOCK
# ----------------------------

def _count_tool_results(request: ModelRequest) -> int:
    count = 0
    for turn in request.messages:
        if isinstance(turn.content, list):
            count += sum(1 for b in turn.content if isinstance(b, ToolResultBlock))
    return count


def _last_user_text(request: ModelRequest) -> str:
    for turn in reversed(request.messages):
        if turn.role != "user":
            continue
        if isinstance(turn.content, str):
            return turn.content
        for b in turn.content:
            if isinstance(b, TextBlock):
                return b.text
    return ""


def _call_mock(request: ModelRequest) -> ModelResponse:
    system = request.system.lower()
    tool_names = {t.name for t in request.tools or []}

    if PLANNING_MARKER in system:
        agents = re.findall(r"^- ([\w.-]+)", request.system, flags=re.MULTILINE)
        user_request = _last_user_text(request)
        data = {
            "plan": "Mock plan: hand the request to every available agent.",
            "tasks": [
                {"agentName": name, "prompt": f"{user_request}"} for name in agents
            ],
            "parallel": True,
        }
        text = "```json\n" + json.dumps(data, indent=2) + "\n```"
        return ModelResponse(content=[TextBlock(text=text)])

    if "todo_write" in tool_names:
        seen = _count_tool_results(request)
        steps = ["Clarify the goal", "Draft a first version", "Review and refine"]
        forms = ["Clarifying the goal", "Drafting a first version", "Reviewing and refining"]

        if seen == 0:
            statuses = ["in_progress", "pending", "pending"]
        elif seen == 1:
            statuses = ["completed", "completed", "completed"]
        else:
            return ModelResponse(
                content=[TextBlock(text="Mock run finished: all tasks completed.")]
            )

        todos = [
            {"content": c, "status": s, "activeForm": f}
            for c, s, f in zip(steps, statuses, forms)
        ]
        return ModelResponse(
            content=[
                TextBlock(text="Updating the task list."),
                ToolUseBlock(id=f"toolu_mock_{seen}", name="todo_write", input={"todos": todos}),
            ],
            stop_reason="tool_use",
        )

    if SYNTHESIS_MARKER in _last_user_text(request).lower():
        return ModelResponse(
            content=[TextBlock(text="Mock synthesis: combined the sub-agent results.")]
        )

    first_line = request.system.strip().splitlines()[0] if request.system.strip() else "assistant"
    return ModelResponse(
        content=[TextBlock(text=f"Mock response ({first_line}): {_last_user_text(request)[:80]}")]
    )
