"""
Task list state with strict invariants.

The whole list is replaced on every update; a candidate list is validated
end to end before any of it is accepted, so a failed update never leaves
a half-applied list behind.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, Union

from .models import TASK_STATUSES, Task, TaskStats, TaskStatus

logger = logging.getLogger(__name__)

TaskLike = Union[Task, Mapping[str, Any]]


class TaskValidationError(ValueError):
    """Base class for rejected task list updates."""


class EmptyListError(TaskValidationError):
    def __init__(self) -> None:
        super().__init__("Task list is empty.")


class MultipleInProgressError(TaskValidationError):
    def __init__(self, count: int) -> None:
        self.count = count
        super().__init__(f"Only one task may be in_progress (found {count}).")


class MissingFieldError(TaskValidationError):
    def __init__(self, index: int, field: str) -> None:
        self.index = index
        self.field = field
        super().__init__(f"Task {index}: {field} is empty.")


class InvalidStatusError(TaskValidationError):
    def __init__(self, index: int, value: Any) -> None:
        self.index = index
        self.value = value
        super().__init__(f"Task {index}: invalid status {value!r}.")


def _field(item: TaskLike, name: str, alias: Optional[str] = None) -> Any:
    if isinstance(item, Task):
        return getattr(item, name)
    if alias and alias in item:
        return item[alias]
    return item.get(name)


def _is_blank(value: Any) -> bool:
    return not isinstance(value, str) or not value.strip()


def validate_tasks(candidates: List[TaskLike]) -> List[Task]:
    """
    Check a candidate list and build Task models from it.

    Rules run in a fixed order and the first failure wins:
    empty list, more than one in_progress, blank content/activeForm,
    unknown status. Indexes in errors are 1-based.
    """
    if not candidates:
        raise EmptyListError()

    in_progress = sum(1 for t in candidates if _field(t, "status") == "in_progress")
    if in_progress > 1:
        raise MultipleInProgressError(in_progress)

    for index, item in enumerate(candidates, start=1):
        if _is_blank(_field(item, "content")):
            raise MissingFieldError(index, "content")
        if _is_blank(_field(item, "active_form", alias="activeForm")):
            raise MissingFieldError(index, "activeForm")

    for index, item in enumerate(candidates, start=1):
        status = _field(item, "status")
        if status not in TASK_STATUSES:
            raise InvalidStatusError(index, status)

    return [
        Task(
            content=_field(item, "content"),
            status=_field(item, "status"),
            activeForm=_field(item, "active_form", alias="activeForm"),
        )
        for item in candidates
    ]


def compute_stats(tasks: Iterable[Task]) -> TaskStats:
    tasks = list(tasks)
    total = len(tasks)
    pending = sum(1 for t in tasks if t.status == "pending")
    in_progress = sum(1 for t in tasks if t.status == "in_progress")
    completed = sum(1 for t in tasks if t.status == "completed")
    progress = round(100 * completed / total) if total else 0
    return TaskStats(
        total=total,
        pending=pending,
        in_progress=in_progress,
        completed=completed,
        progress_percent=progress,
    )


class TaskListStore:
    """
    Owns the current task list.

    Reads may happen from any thread; updates are serialized so the
    validate-then-replace step stays atomic. A successful update is
    written to `todo_file` (best effort) and logged as a board.
    """

    def __init__(self, todo_file: Optional[Union[str, Path]] = ".todos.json"):
        self.todo_file = Path(todo_file) if todo_file else None
        self._tasks: List[Task] = []
        self._lock = threading.Lock()
        self.load()

    def load(self) -> None:
        if self.todo_file is None or not self.todo_file.exists():
            return
        try:
            data = json.loads(self.todo_file.read_text(encoding="utf-8"))
            todos = data["todos"]
            # clear() writes an empty list; anything else must pass the update rules.
            self._tasks = validate_tasks(todos) if todos else []
        except Exception as e:
            logger.warning("Could not load task list from %s: %s", self.todo_file, e)
            self._tasks = []

    def save(self) -> None:
        if self.todo_file is None:
            return
        data = {"todos": [t.model_dump(by_alias=True) for t in self._tasks]}
        try:
            self.todo_file.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
        except OSError as e:
            # In-memory list stays authoritative.
            logger.error("Could not save task list to %s: %s", self.todo_file, e)

    def update(self, candidates: Iterable[TaskLike]) -> TaskStats:
        candidates = list(candidates)
        with self._lock:
            tasks = validate_tasks(candidates)
            self._tasks = tasks
            self.save()
            stats = compute_stats(self._tasks)
        self.display()
        return stats

    def clear(self) -> None:
        with self._lock:
            self._tasks = []
            self.save()

    def get_all(self) -> List[Task]:
        return [t.model_copy() for t in self._tasks]

    def get_by_status(self, status: TaskStatus) -> List[Task]:
        return [t.model_copy() for t in self._tasks if t.status == status]

    def get_in_progress(self) -> Optional[Task]:
        for t in self._tasks:
            if t.status == "in_progress":
                return t.model_copy()
        return None

    def get_stats(self) -> TaskStats:
        return compute_stats(self._tasks)

    def render(self) -> str:
        if not self._tasks:
            return "No tasks."

        lines: List[str] = []
        in_progress = self.get_by_status("in_progress")
        pending = self.get_by_status("pending")
        completed = self.get_by_status("completed")

        if in_progress:
            lines.append("In progress:")
            lines.extend(f"  [>] {t.active_form}" for t in in_progress)
        if pending:
            lines.append("Pending:")
            lines.extend(f"  [ ] {t.content}" for t in pending)
        if completed:
            lines.append("Completed:")
            lines.extend(f"  [x] {t.content}" for t in completed)

        stats = self.get_stats()
        lines.append(f"Progress: {stats.completed}/{stats.total} ({stats.progress_percent}%)")
        return "\n".join(lines)

    def display(self) -> None:
        logger.info("Task list:\n%s", self.render())
