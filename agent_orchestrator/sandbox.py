"""File tools confined to one working directory."""

import logging
from pathlib import Path
from typing import Iterable, List, Union

from pydantic import BaseModel

from .tools import ToolRegistry

logger = logging.getLogger(__name__)

DEFAULT_EXTENSIONS = (".txt", ".json", ".md", ".csv")


class SandboxError(Exception):
    pass


class SandboxedFileSystem:
    """
    Read, write, list and delete files below `work_dir` only.

    Paths are relative to the work dir; anything resolving outside it is
    rejected. Writes are limited to `allowed_extensions`. The work dir is
    created by the first write, not on construction.
    """

    def __init__(
        self,
        work_dir: Union[str, Path],
        allowed_extensions: Iterable[str] = DEFAULT_EXTENSIONS,
    ):
        self.work_dir = Path(work_dir).resolve()
        self.allowed_extensions = tuple(e.lower() for e in allowed_extensions)

    def resolve(self, relative_path: str) -> Path:
        path = (self.work_dir / relative_path).resolve()
        if not path.is_relative_to(self.work_dir):
            raise SandboxError(f"Path escapes the working directory: {relative_path}")
        return path

    def read_file(self, relative_path: str) -> str:
        path = self.resolve(relative_path)
        if not path.exists():
            raise SandboxError(f"File does not exist: {relative_path}")
        if not path.is_file():
            raise SandboxError(f"Not a file: {relative_path}")
        return path.read_text(encoding="utf-8")

    def write_file(self, relative_path: str, content: str) -> int:
        path = self.resolve(relative_path)
        if path.suffix.lower() not in self.allowed_extensions:
            raise SandboxError(f"Extension not allowed: {path.suffix or '(none)'}")
        if not self.work_dir.exists():
            logger.info("Creating sandbox directory %s", self.work_dir)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return len(content)

    def list_files(self, relative_path: str = ".") -> List[str]:
        path = self.resolve(relative_path)
        if path == self.work_dir and not path.exists():
            return []
        if not path.exists():
            raise SandboxError(f"Directory does not exist: {relative_path}")
        if not path.is_dir():
            raise SandboxError(f"Not a directory: {relative_path}")
        return sorted(p.name + ("/" if p.is_dir() else "") for p in path.iterdir())

    def delete_file(self, relative_path: str) -> None:
        path = self.resolve(relative_path)
        if not path.is_file():
            raise SandboxError(f"File does not exist: {relative_path}")
        path.unlink()


class PathInput(BaseModel):
    path: str


class WriteFileInput(BaseModel):
    path: str
    content: str


class ListFilesInput(BaseModel):
    path: str = "."


def register_file_tools(registry: ToolRegistry, fs: SandboxedFileSystem) -> ToolRegistry:
    def write_file(args: WriteFileInput) -> str:
        size = fs.write_file(args.path, args.content)
        return f"Wrote {size} characters to {args.path}"

    def delete_file(args: PathInput) -> str:
        fs.delete_file(args.path)
        return f"Deleted {args.path}"

    registry.register(
        "read_file",
        "Read a file from the working directory.",
        PathInput,
        lambda args: fs.read_file(args.path),
    )
    registry.register(
        "write_file",
        "Write a file in the working directory. Allowed extensions: "
        + ", ".join(fs.allowed_extensions),
        WriteFileInput,
        write_file,
    )
    registry.register(
        "list_files",
        "List files and folders in a directory of the working directory.",
        ListFilesInput,
        lambda args: fs.list_files(args.path),
    )
    registry.register(
        "delete_file",
        "Delete a file from the working directory.",
        PathInput,
        delete_file,
    )
    return registry
