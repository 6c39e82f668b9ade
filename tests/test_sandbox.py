"""Tests for the sandboxed file tools."""

from __future__ import annotations

import pytest

from agent_orchestrator.models import ToolUseBlock
from agent_orchestrator.sandbox import SandboxedFileSystem, SandboxError, register_file_tools
from agent_orchestrator.tools import ToolRegistry


@pytest.fixture
def fs(tmp_path) -> SandboxedFileSystem:
    return SandboxedFileSystem(tmp_path / "work")


def test_work_dir_is_created_on_first_write(tmp_path):
    work_dir = tmp_path / "new" / "dir"
    fs = SandboxedFileSystem(work_dir)

    assert not work_dir.exists()
    assert fs.list_files() == []
    assert not work_dir.exists()

    fs.write_file("a.txt", "x")

    assert (work_dir / "a.txt").read_text() == "x"


def test_missing_subdirectory_is_still_an_error(fs):
    with pytest.raises(SandboxError, match="Directory does not exist"):
        fs.list_files("nope")


def test_write_read_list_delete(fs):
    fs.write_file("notes/todo.md", "# hi")

    assert fs.read_file("notes/todo.md") == "# hi"
    assert fs.list_files() == ["notes/"]
    assert fs.list_files("notes") == ["todo.md"]

    fs.delete_file("notes/todo.md")
    assert fs.list_files("notes") == []


@pytest.mark.parametrize("path", ["../escape.txt", "/etc/passwd", "a/../../b.txt"])
def test_paths_outside_work_dir_are_rejected(fs, path):
    with pytest.raises(SandboxError, match="escapes"):
        fs.read_file(path)


def test_write_extension_allow_list(fs):
    with pytest.raises(SandboxError, match="Extension not allowed"):
        fs.write_file("script.sh", "rm -rf /")


def test_missing_things(fs):
    with pytest.raises(SandboxError):
        fs.read_file("nope.txt")
    with pytest.raises(SandboxError):
        fs.list_files("nope")
    with pytest.raises(SandboxError):
        fs.delete_file("nope.txt")


def test_file_tools_report_errors_to_the_model(fs):
    registry = register_file_tools(ToolRegistry(), fs)

    ok = registry.dispatch(ToolUseBlock(id="1", name="write_file", input={"path": "a.txt", "content": "abc"}))
    denied = registry.dispatch(ToolUseBlock(id="2", name="read_file", input={"path": "../../etc/passwd"}))
    listing = registry.dispatch(ToolUseBlock(id="3", name="list_files", input={}))

    assert ok.content == "Wrote 3 characters to a.txt"
    assert denied.is_error and "escapes" in denied.content
    assert listing.content == '["a.txt"]'
    assert registry.names() == ["read_file", "write_file", "list_files", "delete_file"]
