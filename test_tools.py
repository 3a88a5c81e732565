"""
Tests for the project tools and their dispatch.
"""

import pytest

from backend import LocalBackend
from tools import execute_tool, invalidate_gitignore_cache, normalize_tool_name


@pytest.fixture
def project(tmp_path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "app.py").write_text("import os\n\ndef main():\n    return 'Hello'\n")
    (tmp_path / "README.md").write_text("# Demo\nhello world\n")
    (tmp_path / "build").mkdir()
    (tmp_path / "build" / "out.txt").write_text("hello from build\n")
    (tmp_path / "secret.log").write_text("hello secret\n")
    (tmp_path / ".gitignore").write_text("*.log\n")
    invalidate_gitignore_cache()
    yield tmp_path
    invalidate_gitignore_cache()


def _run(project, name, **args):
    return execute_tool(name, args, working_directory=str(project), backend=LocalBackend(str(project)))


def test_list_files_respects_ignores(project):
    result = _run(project, "listFiles", path=".")
    assert result["ok"]
    names = {f["name"] for f in result["files"]}
    assert {"src", "README.md", ".gitignore"} <= names
    assert "build" not in names
    assert "secret.log" not in names


def test_list_files_recursive(project):
    result = _run(project, "listFiles", recursive=True)
    paths = [f["path"] for f in result["files"]]
    assert "src/app.py" in paths
    assert all(not p.startswith("build/") for p in paths)


def test_list_files_missing_directory(project):
    result = _run(project, "listFiles", path="nope")
    assert not result["ok"]
    assert "Not a directory" in result["error"]


def test_read_file_with_range(project):
    result = _run(project, "readFile", path="src/app.py", offset=3, limit=1)
    assert result["ok"]
    assert result["content"] == "def main():\n"
    assert result["lines"] == 4
    assert result["offset"] == 3


def test_read_file_missing_and_empty_path(project):
    assert "File not found" in _run(project, "readFile", path="missing.py")["error"]
    assert _run(project, "readFile", path="  ")["error"] == "path is required"


def test_read_file_outside_project_is_rejected(project):
    result = _run(project, "readFile", path="../../etc/passwd")
    assert not result["ok"]


def test_search_in_project_case_insensitive(project):
    result = _run(project, "searchInProject", query="HELLO")
    assert result["ok"]
    paths = sorted(m["path"] for m in result["matches"])
    assert paths == ["README.md", "src/app.py"]


def test_search_in_project_case_sensitive_and_limit(project):
    result = _run(project, "searchInProject", query="hello", caseSensitive=True, maxResults=1)
    assert len(result["matches"]) == 1
    assert result["truncated"] is True


def test_search_requires_query(project):
    assert _run(project, "searchInProject")["error"] == "query is required"


def test_grep_search(project):
    result = _run(project, "grepSearch", pattern="def \\w+", include="*.py")
    assert result["ok"]
    assert [m["path"] for m in result["matches"]] == ["src/app.py"]
    assert result["matches"][0]["line"] == 3


def test_unknown_tool_and_aliases(project):
    result = _run(project, "deleteEverything")
    assert result == {"ok": False, "error": "Unknown tool: deleteEverything"}
    assert normalize_tool_name("read_file") == "readFile"
    assert _run(project, "read_file", path="README.md")["ok"]


def test_bad_arguments_are_reported(project):
    assert "Invalid arguments" in execute_tool("readFile", ["x"], working_directory=str(project))["error"]
    assert not _run(project, "readFile", path="README.md", offset="x")["ok"]
