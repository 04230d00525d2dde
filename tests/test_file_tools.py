"""Tests for LocalFileClient against a throwaway project under tmp_path."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import pytest

from codeplan_agent.config.settings import Settings
from codeplan_agent.core.tool_registry import FILE_TOOLS, ToolRegistry
from codeplan_agent.tools.file_tools import LocalFileClient, register_file_tools

# ------------------------------------------------------------------
# Fixtures
# ------------------------------------------------------------------

_APP_TSX = """\
import React from 'react';
import { formatPrice } from './utils/price';

export interface AppProps {
  title: string;
}

export type Mode = 'light' | 'dark';

export const App = (props: AppProps) => {
  return <h1>{props.title}</h1>;
};

export default function main() {}

class Internal {}
"""


@pytest.fixture()
def project(tmp_path: Path) -> Path:
    (tmp_path / "src" / "utils").mkdir(parents=True)
    (tmp_path / "src" / "App.tsx").write_text(_APP_TSX, encoding="utf-8")
    (tmp_path / "src" / "utils" / "price.ts").write_text(
        "export function formatPrice(cents: number) {\n  return `$${cents / 100}`;\n}\n",
        encoding="utf-8",
    )
    (tmp_path / "node_modules" / "lib").mkdir(parents=True)
    (tmp_path / "node_modules" / "lib" / "index.js").write_text("formatPrice", encoding="utf-8")
    (tmp_path / ".env").write_text("SECRET=1", encoding="utf-8")
    return tmp_path


@pytest.fixture()
def client(project: Path) -> LocalFileClient:
    return LocalFileClient(project, ".codeplan/snapshots")


def _call(client: LocalFileClient, name: str, **args: Any) -> Any:
    return asyncio.run(client.call_tool(name, args))


# ==================================================================
# Test classes
# ==================================================================


class TestReadFile:
    def test_reads_whole_file(self, client: LocalFileClient) -> None:
        result = _call(client, "read_file", path="src/utils/price.ts")
        assert result["success"]
        assert result["content"].startswith("export function formatPrice")
        assert result["language"] == "typescript"
        assert result["lines"] == 4

    def test_line_range(self, client: LocalFileClient) -> None:
        result = _call(client, "read_file", path="src/App.tsx", startLine=1, endLine=2)
        assert result["content"].split("\n") == [
            "import React from 'react';",
            "import { formatPrice } from './utils/price';",
        ]
        assert result["lines"] == 2

    def test_missing_file(self, client: LocalFileClient) -> None:
        result = _call(client, "read_file", path="src/Nope.tsx")
        assert result == {"success": False, "error": "File not found: src/Nope.tsx"}

    def test_directory(self, client: LocalFileClient) -> None:
        assert _call(client, "read_file", path="src")["error"] == "Not a file: src"

    def test_outside_root(self, client: LocalFileClient) -> None:
        result = _call(client, "read_file", path="../../etc/passwd")
        assert result["error"] == "Access denied: Path is outside project root"

    def test_non_numeric_line_range(self, client: LocalFileClient) -> None:
        result = _call(client, "read_file", path="src/App.tsx", startLine="top")
        assert result["success"] is False
        assert result["error"].startswith("Invalid line range")


class TestListDirectory:
    def test_flat_listing(self, client: LocalFileClient) -> None:
        result = _call(client, "list_directory", path="src")
        names = [e["name"] for e in result["entries"]]
        assert names == ["App.tsx", "utils"]
        assert result["entries"][1]["type"] == "directory"

    def test_recursive(self, client: LocalFileClient) -> None:
        result = _call(client, "list_directory", path=".", recursive=True)
        paths = {e["path"] for e in result["entries"]}
        assert "src/utils/price.ts" in paths
        assert "node_modules" in paths
        assert "node_modules/lib" not in paths

    def test_hidden_files(self, client: LocalFileClient) -> None:
        hidden = _call(client, "list_directory", path=".")
        shown = _call(client, "list_directory", path=".", includeHidden=True)
        assert ".env" not in {e["name"] for e in hidden["entries"]}
        assert ".env" in {e["name"] for e in shown["entries"]}

    def test_max_depth(self, client: LocalFileClient) -> None:
        result = _call(client, "list_directory", path=".", recursive=True, maxDepth=1)
        assert "src/utils" in {e["path"] for e in result["entries"]}
        assert "src/utils/price.ts" not in {e["path"] for e in result["entries"]}

    def test_missing_directory(self, client: LocalFileClient) -> None:
        assert _call(client, "list_directory", path="lib")["error"] == "Directory not found: lib"

    def test_file_is_not_directory(self, client: LocalFileClient) -> None:
        result = _call(client, "list_directory", path="src/App.tsx")
        assert result["error"] == "Not a directory: src/App.tsx"


class TestCreateFile:
    def test_creates_with_parents(self, client: LocalFileClient, project: Path) -> None:
        result = _call(client, "create_file", path="src/new/Footer.tsx", content="export {};")
        assert result["success"]
        assert result["path"] == "src/new/Footer.tsx"
        assert result["snapshotId"].startswith("snap_")
        assert (project / "src/new/Footer.tsx").read_text(encoding="utf-8") == "export {};"

    def test_existing_file_refused(self, client: LocalFileClient) -> None:
        result = _call(client, "create_file", path="src/App.tsx", content="x")
        assert result["error"] == (
            "File already exists: src/App.tsx. Set overwrite=true to overwrite."
        )

    def test_overwrite_then_rollback(self, client: LocalFileClient, project: Path) -> None:
        result = _call(client, "create_file", path="src/App.tsx", content="x", overwrite=True)
        assert (project / "src/App.tsx").read_text(encoding="utf-8") == "x"
        _call(client, "rollback", snapshotId=result["snapshotId"])
        assert (project / "src/App.tsx").read_text(encoding="utf-8") == _APP_TSX

    def test_rollback_of_new_file_deletes_it(
        self, client: LocalFileClient, project: Path
    ) -> None:
        result = _call(client, "create_file", path="src/tmp.ts", content="x")
        rolled = _call(client, "rollback", snapshotId=result["snapshotId"])
        assert rolled["success"]
        assert not (project / "src/tmp.ts").exists()

    def test_outside_root(self, client: LocalFileClient) -> None:
        result = _call(client, "create_file", path="../evil.ts", content="x")
        assert result["success"] is False


class TestApplyPatch:
    def test_replace_lines(self, client: LocalFileClient, project: Path) -> None:
        patches = [{"operation": "replace", "startLine": 2, "endLine": 2, "content": "  return '';"}]
        result = _call(client, "apply_patch", path="src/utils/price.ts", patches=patches)
        assert result["success"]
        lines = (project / "src/utils/price.ts").read_text(encoding="utf-8").split("\n")
        assert lines[1] == "  return '';"

    def test_patches_applied_bottom_up(self, client: LocalFileClient, project: Path) -> None:
        (project / "n.txt").write_text("a\nb\nc\nd", encoding="utf-8")
        patches = [
            {"operation": "delete", "startLine": 1, "endLine": 1},
            {"operation": "insert", "startLine": 3, "content": "X"},
        ]
        result = _call(client, "apply_patch", path="n.txt", patches=patches)
        assert result["content"] == "b\nX\nc\nd"

    def test_whole_content_fallback(self, client: LocalFileClient, project: Path) -> None:
        result = _call(client, "apply_patch", path="src/utils/price.ts", content="export {};")
        assert result["content"] == "export {};"
        assert (project / "src/utils/price.ts").read_text(encoding="utf-8") == "export {};"

    def test_dry_run(self, client: LocalFileClient, project: Path) -> None:
        before = (project / "src/utils/price.ts").read_text(encoding="utf-8")
        result = _call(client, "apply_patch", path="src/utils/price.ts", content="x", dryRun=True)
        assert result["content"] == "x"
        assert result["snapshotId"] == ""
        assert (project / "src/utils/price.ts").read_text(encoding="utf-8") == before

    def test_no_patches(self, client: LocalFileClient) -> None:
        assert _call(client, "apply_patch", path="src/App.tsx")["error"] == "No patches provided"

    def test_unknown_operation(self, client: LocalFileClient) -> None:
        result = _call(
            client, "apply_patch", path="src/App.tsx",
            patches=[{"operation": "swap", "startLine": 1}],
        )
        assert result["error"].startswith("Invalid patch")

    def test_non_numeric_start_line(self, client: LocalFileClient) -> None:
        result = _call(
            client, "apply_patch", path="src/App.tsx",
            patches=[{"operation": "insert", "startLine": "end", "content": "x"}],
        )
        assert result["error"].startswith("Invalid patch")

    def test_undecodable_file(self, client: LocalFileClient, project: Path) -> None:
        (project / "src" / "logo.ts").write_bytes(b"\xff\xfe\x00binary")
        result = _call(client, "apply_patch", path="src/logo.ts", content="x")
        assert result["success"] is False
        assert result["error"].startswith("Failed to read file")
        assert (project / "src" / "logo.ts").read_bytes() == b"\xff\xfe\x00binary"

    def test_rollback_restores(self, client: LocalFileClient, project: Path) -> None:
        result = _call(client, "apply_patch", path="src/App.tsx", content="x")
        _call(client, "rollback", snapshotId=result["snapshotId"])
        assert (project / "src/App.tsx").read_text(encoding="utf-8") == _APP_TSX


class TestSearchCode:
    def test_pattern_search(self, client: LocalFileClient) -> None:
        result = _call(client, "search_code", pattern=r"formatPrice\(")
        files = {m["file"] for m in result["matches"]}
        assert files == {"src/utils/price.ts"}
        assert result["matches"][0]["line"] == 1
        assert "before" in result["matches"][0]["context"]

    def test_literal_query_ignores_node_modules(self, client: LocalFileClient) -> None:
        result = _call(client, "search_code", query="formatPrice", contextLines=0)
        files = {m["file"] for m in result["matches"]}
        assert files == {"src/App.tsx", "src/utils/price.ts"}
        assert "context" not in result["matches"][0]

    def test_file_pattern(self, client: LocalFileClient) -> None:
        result = _call(client, "search_code", query="formatPrice", filePattern="src/*.tsx")
        assert {m["file"] for m in result["matches"]} == {"src/App.tsx"}

    def test_max_results(self, client: LocalFileClient) -> None:
        result = _call(client, "search_code", pattern="e", maxResults=2)
        assert result["totalMatches"] == 2
        assert result["truncated"] is True

    def test_requires_pattern_or_query(self, client: LocalFileClient) -> None:
        assert _call(client, "search_code")["success"] is False

    def test_invalid_regex(self, client: LocalFileClient) -> None:
        assert _call(client, "search_code", pattern="(")["error"].startswith("Invalid pattern")

    @pytest.mark.parametrize("file_pattern", ["/etc/*", "../*.ts", "src/../../*", "C:/\\*.ts"])
    def test_file_pattern_outside_project(
        self, client: LocalFileClient, file_pattern: str
    ) -> None:
        result = _call(client, "search_code", query="x", filePattern=file_pattern)
        assert result["success"] is False
        assert result["error"].startswith("File pattern must stay inside the project")


class TestGetAst:
    def test_outline(self, client: LocalFileClient) -> None:
        result = _call(client, "get_ast", path="src/App.tsx")
        assert result["success"]
        assert [i["moduleSpecifier"] for i in result["imports"]] == ["react", "./utils/price"]
        assert [i["name"] for i in result["interfaces"]] == ["AppProps"]
        assert [t["name"] for t in result["types"]] == ["Mode"]
        assert [c["name"] for c in result["components"]] == ["App"]
        assert [f["name"] for f in result["functions"]] == ["main"]
        assert result["classes"] == [{"name": "Internal", "line": 16, "isExported": False}]
        assert result["exports"] == ["AppProps", "Mode", "App", "main"]

    def test_unsupported_type(self, client: LocalFileClient, project: Path) -> None:
        (project / "a.css").write_text("body {}", encoding="utf-8")
        assert _call(client, "get_ast", path="a.css")["error"].startswith("Unsupported")

    def test_missing(self, client: LocalFileClient) -> None:
        assert _call(client, "get_ast", path="x.ts")["error"] == "File not found: x.ts"


class TestSnapshotsTool:
    def test_get_snapshots(self, client: LocalFileClient) -> None:
        _call(client, "create_file", path="a.ts", content="1")
        _call(client, "apply_patch", path="a.ts", content="2")
        result = _call(client, "get_snapshots", path="a.ts")
        assert [s["operation"] for s in result["snapshots"]] == ["create", "modify"]

    def test_snapshot_dir_under_root(self, client: LocalFileClient, project: Path) -> None:
        _call(client, "create_file", path="a.ts", content="1")
        assert list((project / ".codeplan" / "snapshots").glob("*.json"))

    def test_new_client_can_roll_back_earlier_write(self, project: Path) -> None:
        first = LocalFileClient(project, ".codeplan/snapshots")
        result = _call(first, "apply_patch", path="src/App.tsx", content="x")
        second = LocalFileClient(project, ".codeplan/snapshots")
        assert _call(second, "rollback", snapshotId=result["snapshotId"])["success"]
        assert (project / "src/App.tsx").read_text(encoding="utf-8") == _APP_TSX

    def test_unknown_snapshot(self, client: LocalFileClient) -> None:
        assert _call(client, "rollback", snapshotId="snap_x")["success"] is False


class TestClient:
    def test_unknown_tool(self, client: LocalFileClient) -> None:
        with pytest.raises(ValueError, match="Unknown tool: nope"):
            _call(client, "nope")

    def test_list_tools_matches_file_tools(self, client: LocalFileClient) -> None:
        names = [t["name"] for t in asyncio.run(client.list_tools())]
        assert sorted(names) == sorted(FILE_TOOLS)

    def test_register_file_tools(self, project: Path) -> None:
        registry = ToolRegistry()
        settings = Settings(project_root=str(project))
        client = register_file_tools(registry, settings)
        assert registry.resolve("read_file") is client
        assert client.project_root == project.resolve()
