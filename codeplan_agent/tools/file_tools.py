"""Local file-system tool backend.

``LocalFileClient`` serves the file tools a plan can reference, scoped
to a single project root.  Every path argument is resolved against that
root and rejected when it escapes it.

Tools report soft failures as ``{"success": False, "error": ...}``
dictionaries rather than raising; the executor classifies those error
strings, so their wording is part of the contract:

* ``File not found: <path>`` / ``Not a file: <path>``
* ``Directory not found: <path>`` / ``Not a directory: <path>``
* ``Access denied: Path is outside project root``

Writes (``create_file``, ``apply_patch``) take a snapshot first and
return its ``snapshotId`` so the step can be rolled back.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import Any

from codeplan_agent.config.settings import Settings
from codeplan_agent.core.tool_registry import FILE_TOOLS, ToolClient, ToolRegistry
from codeplan_agent.tools.snapshot import SnapshotManager

logger = logging.getLogger(__name__)

_OUTSIDE_ROOT = "Access denied: Path is outside project root"

_IGNORED_DIRS: frozenset[str] = frozenset(
    {"node_modules", ".git", ".codeplan", "dist", "build", "coverage", ".next", ".nuxt"}
)

# Extensions searched when ``search_code`` gets no ``filePattern``.
_SEARCH_EXTENSIONS: frozenset[str] = frozenset(
    {
        ".ts", ".tsx", ".js", ".jsx", ".json", ".yaml", ".yml",
        ".md", ".css", ".scss", ".html", ".vue", ".svelte",
    }
)

# Files larger than this are skipped by ``search_code``.
_MAX_SEARCH_FILE_BYTES: int = 1024 * 1024

_LANGUAGE_BY_SUFFIX: dict[str, str] = {
    ".ts": "typescript",
    ".tsx": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".md": "markdown",
    ".css": "css",
    ".scss": "scss",
    ".less": "less",
    ".html": "html",
    ".vue": "vue",
    ".svelte": "svelte",
    ".py": "python",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
    ".sh": "shell",
    ".sql": "sql",
    ".graphql": "graphql",
}

# Declaration patterns used by the ``get_ast`` outline.
_AST_PATTERNS: dict[str, re.Pattern[str]] = {
    "imports": re.compile(r"""^\s*import\s.*?from\s+['"]([^'"]+)['"]"""),
    "functions": re.compile(
        r"^\s*(?:export\s+)?(?:default\s+)?(?:async\s+)?function\s*\*?\s*(\w+)"
    ),
    "classes": re.compile(r"^\s*(?:export\s+)?(?:default\s+)?(?:abstract\s+)?class\s+(\w+)"),
    "interfaces": re.compile(r"^\s*(?:export\s+)?interface\s+(\w+)"),
    "types": re.compile(r"^\s*(?:export\s+)?type\s+(\w+)\s*(?:<[^=]*>)?\s*="),
    "components": re.compile(
        r"^\s*(?:export\s+)?(?:const|let)\s+([A-Z]\w*)\s*(?::[^=]+)?=\s*(?:\([^)]*\)|\w+)\s*=>"
    ),
}
_AST_EXTENSIONS: frozenset[str] = frozenset({".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs"})
_EXPORT_NAME = re.compile(
    r"^\s*export\s+(?:default\s+)?(?:async\s+)?"
    r"(?:function\s*\*?|class|interface|type|const|let|var|enum)\s+(\w+)"
)


def _language_for(path: Path) -> str:
    return _LANGUAGE_BY_SUFFIX.get(path.suffix.lower(), "plaintext")


def _failure(error: str) -> dict[str, Any]:
    return {"success": False, "error": error}


class LocalFileClient(ToolClient):
    """File tools rooted at one project directory.

    Args:
        project_root: Directory all tool paths are relative to.
        snapshot_dir: Where write snapshots are persisted.  Relative
            paths are resolved under *project_root*.
    """

    def __init__(self, project_root: str | Path, snapshot_dir: str | Path) -> None:
        self._root = Path(project_root).resolve()
        snapshots = Path(snapshot_dir)
        if not snapshots.is_absolute():
            snapshots = self._root / snapshots
        self._snapshots = SnapshotManager(snapshots)
        loaded = self._snapshots.load_snapshots()
        if loaded:
            logger.debug("loaded %d persisted snapshot(s) from %s", loaded, snapshots)
        self._handlers = {
            "read_file": self.read_file,
            "list_directory": self.list_directory,
            "create_file": self.create_file,
            "apply_patch": self.apply_patch,
            "search_code": self.search_code,
            "get_ast": self.get_ast,
            "rollback": self.rollback,
            "get_snapshots": self.get_snapshots,
        }

    @property
    def project_root(self) -> Path:
        return self._root

    @property
    def snapshots(self) -> SnapshotManager:
        return self._snapshots

    # ------------------------------------------------------------------
    # ToolClient
    # ------------------------------------------------------------------

    async def call_tool(self, name: str, args: dict[str, Any]) -> Any:
        handler = self._handlers.get(name)
        if handler is None:
            raise ValueError(f"Unknown tool: {name}")
        logger.debug("file tool %s %s", name, args.get("path", ""))
        return handler(args)

    async def list_tools(self) -> list[dict[str, str]]:
        return [
            {"name": "read_file", "description": "Read a file, optionally a line range."},
            {"name": "list_directory", "description": "List directory entries."},
            {"name": "create_file", "description": "Create a new file."},
            {"name": "apply_patch", "description": "Apply line-range patches to a file."},
            {"name": "search_code", "description": "Regex search across project files."},
            {"name": "get_ast", "description": "Outline the declarations in a source file."},
            {"name": "rollback", "description": "Undo a write by snapshot id."},
            {"name": "get_snapshots", "description": "List snapshots of a file."},
        ]

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    def read_file(self, args: dict[str, Any]) -> dict[str, Any]:
        """``{path, encoding?, startLine?, endLine?}`` -> file content."""
        rel = str(args.get("path", ""))
        full = self._resolve(rel)
        if full is None:
            return _failure(_OUTSIDE_ROOT)
        if not full.exists():
            return _failure(f"File not found: {rel}")
        if not full.is_file():
            return _failure(f"Not a file: {rel}")

        try:
            content = full.read_text(encoding=args.get("encoding") or "utf-8")
        except (OSError, UnicodeDecodeError, LookupError) as exc:
            return _failure(f"Failed to read file: {exc}")

        all_lines = content.split("\n")
        lines = len(all_lines)
        start_line = args.get("startLine")
        end_line = args.get("endLine")
        if start_line is not None or end_line is not None:
            try:
                start = max(int(start_line or 1) - 1, 0)
                end = int(end_line) if end_line is not None else len(all_lines)
            except (TypeError, ValueError) as exc:
                return _failure(f"Invalid line range: {exc}")
            content = "\n".join(all_lines[start:end])
            lines = max(end - start, 0)

        return {
            "success": True,
            "content": content,
            "lines": lines,
            "language": _language_for(full),
            "size": full.stat().st_size,
        }

    def list_directory(self, args: dict[str, Any]) -> dict[str, Any]:
        """``{path, recursive?, includeHidden?, maxDepth?}`` -> entries."""
        rel = str(args.get("path", ""))
        full = self._resolve(rel)
        if full is None:
            return _failure(_OUTSIDE_ROOT)
        if not full.exists():
            return _failure(f"Directory not found: {rel}")
        if not full.is_dir():
            return _failure(f"Not a directory: {rel}")

        entries: list[dict[str, Any]] = []
        try:
            self._walk(
                full,
                entries,
                recursive=bool(args.get("recursive", False)),
                include_hidden=bool(args.get("includeHidden", False)),
                depth=0,
                max_depth=int(args.get("maxDepth", 3)),
            )
        except OSError as exc:
            return _failure(f"Failed to list directory: {exc}")
        return {"success": True, "entries": entries}

    def create_file(self, args: dict[str, Any]) -> dict[str, Any]:
        """``{path, content, overwrite?}`` -> ``{success, path, snapshotId}``."""
        rel = str(args.get("path", ""))
        full = self._resolve(rel)
        if full is None:
            return _failure(_OUTSIDE_ROOT)

        existed = full.exists()
        if existed and not args.get("overwrite"):
            return _failure(f"File already exists: {rel}. Set overwrite=true to overwrite.")
        if existed and not full.is_file():
            return _failure(f"Not a file: {rel}")

        content = str(args.get("content") or "")
        snapshot_id = self._snapshots.create_snapshot(
            full, "modify" if existed else "create"
        )
        try:
            full.parent.mkdir(parents=True, exist_ok=True)
            full.write_text(content, encoding="utf-8")
        except OSError as exc:
            self._snapshots.rollback(snapshot_id)
            return _failure(f"Failed to create file: {exc}")
        self._snapshots.update_snapshot_content(snapshot_id, content)

        logger.info("created %s (%d chars)", rel, len(content))
        return {"success": True, "path": rel, "snapshotId": snapshot_id}

    def apply_patch(self, args: dict[str, Any]) -> dict[str, Any]:
        """``{path, patches, dryRun?}`` -> ``{success, content, snapshotId}``.

        Each patch is ``{operation, startLine, endLine?, content?}`` with
        1-based inclusive line numbers and ``operation`` one of
        ``replace``, ``insert``, ``delete``.  Patches are applied from the
        bottom of the file upward so earlier line numbers stay valid.
        """
        rel = str(args.get("path", ""))
        full = self._resolve(rel)
        if full is None:
            return _failure(_OUTSIDE_ROOT)
        if full.exists() and not full.is_file():
            return _failure(f"Not a file: {rel}")

        existed = full.exists()
        try:
            original = full.read_text(encoding="utf-8") if existed else ""
        except (OSError, UnicodeDecodeError) as exc:
            return _failure(f"Failed to read file: {exc}")

        patches = args.get("patches")
        if not patches and args.get("content") is not None:
            # Whole-file content without patches replaces the file.
            patches = [
                {
                    "operation": "replace",
                    "startLine": 1,
                    "endLine": len(original.split("\n")),
                    "content": args["content"],
                }
            ]
        if not patches:
            return _failure("No patches provided")
        try:
            new_content = _apply_patches(original, patches)
        except (KeyError, TypeError, ValueError) as exc:
            return _failure(f"Invalid patch: {exc}")

        if args.get("dryRun"):
            return {"success": True, "content": new_content, "snapshotId": ""}

        snapshot_id = self._snapshots.create_snapshot(
            full, "modify" if existed else "create"
        )
        try:
            full.parent.mkdir(parents=True, exist_ok=True)
            full.write_text(new_content, encoding="utf-8")
        except OSError as exc:
            self._snapshots.rollback(snapshot_id)
            return _failure(f"Failed to apply patch: {exc}")
        self._snapshots.update_snapshot_content(snapshot_id, new_content)

        logger.info("patched %s (%d patch(es))", rel, len(patches))
        return {"success": True, "content": new_content, "snapshotId": snapshot_id}

    def search_code(self, args: dict[str, Any]) -> dict[str, Any]:
        """``{pattern | query, filePattern?, maxResults?, contextLines?}``."""
        pattern = args.get("pattern")
        query = args.get("query")
        if not pattern and not query:
            return _failure("Either query or pattern must be provided")

        try:
            regex = re.compile(pattern if pattern else re.escape(query), re.IGNORECASE)
        except re.error as exc:
            return _failure(f"Invalid pattern: {exc}")

        file_pattern = str(args.get("filePattern") or "")
        if file_pattern and (
            PurePosixPath(file_pattern).is_absolute()
            or PureWindowsPath(file_pattern).is_absolute()
            or ".." in PurePosixPath(file_pattern.replace("\\", "/")).parts
        ):
            return _failure(f"File pattern must stay inside the project: {file_pattern}")

        try:
            max_results = int(args.get("maxResults", 100))
            context_lines = int(args.get("contextLines", 2))
        except (TypeError, ValueError) as exc:
            return _failure(f"Invalid search option: {exc}")
        matches: list[dict[str, Any]] = []

        for path in self._search_files(file_pattern):
            if len(matches) >= max_results:
                break
            try:
                if path.stat().st_size > _MAX_SEARCH_FILE_BYTES:
                    continue
                lines = path.read_text(encoding="utf-8").split("\n")
            except (OSError, UnicodeDecodeError):
                continue

            for index, line in enumerate(lines):
                for found in regex.finditer(line):
                    match: dict[str, Any] = {
                        "file": path.relative_to(self._root).as_posix(),
                        "line": index + 1,
                        "column": found.start() + 1,
                        "content": line.strip(),
                    }
                    if context_lines > 0:
                        match["context"] = {
                            "before": [
                                text.strip()
                                for text in lines[max(0, index - context_lines):index]
                            ],
                            "after": [
                                text.strip()
                                for text in lines[index + 1:index + 1 + context_lines]
                            ],
                        }
                    matches.append(match)
                    if len(matches) >= max_results:
                        break
                if len(matches) >= max_results:
                    break

        return {
            "success": True,
            "matches": matches,
            "totalMatches": len(matches),
            "truncated": len(matches) >= max_results,
        }

    def get_ast(self, args: dict[str, Any]) -> dict[str, Any]:
        """``{path}`` -> declaration outline of a JS/TS source file.

        A line-oriented outline (imports, exports, functions, classes,
        interfaces, type aliases, arrow-function components), not a
        full parse.
        """
        rel = str(args.get("path", ""))
        full = self._resolve(rel)
        if full is None:
            return _failure(_OUTSIDE_ROOT)
        if not full.exists():
            return _failure(f"File not found: {rel}")
        if not full.is_file():
            return _failure(f"Not a file: {rel}")
        if full.suffix.lower() not in _AST_EXTENSIONS:
            return _failure(f"Unsupported file type for AST analysis: {full.suffix}")

        outline: dict[str, list[dict[str, Any]]] = {key: [] for key in _AST_PATTERNS}
        exports: list[str] = []
        for number, line in enumerate(full.read_text(encoding="utf-8").split("\n"), 1):
            for key, regex in _AST_PATTERNS.items():
                found = regex.match(line)
                if found is None:
                    continue
                if key == "imports":
                    outline[key].append({"moduleSpecifier": found.group(1), "line": number})
                else:
                    outline[key].append(
                        {
                            "name": found.group(1),
                            "line": number,
                            "isExported": line.lstrip().startswith("export"),
                        }
                    )
            exported = _EXPORT_NAME.match(line)
            if exported:
                exports.append(exported.group(1))

        return {"success": True, "exports": exports, **outline}

    def rollback(self, args: dict[str, Any]) -> dict[str, Any]:
        """``{snapshotId}`` -> ``{success, message}``."""
        snapshot_id = str(args.get("snapshotId") or args.get("snapshot_id") or "")
        return self._snapshots.rollback(snapshot_id)

    def get_snapshots(self, args: dict[str, Any]) -> dict[str, Any]:
        """``{path}`` -> snapshots recorded for that file."""
        rel = str(args.get("path", ""))
        full = self._resolve(rel)
        if full is None:
            return _failure(_OUTSIDE_ROOT)
        return {
            "success": True,
            "snapshots": [
                {"id": s.id, "timestamp": s.timestamp, "operation": s.operation}
                for s in self._snapshots.get_file_snapshots(full)
            ],
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _resolve(self, rel: str) -> Path | None:
        full = (self._root / rel).resolve()
        if not full.is_relative_to(self._root):
            logger.warning("rejected path outside project root: %s", rel)
            return None
        return full

    def _walk(
        self,
        directory: Path,
        entries: list[dict[str, Any]],
        recursive: bool,
        include_hidden: bool,
        depth: int,
        max_depth: int,
    ) -> None:
        for item in sorted(directory.iterdir()):
            if not include_hidden and item.name.startswith("."):
                continue
            entry: dict[str, Any] = {
                "name": item.name,
                "path": item.relative_to(self._root).as_posix(),
                "type": "directory" if item.is_dir() else "file",
            }
            if item.is_file():
                entry["size"] = item.stat().st_size
            entries.append(entry)

            if (
                recursive
                and item.is_dir()
                and item.name not in _IGNORED_DIRS
                and depth < max_depth
            ):
                self._walk(item, entries, recursive, include_hidden, depth + 1, max_depth)

    def _search_files(self, file_pattern: str | None) -> list[Path]:
        if file_pattern:
            candidates = self._root.glob(file_pattern)
        else:
            candidates = (
                p for p in self._root.rglob("*") if p.suffix.lower() in _SEARCH_EXTENSIONS
            )
        return sorted(
            p
            for p in candidates
            if p.is_file()
            and not _IGNORED_DIRS.intersection(p.relative_to(self._root).parts)
        )

    def __repr__(self) -> str:
        return f"LocalFileClient(root={str(self._root)!r})"


def _apply_patches(original: str, patches: list[dict[str, Any]]) -> str:
    """Apply line-range *patches* to *original*, bottom-up."""
    lines = original.split("\n")
    ordered = sorted(patches, key=lambda p: int(p["startLine"]), reverse=True)

    for patch in ordered:
        operation = patch["operation"]
        start = int(patch["startLine"]) - 1
        end = int(patch.get("endLine") or patch["startLine"]) - 1

        if operation == "replace":
            if patch.get("content") is not None:
                lines[start:end + 1] = str(patch["content"]).split("\n")
        elif operation == "insert":
            if patch.get("content") is not None:
                lines[start:start] = str(patch["content"]).split("\n")
        elif operation == "delete":
            del lines[start:end + 1]
        else:
            raise ValueError(f"unknown patch operation {operation!r}")

    return "\n".join(lines)


def register_file_tools(
    registry: ToolRegistry,
    settings: Settings,
    client_name: str = "file",
) -> LocalFileClient:
    """Create a ``LocalFileClient`` and map the standard file tools to it.

    Returns:
        The registered client.
    """
    client = LocalFileClient(settings.project_root, settings.snapshot_dir)
    registry.register_client(client_name, client)
    registry.register_tools(client_name, FILE_TOOLS)
    return client
