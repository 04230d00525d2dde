"""Dynamic code generator: file content for create / patch steps.

Stage two of the two-stage pipeline.  The planner only describes what a
file should contain; the executor calls this module to synthesise the
actual content, one file per call.  Generation uses free text rather
than structured output because embedding whole source files in a JSON
string is fragile (escaping corruption, truncation).

Raw model output is cleaned by ``clean_generated_code`` before use:

1. A leading / trailing Markdown code fence is removed.
2. ``[TOOL_CALL]...[/TOOL_CALL]`` blocks are removed.
3. Everything before the first line that looks like code is dropped,
   which removes conversational preambles.
"""

from __future__ import annotations

import logging
import re

from codeplan_agent.config.settings import Settings
from codeplan_agent.core.errors import CodeGenerationError
from codeplan_agent.core.generation import GenerationService, Message

logger = logging.getLogger(__name__)

_LANGUAGE_BY_EXTENSION: dict[str, str] = {
    "ts": "typescript",
    "tsx": "typescript",
    "js": "javascript",
    "jsx": "javascript",
    "mjs": "javascript",
    "cjs": "javascript",
    "json": "json",
    "yaml": "yaml",
    "yml": "yaml",
}

# Line prefixes that mark the start of real code.
_CODE_LINE_PREFIXES: tuple[str, ...] = (
    "import",
    "export",
    "const",
    "let",
    "var",
    "function",
    "class",
    "interface",
    "type",
    "//",
    "/*",
    "{",
    "<",
)

_FENCE_LINE = re.compile(r"^```[\w.+-]*$")
_TOOL_CALL_BLOCK = re.compile(r"\[TOOL_CALL\].*?\[/TOOL_CALL\]", re.DOTALL)

_CODE_SYSTEM_PROMPT: str = (
    "You are a senior frontend engineer writing one source file.\n"
    "\n"
    "Requirements:\n"
    "- Language: {language}\n"
    "- Output ONLY the complete file content.\n"
    "- No explanations, no Markdown fences, no tool calls.\n"
    "- Follow established best practices; keep the code clear and "
    "maintainable.\n"
    "{constraints}"
)

_MODIFY_SYSTEM_PROMPT: str = (
    "You are a senior frontend engineer modifying one source file.\n"
    "\n"
    "Requirements:\n"
    "- Language: {language}\n"
    "- Change only what the request needs; keep the existing style.\n"
    "- Output ONLY the complete modified file content.\n"
    "- No explanations, no Markdown fences, no tool calls.\n"
    "{constraints}"
)


def detect_language(path: str) -> str | None:
    """Map a file path to a language name by extension.

    Returns:
        ``"typescript"``, ``"javascript"``, ``"json"``, ``"yaml"``,
        or ``None`` for unrecognised extensions.
    """
    name = path.rsplit("/", 1)[-1]
    if "." not in name:
        return None
    ext = name.rsplit(".", 1)[-1].lower()
    return _LANGUAGE_BY_EXTENSION.get(ext)


def _looks_like_code(line: str) -> bool:
    return line.strip().startswith(_CODE_LINE_PREFIXES)


def clean_generated_code(raw: str) -> str:
    """Strip fences, tool-call blocks and prose preambles from *raw*."""
    lines = raw.strip().split("\n")

    # 1. Markdown fence.  The opening fence may follow a line of prose.
    if lines and _FENCE_LINE.match(lines[-1].strip()):
        lines.pop()
    for index, line in enumerate(lines):
        if _FENCE_LINE.match(line.strip()):
            del lines[index]
            break
        if _looks_like_code(line):
            break
    text = "\n".join(lines)

    # 2. Tool-call blocks.
    text = _TOOL_CALL_BLOCK.sub("", text)

    # 3. Conversational preamble.
    lines = text.split("\n")
    for index, line in enumerate(lines):
        if _looks_like_code(line):
            lines = lines[index:]
            break

    return "\n".join(lines).strip()


def _constraints_block(sdd_constraints: str | None) -> str:
    if not sdd_constraints:
        return ""
    return f"\nProject constraints:\n{sdd_constraints}\n"


class CodeGenerator:
    """Generates file content through the generation service.

    Args:
        service: Generation service used in free-text mode.
        settings: Supplies the code temperature and token budget.
    """

    def __init__(self, service: GenerationService, settings: Settings) -> None:
        self._service = service
        self._settings = settings

    async def generate_code_for_file(
        self,
        task: str,
        file_path: str,
        code_description: str,
        context: str,
        language: str,
        sdd_constraints: str | None = None,
    ) -> str:
        """Generate the content of a new file.

        Args:
            task: The overall task, for orientation.
            file_path: Project-relative path of the file to create.
            code_description: What the file must contain, in prose.
            context: Related files already known to the run.
            language: Target language name.
            sdd_constraints: Optional project design constraints.

        Returns:
            Cleaned file content.

        Raises:
            CodeGenerationError: If the model returned no code.
        """
        user_text = (
            f"Overall task: {task}\n"
            "\n"
            f"File to create: {file_path}\n"
            f"What it must contain: {code_description}\n"
            "\n"
            "Related files:\n"
            f"{context or '(none)'}\n"
            "\n"
            "Write the complete file now."
        )
        system = _CODE_SYSTEM_PROMPT.format(
            language=language,
            constraints=_constraints_block(sdd_constraints),
        )
        return await self._generate(system, user_text, file_path)

    async def generate_modified_code(
        self,
        original_code: str,
        change_description: str,
        file_path: str,
        language: str,
        sdd_constraints: str | None = None,
    ) -> str:
        """Generate the full new content of an existing file.

        Args:
            original_code: Current file content.
            change_description: The change to make, in prose.
            file_path: Project-relative path of the file.
            language: Target language name.
            sdd_constraints: Optional project design constraints.

        Returns:
            Cleaned, complete modified file content.

        Raises:
            CodeGenerationError: If the model returned no code.
        """
        user_text = (
            f"File: {file_path}\n"
            "\n"
            "Current content:\n"
            f"```{language}\n{original_code}\n```\n"
            "\n"
            f"Change to make: {change_description}\n"
            "\n"
            "Write the complete modified file now."
        )
        system = _MODIFY_SYSTEM_PROMPT.format(
            language=language,
            constraints=_constraints_block(sdd_constraints),
        )
        return await self._generate(system, user_text, file_path)

    async def _generate(self, system: str, user_text: str, file_path: str) -> str:
        raw = await self._service.generate_text(
            [Message(role="user", content=user_text)],
            system=system,
            temperature=self._settings.code_temperature,
            max_tokens=self._settings.code_max_tokens,
        )
        code = clean_generated_code(raw)
        if not code:
            raise CodeGenerationError(f"Model returned no code for {file_path}")
        logger.debug(
            "CodeGenerator: %s -> %d chars (raw %d)",
            file_path,
            len(code),
            len(raw),
        )
        return code
