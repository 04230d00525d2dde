"""Configuration defaults for the CodePlan Agent.

Provides the ``Settings`` dataclass that holds every tunable parameter
for the generation backend, HTTP transport, planner, executor, and the
local tool backends.

Typical usage::

    from codeplan_agent.config.settings import get_default_settings

    settings = get_default_settings()
    print(settings.plan_temperature)
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any


@dataclass(frozen=True)
class Settings:
    """Immutable configuration for the entire CodePlan Agent.

    Each attribute group maps to one architectural component.

    Attributes:
        llm_provider: Generation backend to use.  One of
            ``"anthropic"`` or ``"openai"`` (any OpenAI-compatible
            chat-completions endpoint).
        model: Model identifier passed to the provider.
        api_base_url: Optional base URL override (proxies or
            compatible APIs).  Empty means the provider default, or
            the ``<PROVIDER>_BASE_URL`` environment variable.
        max_tokens: Default token budget for structured (plan)
            generation.
        code_max_tokens: Token budget for free-text code generation.
            Larger than ``max_tokens`` because whole files come back.
        plan_temperature: Sampling temperature for plan generation.
            Kept low so the output stays schema-conformant.
        code_temperature: Sampling temperature for code generation.
        api_timeout_text_seconds: HTTP timeout for text requests.
        api_max_retries: Maximum number of attempts for transient API
            failures.
        api_backoff_base_seconds: Base delay for exponential back-off
            between API retries.
        max_plan_steps: Plans longer than this are truncated.
        context_truncate_chars: Each context file is cut to this many
            characters before being sent to the code generator.
        default_language: Language assumed when a file extension is
            not recognised.
        command_timeout_seconds: Wall-clock limit for ``run_command``.
        rollback_on_failure: When a step failure halts the batch, undo
            the writes of the steps that already completed.
        project_root: Directory that all file tools are confined to.
        snapshot_dir: Directory (relative to ``project_root``) where
            rollback snapshots are persisted.
    """

    # -- LLM ------------------------------------------------------------------
    llm_provider: str = "anthropic"
    model: str = "claude-sonnet-4-20250514"
    api_base_url: str = ""
    max_tokens: int = 4096
    code_max_tokens: int = 8192
    plan_temperature: float = 0.3
    code_temperature: float = 0.2

    # -- API settings ---------------------------------------------------------
    api_timeout_text_seconds: float = 120.0
    api_max_retries: int = 3
    api_backoff_base_seconds: float = 2.0

    # -- Planner --------------------------------------------------------------
    max_plan_steps: int = 20

    # -- Executor -------------------------------------------------------------
    context_truncate_chars: int = 1000
    default_language: str = "typescript"
    command_timeout_seconds: float = 120.0
    rollback_on_failure: bool = True

    # -- Project --------------------------------------------------------------
    project_root: str = "."
    snapshot_dir: str = ".codeplan/snapshots"

    # -- Factory & serialisation ----------------------------------------------

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Settings:
        """Create a ``Settings`` instance from a plain dictionary.

        Unknown keys are silently ignored so that forward-compatible
        config files do not break older agent versions.

        Args:
            data: Dictionary whose keys correspond to ``Settings``
                field names.

        Returns:
            A new ``Settings`` instance populated from *data*, with
            defaults filling any missing keys.
        """
        known_names = {f.name for f in fields(cls)}
        filtered = {k: v for k, v in data.items() if k in known_names}
        return cls(**filtered)

    def to_dict(self) -> dict[str, Any]:
        """Serialise the settings to a plain dictionary."""
        return asdict(self)


def get_default_settings() -> Settings:
    """Return a ``Settings`` instance with all default values.

    Call ``Settings.from_dict`` when you need to overlay user overrides
    on top of the defaults.
    """
    return Settings()
