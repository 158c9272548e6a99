"""Configuration settings for healforge."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or overrides."""

    model_config = SettingsConfigDict(
        env_prefix="", case_sensitive=False, populate_by_name=True
    )

    openai_api_key: str | None = Field(default=None, validation_alias="OPENAI_API_KEY")
    openai_base_url: str = Field(
        default="https://api.openai.com/v1", validation_alias="OPENAI_BASE_URL"
    )
    openai_model: str = Field(default="gpt-4.1-mini", validation_alias="OPENAI_MODEL")
    openai_timeout_seconds: int = Field(
        default=60, validation_alias="OPENAI_TIMEOUT_SECONDS"
    )
    openai_extra_headers: str | None = Field(
        default=None, validation_alias="OPENAI_EXTRA_HEADERS"
    )
    ai_cost_per_1k_tokens: float = Field(
        default=0.002, validation_alias="AI_COST_PER_1K_TOKENS"
    )

    workspace_dir: str = Field(default=".healforge", validation_alias="HEALFORGE_WORKSPACE")
    element_registry_path: str | None = Field(
        default=None, validation_alias="ELEMENT_REGISTRY_PATH"
    )
    drafts_dir: str | None = Field(default=None, validation_alias="DRAFTS_DIR")

    agent_max_iterations: int = Field(default=20, validation_alias="AGENT_MAX_ITERATIONS")
    agent_max_ai_cost: float = Field(default=5.0, validation_alias="AGENT_MAX_AI_COST")
    agent_approval_timeout_seconds: int = Field(
        default=3600, validation_alias="AGENT_APPROVAL_TIMEOUT_SECONDS"
    )
    agent_approval_poll_seconds: float = Field(
        default=5.0, validation_alias="AGENT_APPROVAL_POLL_SECONDS"
    )
    agent_max_workers: int = Field(default=4, validation_alias="AGENT_MAX_WORKERS")

    heal_verification_runs: int = Field(default=3, validation_alias="HEAL_VERIFICATION_RUNS")
    heal_page_html_max_chars: int = Field(
        default=50_000, validation_alias="HEAL_PAGE_HTML_MAX_CHARS"
    )
    default_base_url: str = Field(
        default="https://www.saucedemo.com", validation_alias="DEFAULT_BASE_URL"
    )

    flaky_stability_check_runs: int = Field(
        default=5, validation_alias="FLAKY_STABILITY_CHECK_RUNS"
    )
    flaky_verification_runs: int = Field(
        default=5, validation_alias="FLAKY_VERIFICATION_RUNS"
    )
    flaky_max_fix_attempts: int = Field(default=3, validation_alias="FLAKY_MAX_FIX_ATTEMPTS")
    flaky_threshold: float = Field(default=0.2, validation_alias="FLAKY_THRESHOLD")

    browser_headless: bool = Field(default=True, validation_alias="BROWSER_HEADLESS")
    browser_timeout_ms: int = Field(default=30_000, validation_alias="BROWSER_TIMEOUT_MS")

    git_repo_path: str | None = Field(default=None, validation_alias="GIT_REPO_PATH")
    git_remote: str = Field(default="origin", validation_alias="GIT_REMOTE")
    git_base_branch: str = Field(default="main", validation_alias="GIT_BASE_BRANCH")
    github_repository: str | None = Field(default=None, validation_alias="GITHUB_REPOSITORY")
    github_token: str | None = Field(default=None, validation_alias="GITHUB_TOKEN")
    github_api_url: str = Field(
        default="https://api.github.com", validation_alias="GITHUB_API_URL"
    )

    @property
    def workspace_path(self) -> Path:
        return Path(self.workspace_dir)

    @property
    def db_path(self) -> Path:
        return self.workspace_path / "healforge.sqlite"

    @property
    def registry_path(self) -> Path:
        if self.element_registry_path:
            return Path(self.element_registry_path)
        return self.workspace_path / "element-registry.json"

    @property
    def drafts_path(self) -> Path:
        if self.drafts_dir:
            return Path(self.drafts_dir)
        return self.workspace_path / "drafts"
