"""Git operations used to land fixes."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
import shutil
import subprocess
from typing import Callable

import httpx
from pydantic import BaseModel

from healforge.errors import GitOperationError
from healforge.util.logging import get_logger, redact

logger = get_logger(__name__)


class GitConfig(BaseModel):
    repo_path: str
    remote: str = "origin"
    base_branch: str = "main"
    artifacts_subdir: str = "tests/healed"
    push: bool = True
    github_repository: str | None = None
    github_token: str | None = None
    github_api_url: str = "https://api.github.com"


class PullRequestInfo(BaseModel):
    url: str
    number: int


GitConfigProvider = Callable[[], GitConfig | None]


class GitOperations(ABC):
    @abstractmethod
    def create_branch(self, config: GitConfig, branch_name: str) -> str:
        raise NotImplementedError

    @abstractmethod
    def commit(
        self, config: GitConfig, branch_name: str, file_paths: list[str], message: str
    ) -> str:
        """Commit files on the branch and return the commit sha."""
        raise NotImplementedError

    @abstractmethod
    def create_pull_request(
        self, config: GitConfig, branch_name: str, title: str, body: str
    ) -> PullRequestInfo:
        raise NotImplementedError


class GitCliOperations(GitOperations):
    """Drives the ``git`` binary in a local clone and opens PRs on GitHub."""

    def __init__(self, transport: httpx.BaseTransport | None = None, timeout_seconds: int = 30) -> None:
        self.transport = transport
        self.timeout_seconds = timeout_seconds

    def _git(self, config: GitConfig, *args: str) -> str:
        completed = subprocess.run(
            ["git", *args],
            cwd=config.repo_path,
            capture_output=True,
            text=True,
            check=False,
        )
        if completed.returncode != 0:
            raise GitOperationError(
                f"git {' '.join(args)} failed: {completed.stderr.strip() or completed.stdout.strip()}"
            )
        return completed.stdout.strip()

    def create_branch(self, config: GitConfig, branch_name: str) -> str:
        self._git(config, "checkout", config.base_branch)
        existing = self._git(config, "branch", "--list", branch_name)
        if existing:
            self._git(config, "checkout", branch_name)
        else:
            self._git(config, "checkout", "-b", branch_name)
        logger.info("Checked out branch %s in %s", branch_name, config.repo_path)
        return branch_name

    def _stage_path(self, config: GitConfig, file_path: str) -> str:
        repo = Path(config.repo_path).resolve()
        source = Path(file_path).resolve()
        if source.is_relative_to(repo):
            return str(source.relative_to(repo))
        target = repo / config.artifacts_subdir / source.name
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, target)
        return str(target.relative_to(repo))

    def commit(
        self, config: GitConfig, branch_name: str, file_paths: list[str], message: str
    ) -> str:
        self._git(config, "checkout", branch_name)
        staged = [self._stage_path(config, path) for path in file_paths]
        self._git(config, "add", "--", *staged)
        self._git(config, "commit", "-m", message)
        sha = self._git(config, "rev-parse", "HEAD")
        if config.push:
            self._git(config, "push", "-u", config.remote, branch_name)
        logger.info("Committed %d file(s) on %s as %s", len(staged), branch_name, sha[:8])
        return sha

    def create_pull_request(
        self, config: GitConfig, branch_name: str, title: str, body: str
    ) -> PullRequestInfo:
        if not config.github_repository or not config.github_token:
            raise GitOperationError("GitHub repository or token not configured for pull requests")
        url = f"{config.github_api_url.rstrip('/')}/repos/{config.github_repository}/pulls"
        headers = {
            "Authorization": f"Bearer {config.github_token}",
            "Accept": "application/vnd.github+json",
        }
        payload = {"title": title, "body": body, "head": branch_name, "base": config.base_branch}
        try:
            with httpx.Client(
                timeout=httpx.Timeout(self.timeout_seconds), transport=self.transport
            ) as client:
                response = client.post(url, headers=headers, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise GitOperationError(
                redact(f"Pull request creation failed: {exc}", [config.github_token])
            ) from exc
        data = response.json()
        return PullRequestInfo(url=data["html_url"], number=int(data["number"]))
