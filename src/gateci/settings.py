from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .artifacts import DEFAULT_ARTIFACT_DIR
from .release_client import DEFAULT_API_URL, DEFAULT_UPLOADS_URL
from .runner import DEFAULT_WORKSPACE_DIR


@dataclass(frozen=True)
class Settings:
    workspace_dir: str = DEFAULT_WORKSPACE_DIR
    artifact_dir: str = DEFAULT_ARTIFACT_DIR
    max_workers: Optional[int] = None
    publish_attempts: int = 3
    publish_backoff: float = 2.0
    github_token: Optional[str] = None
    github_repository: Optional[str] = None
    github_api_url: str = DEFAULT_API_URL
    github_uploads_url: str = DEFAULT_UPLOADS_URL

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if environ is None else environ
        workers = env.get("GATECI_MAX_WORKERS")
        return cls(
            workspace_dir=env.get("GATECI_WORKSPACE", DEFAULT_WORKSPACE_DIR),
            artifact_dir=env.get("GATECI_ARTIFACTS", DEFAULT_ARTIFACT_DIR),
            max_workers=int(workers) if workers else None,
            publish_attempts=int(env.get("GATECI_PUBLISH_ATTEMPTS", "3")),
            publish_backoff=float(env.get("GATECI_PUBLISH_BACKOFF", "2")),
            github_token=env.get("GITHUB_TOKEN") or None,
            github_repository=env.get("GITHUB_REPOSITORY") or None,
            github_api_url=env.get("GITHUB_API_URL", DEFAULT_API_URL),
            github_uploads_url=env.get("GITHUB_UPLOADS_URL", DEFAULT_UPLOADS_URL),
        )
