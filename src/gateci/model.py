# model.py
from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Dict, Optional, Tuple

if TYPE_CHECKING:
    from .conditions import Condition
    from .errors import CIError


class EventKind(str, Enum):
    """The external event that started a pipeline invocation."""
    PUSH = "push"
    PULL_REQUEST = "pull_request"
    SCHEDULE = "schedule"

    @classmethod
    def parse(cls, value: str | EventKind) -> EventKind:
        if isinstance(value, EventKind):
            return value
        norm = value.strip().lower().replace("-", "_")
        try:
            return cls(norm)
        except ValueError:
            known = ", ".join(e.value for e in cls)
            raise ValueError(f"Unknown event {value!r}. Known events: {known}") from None


@dataclass(frozen=True)
class PipelineContext:
    """Per-invocation facts. Passed explicitly to every predicate and job."""
    ref: str
    event: EventKind
    sha: str | None = None

    def as_env(self) -> Dict[str, str]:
        env = {"GATECI_REF": self.ref, "GATECI_EVENT": self.event.value}
        if self.sha:
            env["GATECI_SHA"] = self.sha
        return env


@dataclass(frozen=True)
class Step:
    """A single command (step) inside a CI job."""
    name: str
    run: str
    cwd: str | None = None


@dataclass(frozen=True)
class AssetMapping:
    """Local file (relative to the publishing job's workspace) -> remote asset name."""
    path: str
    name: str | None = None

    @property
    def remote_name(self) -> str:
        return self.name or os.path.basename(self.path.rstrip("/"))


@dataclass(frozen=True)
class ReleaseTarget:
    """
    A floating release: publishing the same `tag` again replaces the
    previous release instead of adding another one.
    """
    tag: str
    title: str
    prerelease: bool = False
    files: Tuple[AssetMapping, ...] = ()
    body: str = ""


@dataclass(frozen=True)
class Job:
    """
    A CI job: ordered steps + dependencies + the artifacts it produces/consumes.

    outputs: artifact name -> path (relative to the job workspace) the job promises to create
    inputs:  artifacts consumed from jobs in `needs`, as "name" or "job/name"
    """
    name: str
    steps: Tuple[Step, ...] = ()
    needs: Tuple[str, ...] = ()
    outputs: Dict[str, str] = field(default_factory=dict)
    inputs: Tuple[str, ...] = ()
    env: Dict[str, str] = field(default_factory=dict)
    condition: Optional["Condition"] = None
    checkout: bool = False
    release: ReleaseTarget | None = None


class JobStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class StepResult:
    name: str
    command: str
    exit_code: int | None
    stdout: str = ""
    stderr: str = ""
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.cancelled


@dataclass(frozen=True)
class Artifact:
    """An immutable named output of a job. `digest` doubles as the content handle."""
    job: str
    name: str
    digest: str
    size: int
    filename: str

    @property
    def handle(self) -> str:
        return self.digest

    @property
    def key(self) -> str:
        return f"{self.job}/{self.name}"


class PublishStatus(str, Enum):
    PUBLISHED = "published"
    # nothing changed remotely
    FAILED = "failed"
    # remote state was altered (old release deleted and/or partial upload)
    RETRYABLE = "retryable"


@dataclass(frozen=True)
class PublishResult:
    tag: str
    status: PublishStatus
    release_id: str | None = None
    replaced_release_id: str | None = None
    assets: Tuple[str, ...] = ()
    attempts: int = 1
    error: str | None = None


@dataclass(frozen=True)
class JobResult:
    job: str
    status: JobStatus
    reason: str = ""
    steps: Tuple[StepResult, ...] = ()
    artifacts: Tuple[Artifact, ...] = ()
    error: Optional["CIError"] = None
    publish: PublishResult | None = None

    @classmethod
    def skipped(cls, job: str, reason: str) -> JobResult:
        return cls(job=job, status=JobStatus.SKIPPED, reason=reason)

    @property
    def exit_codes(self) -> Tuple[int | None, ...]:
        return tuple(s.exit_code for s in self.steps)

    def artifact(self, name: str) -> Artifact | None:
        for a in self.artifacts:
            if a.name == name:
                return a
        return None


@dataclass(frozen=True)
class RunResult:
    status: JobStatus
    results: Dict[str, JobResult]
    cancelled: bool = False

    @property
    def succeeded(self) -> bool:
        return self.status is JobStatus.SUCCEEDED

    def __getitem__(self, job_name: str) -> JobResult:
        return self.results[job_name]
