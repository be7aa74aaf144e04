# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Tuple

from .model import PublishResult, PublishStatus


class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - a JobResult that explains why downstream work was skipped
      - debugging without full tracebacks
    """
    kind = "ci_error"
    job: str = ""
    step: str | None = None

    @property
    def message(self) -> str:
        return str(self.args[0]) if self.args else self.kind

    @property
    def details(self) -> Dict[str, object]:
        return {}

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.job:
            lines.append(f"job={self.job}")
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


# ----------------------------------------------------------------------
# Load-time errors (pipeline never starts)
# ----------------------------------------------------------------------

class DefinitionError(CIError):
    kind = "definition_error"


@dataclass(eq=False, kw_only=True)
class CyclicDependencyError(DefinitionError):
    cycle: Tuple[str, ...]

    kind = "cyclic_dependency"

    @property
    def message(self) -> str:
        return "dependency cycle: " + " -> ".join(self.cycle)


@dataclass(eq=False, kw_only=True)
class UnknownConditionFieldError(DefinitionError):
    field_name: str
    known: Tuple[str, ...]
    job: str = ""

    kind = "unknown_condition_field"

    @property
    def message(self) -> str:
        return f"condition references unknown field {self.field_name!r} (known: {', '.join(self.known)})"


@dataclass(eq=False, kw_only=True)
class DuplicateArtifactError(DefinitionError):
    job: str
    name: str

    kind = "duplicate_artifact"

    @property
    def message(self) -> str:
        return f"artifact '{self.job}/{self.name}' already exists"


# ----------------------------------------------------------------------
# Run-time errors (recorded on JobResult.error, never re-raised)
# ----------------------------------------------------------------------

@dataclass(eq=False, kw_only=True)
class StepFailure(CIError):
    job: str
    step: str
    cmd: str
    exit_code: int | None
    stderr: str = ""

    kind = "step_failed"

    @property
    def message(self) -> str:
        if self.exit_code is None:
            return f"step '{self.step}' could not be started: {self.stderr.strip()}"
        return f"step '{self.step}' failed (exit={self.exit_code}): {self.cmd}"


@dataclass(eq=False, kw_only=True)
class MissingOutputError(CIError):
    job: str
    missing: Dict[str, str] = field(default_factory=dict)

    kind = "missing_output"

    @property
    def message(self) -> str:
        names = ", ".join(f"{n} ({p})" for n, p in sorted(self.missing.items()))
        return f"missing declared output: {names}"


@dataclass(eq=False, kw_only=True)
class JobCancelled(CIError):
    job: str
    step: str | None = None

    kind = "cancelled"

    @property
    def message(self) -> str:
        return "cancelled"


class ReleaseAPIError(CIError):
    """Raised by a release host when a remote request fails."""
    kind = "release_api_error"

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


@dataclass(eq=False, kw_only=True)
class PublishFailure(CIError):
    result: PublishResult
    stage: str
    reason: str
    transient: bool = True

    kind = "publish_failed"

    @property
    def message(self) -> str:
        return f"publishing '{self.result.tag}' failed at {self.stage}: {self.reason}"

    @property
    def details(self) -> Dict[str, object]:
        d: Dict[str, object] = {"status": self.result.status.value}
        if self.result.status is PublishStatus.RETRYABLE:
            d["hint"] = "remote release state was altered; re-run the publish to converge"
        return d

    @property
    def retryable(self) -> bool:
        return self.result.status is PublishStatus.RETRYABLE
