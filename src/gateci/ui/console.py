"""Console output formatting utilities for gateci."""

from __future__ import annotations

import sys
import threading
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from gateci.model import JobResult, PipelineContext, PublishResult, RunResult


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug
        # jobs run in parallel threads; keep multi-line blocks together
        self._lock = threading.Lock()

    def _emit(self, *lines: str, err: bool = False) -> None:
        stream = sys.stderr if err else sys.stdout
        with self._lock:
            for line in lines:
                print(line, file=stream)

    def print_run_started(
        self,
        workflow: str,
        context: "PipelineContext",
        job_count: int,
    ) -> None:
        """Print run start information."""
        lines = [
            "\nRUN STARTED",
            f"Workflow: {workflow}",
            f"Ref: {context.ref}",
            f"Event: {context.event.value}",
        ]
        if context.sha:
            lines.append(f"Commit: {context.sha}")
        lines.extend([f"Jobs: {job_count}", ""])
        self._emit(*lines)

    def print_plan(self, levels: list[list[str]]) -> None:
        """Print the execution stages."""
        lines = ["PLAN"]
        for idx, level in enumerate(levels):
            lines.append(f"  Stage {idx + 1}: {', '.join(level)}")
        self._emit(*lines)

    def print_job_start(self, name: str) -> None:
        self._emit(f"\nJOB STARTED: {name}")

    def print_step(self, job: str, name: str) -> None:
        self._emit(f"[{job}] STEP: {name}")

    def print_job_finished(self, result: "JobResult") -> None:
        """Print the terminal state of a job that was attempted."""
        from gateci.model import JobStatus

        if result.status is JobStatus.SUCCEEDED:
            lines = [f"[{result.job}] STATUS: success"]
            for a in result.artifacts:
                lines.append(f"[{result.job}] ARTIFACT: {a.name} ({a.size} bytes, sha256 {a.digest[:12]}...)")
            self._emit(*lines)
            return

        lines = [f"JOB FAILED: {result.job}"]
        failing = [s for s in result.steps if not s.ok]
        if failing and failing[-1].exit_code is not None:
            lines.append(f"Exit code: {failing[-1].exit_code}")
        if self.debug and result.error is not None:
            lines.append(f"Error details: {result.error}")
        else:
            lines.append(f"Error: {result.reason}")
        if failing and failing[-1].stderr:
            tail = failing[-1].stderr.strip().splitlines()[-10:]
            lines.append("stderr (tail):")
            lines.extend(f"  {t}" for t in tail)
        self._emit(*lines)

    def print_job_skipped(self, name: str, reason: str) -> None:
        """Print job skipped message."""
        self._emit(f"\nJOB SKIPPED: {name}", f"STATUS: skipped ({reason})")

    def print_publish(self, result: "PublishResult") -> None:
        lines = [f"RELEASE: {result.tag} -> {result.status.value}"]
        if result.replaced_release_id:
            lines.append(f"  replaced release {result.replaced_release_id}")
        if result.release_id:
            lines.append(f"  release id {result.release_id}")
        for name in result.assets:
            lines.append(f"  asset {name}")
        if result.error:
            lines.append(f"  error: {result.error}")
        self._emit(*lines)

    def print_results(self, run: "RunResult") -> None:
        """Print final results summary."""
        lines = ["\n" + "=" * 40, "RESULTS", "=" * 40]
        for job, result in run.results.items():
            status_display = result.status.value.upper()
            if result.reason:
                status_display = f"{status_display} ({result.reason})"
            lines.append(f"  {job}: {status_display}")
        lines.append(f"RUN: {run.status.value.upper()}" + (" (cancelled)" if run.cancelled else ""))
        self._emit(*lines)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", message]
        if details:
            lines.extend(f"  {detail}" for detail in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._emit(*lines, err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            with self._lock:
                traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._emit(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._emit(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._emit(f"[DEBUG] {message}", err=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
