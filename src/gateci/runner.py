# runner.py
from __future__ import annotations

import os
import runpy
import shutil
import signal
import subprocess
import threading
import time
import uuid
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from . import conditions
from .artifacts import DEFAULT_ARTIFACT_DIR, ArtifactStore
from .dag import build_dag, topo_levels
from .errors import (
    CIError,
    DefinitionError,
    DuplicateArtifactError,
    JobCancelled,
    MissingOutputError,
    PublishFailure,
    StepFailure,
)
from .model import (
    Artifact,
    EventKind,
    Job,
    JobResult,
    JobStatus,
    PipelineContext,
    PublishResult,
    PublishStatus,
    RunResult,
    Step,
    StepResult,
)
from .publish import Publisher
from .ui.console import get_console

DEFAULT_WORKSPACE_DIR = ".gateci/work"

# keep the tail of step output in results; enough for a compiler error
MAX_CAPTURED_OUTPUT = 16_000

# how often a running step checks for cancellation
_POLL_SECONDS = 0.1

CHECKOUT_IGNORE = shutil.ignore_patterns(".git", ".gateci", "__pycache__")


def new_run_id() -> str:
    return time.strftime("%Y%m%dT%H%M%S") + "-" + uuid.uuid4().hex[:8]


# ----------------------------------------------------------------------
# Execution primitives
# ----------------------------------------------------------------------

def _run_step(
    job: Job,
    step: Step,
    workspace: Path,
    env: Mapping[str, str],
    cancel: threading.Event | None,
) -> StepResult:
    cwd = (workspace / (step.cwd or ".")).resolve()
    if not cwd.is_dir():
        return StepResult(
            name=step.name,
            command=step.run,
            exit_code=None,
            stderr=f"cwd not found: {cwd}",
        )

    proc = subprocess.Popen(
        step.run,
        shell=True,
        cwd=str(cwd),
        env=dict(env),
        text=True,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        start_new_session=True,
    )

    cancelled = False
    while True:
        try:
            stdout, stderr = proc.communicate(timeout=_POLL_SECONDS)
            break
        except subprocess.TimeoutExpired:
            if cancel is not None and cancel.is_set():
                _kill(proc)
                stdout, stderr = proc.communicate()
                cancelled = True
                break

    return StepResult(
        name=step.name,
        command=step.run,
        exit_code=proc.returncode,
        stdout=(stdout or "")[-MAX_CAPTURED_OUTPUT:],
        stderr=(stderr or "")[-MAX_CAPTURED_OUTPUT:],
        cancelled=cancelled,
    )


def _kill(proc: subprocess.Popen) -> None:
    """Kill the step shell and everything it started."""
    if hasattr(os, "killpg"):
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass  # already exited
    else:
        proc.kill()


def _prepare_workspace(workspace_root: Path, job: Job, source_dir: Path | None) -> Path:
    workspace = workspace_root / job.name
    if workspace.exists():
        shutil.rmtree(workspace)
    if job.checkout and source_dir is not None:
        shutil.copytree(source_dir, workspace, ignore=CHECKOUT_IGNORE, symlinks=True)
    else:
        workspace.mkdir(parents=True)
    return workspace


def execute_job(
    job: Job,
    context: PipelineContext,
    inputs: Mapping[str, Artifact],
    *,
    store: ArtifactStore,
    workspace_root: str | Path = DEFAULT_WORKSPACE_DIR,
    source_dir: str | Path | None = None,
    publisher: Publisher | None = None,
    cancel: threading.Event | None = None,
) -> JobResult:
    """
    Run one job in its own workspace and return its terminal result.

    inputs: artifact name -> Artifact, already produced by SUCCEEDED upstream jobs.

    Failures are returned as FAILED results, never raised.
    """
    console = get_console()
    console.print_job_start(job.name)

    workspace = _prepare_workspace(
        Path(workspace_root).resolve(),
        job,
        Path(source_dir).resolve() if source_dir is not None else None,
    )

    # ---- fetch inputs before any step runs ----
    for name, artifact in inputs.items():
        store.materialize(artifact, workspace / name)

    env = os.environ.copy()
    env.update(job.env)
    env.update(context.as_env())
    env["GATECI_JOB"] = job.name
    env["GATECI_WORKSPACE"] = str(workspace)

    # ---- run steps (stop at the first failure) ----
    step_results: List[StepResult] = []
    for step in job.steps:
        if cancel is not None and cancel.is_set():
            err = JobCancelled(job=job.name, step=step.name)
            return JobResult(job.name, JobStatus.FAILED, "cancelled", tuple(step_results), error=err)

        console.print_step(job.name, step.name)
        result = _run_step(job, step, workspace, env, cancel)
        step_results.append(result)

        if result.cancelled:
            err = JobCancelled(job=job.name, step=step.name)
            return JobResult(job.name, JobStatus.FAILED, "cancelled", tuple(step_results), error=err)
        if not result.ok:
            err = StepFailure(
                job=job.name,
                step=step.name,
                cmd=step.run,
                exit_code=result.exit_code,
                stderr=result.stderr,
            )
            return JobResult(job.name, JobStatus.FAILED, err.message, tuple(step_results), error=err)

    steps_done = tuple(step_results)

    # ---- outputs: all must exist before any is published to the store ----
    missing = {
        name: rel for name, rel in job.outputs.items()
        if not (workspace / rel).is_file()
    }
    if missing:
        err = MissingOutputError(job=job.name, missing=missing)
        return JobResult(job.name, JobStatus.FAILED, err.message, steps_done, error=err)

    produced: List[Artifact] = []
    try:
        for name, rel in job.outputs.items():
            produced.append(store.put_file(job.name, name, workspace / rel))
    except DuplicateArtifactError as err:
        return JobResult(job.name, JobStatus.FAILED, err.message, steps_done, error=err)

    # ---- publish ----
    publish_result: PublishResult | None = None
    if job.release is not None:
        if publisher is None:
            publish_result = PublishResult(
                tag=job.release.tag,
                status=PublishStatus.FAILED,
                error="no release host configured",
            )
            err = PublishFailure(result=publish_result, stage="configure", reason=publish_result.error, transient=False)
            err.job = job.name
            console.print_publish(publish_result)
            return JobResult(job.name, JobStatus.FAILED, err.message, steps_done, tuple(produced), err, publish_result)

        try:
            publish_result = publisher.publish(job.release, workspace, commitish=context.sha)
        except PublishFailure as err:
            err.job = job.name
            console.print_publish(err.result)
            return JobResult(job.name, JobStatus.FAILED, err.message, steps_done, tuple(produced), err, err.result)
        console.print_publish(publish_result)

    return JobResult(
        job=job.name,
        status=JobStatus.SUCCEEDED,
        steps=steps_done,
        artifacts=tuple(produced),
        publish=publish_result,
    )


# ----------------------------------------------------------------------
# Pipeline graph
# ----------------------------------------------------------------------

def _split_input(ref: str) -> Tuple[Optional[str], str]:
    if "/" in ref:
        job_name, name = ref.split("/", 1)
        return job_name, name
    return None, ref


class Pipeline:
    """
    A validated DAG of jobs.

    Construction fails with a DefinitionError for duplicate names, unknown
    `needs`, cycles, bad conditions and unresolvable inputs, so a pipeline
    object that exists is always runnable.
    """

    def __init__(self, jobs: Iterable[Job], *, triggers: Optional[Iterable[str | EventKind]] = None):
        self.jobs: List[Job] = list(jobs)
        self.by_name: Dict[str, Job] = {j.name: j for j in self.jobs}
        self.triggers: Optional[Tuple[EventKind, ...]] = None
        if triggers is not None:
            try:
                self.triggers = tuple(EventKind.parse(t) for t in triggers)
            except ValueError as e:
                raise DefinitionError(f"invalid trigger: {e}") from None

        self.adj, self.indeg = build_dag(self.jobs)
        self.levels = topo_levels(self.adj, self.indeg)

        for job in self.jobs:
            conditions.validate(job.condition, job=job.name)
        # job name -> {local artifact name -> (producer job, artifact name)}
        self.bindings: Dict[str, Dict[str, Tuple[str, str]]] = {
            job.name: self._bind_inputs(job) for job in self.jobs
        }

    def _bind_inputs(self, job: Job) -> Dict[str, Tuple[str, str]]:
        bound: Dict[str, Tuple[str, str]] = {}
        for ref in job.inputs:
            producer, name = _split_input(ref)
            if producer is not None:
                if producer not in job.needs:
                    raise DefinitionError(
                        f"Job '{job.name}' consumes '{ref}' but does not need job '{producer}'"
                    )
                if name not in self.by_name[producer].outputs:
                    raise DefinitionError(f"Job '{job.name}' consumes '{ref}', which '{producer}' does not produce")
            else:
                candidates = [d for d in job.needs if name in self.by_name[d].outputs]
                if not candidates:
                    raise DefinitionError(
                        f"Job '{job.name}' consumes '{name}', which none of {list(job.needs)} produce"
                    )
                if len(candidates) > 1:
                    raise DefinitionError(
                        f"Job '{job.name}' input '{name}' is ambiguous (produced by {candidates}); "
                        f"use 'job/{name}'"
                    )
                producer = candidates[0]

            if name in bound:
                raise DefinitionError(f"Job '{job.name}' consumes two artifacts named '{name}'")
            bound[name] = (producer, name)
        return bound

    # ---- gating ----

    def _gate(self, job: Job, context: PipelineContext, results: Dict[str, JobResult]) -> JobResult | None:
        """Return a SKIPPED result if the job must not run, else None."""
        for dep in job.needs:
            status = results[dep].status
            if status is JobStatus.FAILED:
                return JobResult.skipped(job.name, f"dependency '{dep}' failed")
            if status is JobStatus.SKIPPED:
                return JobResult.skipped(job.name, f"dependency '{dep}' was skipped")
        if not conditions.evaluate(job.condition, context):
            return JobResult.skipped(job.name, "condition not met")
        return None

    def _inputs_for(self, job: Job, results: Dict[str, JobResult]) -> Dict[str, Artifact]:
        resolved: Dict[str, Artifact] = {}
        for local, (producer, name) in self.bindings[job.name].items():
            artifact = results[producer].artifact(name)
            if artifact is None:
                # producer SUCCEEDED, so its declared outputs were all stored
                raise RuntimeError(f"artifact '{producer}/{name}' missing from a succeeded job")
            resolved[local] = artifact
        return resolved

    # ---- run ----

    def run(
        self,
        context: PipelineContext,
        *,
        store: ArtifactStore | None = None,
        workspace_root: str | Path = DEFAULT_WORKSPACE_DIR,
        source_dir: str | Path | None = ".",
        publisher: Publisher | None = None,
        max_workers: int | None = None,
        cancel: threading.Event | None = None,
    ) -> RunResult:
        console = get_console()
        results: Dict[str, JobResult] = {}

        if self.triggers is not None and context.event not in self.triggers:
            reason = f"event '{context.event.value}' does not trigger this pipeline"
            for job in self.jobs:
                results[job.name] = JobResult.skipped(job.name, reason)
                console.print_job_skipped(job.name, reason)
            return RunResult(status=JobStatus.SUCCEEDED, results=results)

        if store is None:
            store = ArtifactStore(Path(DEFAULT_ARTIFACT_DIR) / new_run_id())
        if max_workers is None:
            c = os.cpu_count() or 2
            max_workers = max(1, c - 1)

        indeg = dict(self.indeg)
        ready: List[str] = sorted(name for name, deg in indeg.items() if deg == 0)
        in_flight: Dict[Future, str] = {}
        cancelled = False

        def finish(name: str, result: JobResult) -> None:
            results[name] = result
            if result.status is JobStatus.SKIPPED:
                console.print_job_skipped(name, result.reason)
            else:
                console.print_job_finished(result)
            for nxt in sorted(self.adj[name]):
                indeg[nxt] -= 1
                if indeg[nxt] == 0:
                    ready.append(nxt)

        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            while ready or in_flight:
                # schedule (or skip) everything whose dependencies are terminal
                while ready:
                    name = ready.pop(0)
                    job = self.by_name[name]

                    verdict = self._gate(job, context, results)
                    if verdict is None and cancel is not None and cancel.is_set():
                        verdict = JobResult.skipped(name, "run cancelled")
                    if verdict is not None:
                        finish(name, verdict)
                        continue

                    fut = pool.submit(
                        execute_job,
                        job,
                        context,
                        self._inputs_for(job, results),
                        store=store,
                        workspace_root=workspace_root,
                        source_dir=source_dir,
                        publisher=publisher,
                        cancel=cancel,
                    )
                    in_flight[fut] = name

                if not in_flight:
                    break

                done, _ = wait(list(in_flight), timeout=_POLL_SECONDS, return_when=FIRST_COMPLETED)
                for fut in done:
                    name = in_flight.pop(fut)
                    try:
                        result = fut.result()
                    except Exception as e:
                        # keep the run going; the failure is recorded, not lost
                        err = e if isinstance(e, CIError) else None
                        result = JobResult(name, JobStatus.FAILED, f"internal error: {e}", error=err)
                    finish(name, result)

        if cancel is not None and cancel.is_set():
            cancelled = True

        # a cancelled run did not complete, even if nothing in it failed
        failed = cancelled or any(r.status is JobStatus.FAILED for r in results.values())
        status = JobStatus.FAILED if failed else JobStatus.SUCCEEDED
        ordered = {j.name: results[j.name] for j in self.jobs}
        return RunResult(status=status, results=ordered, cancelled=cancelled)


# ----------------------------------------------------------------------
# Workflow loading (local file/module)
# ----------------------------------------------------------------------

def load_workflow(path: str | Path) -> Pipeline:
    """
    Load and validate a pipeline definition.

    *.yml / *.yaml files are parsed by gateci.loader. A *.py file must define
    either:
      - workflow() -> List[Job] | Pipeline
      - JOBS = [Job, ...]
    and may define TRIGGERS = ["push", ...].
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")

    if wf_path.suffix in (".yml", ".yaml"):
        from .loader import load_pipeline_file
        return load_pipeline_file(wf_path)

    if wf_path.suffix != ".py":
        raise ValueError(f"Workflow must be a .py or .yaml file, got: {wf_path.name}")

    module_name = f"gateci_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    jobs = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        jobs = globals_dict["workflow"]()
    elif "JOBS" in globals_dict:
        jobs = globals_dict["JOBS"]

    if isinstance(jobs, Pipeline):
        return jobs

    if not isinstance(jobs, list) or not all(isinstance(j, Job) for j in jobs):
        raise TypeError(
            "Workflow must return/define a List[Job] or a Pipeline. "
            "Define workflow() -> List[Job] or JOBS = [Job, ...]."
        )

    return Pipeline(jobs, triggers=globals_dict.get("TRIGGERS"))
