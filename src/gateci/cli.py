# cli.py
from __future__ import annotations

import signal
import subprocess
import sys
import threading
from pathlib import Path

import click

from gateci.artifacts import ArtifactStore
from gateci.errors import DefinitionError
from gateci.git_facts.git import current_ref, get_remote_url, head_sha
from gateci.model import EventKind, PipelineContext
from gateci.publish import Publisher
from gateci.release_client import GitHubReleaseClient, repo_slug_from_url
from gateci.runner import Pipeline, load_workflow, new_run_id
from gateci.settings import Settings
from gateci.ui.console import Console, get_console, set_console

DEFAULT_WORKFLOW_FILES = ("gateci_workflow.py", "gateci.yml", "gateci.yaml")


def find_workflow_files() -> list[Path]:
    """
    Find all workflow files in the current directory.

    Returns:
        List of Path objects for workflow files
    """
    current_dir = Path(".")
    found = {current_dir / name for name in DEFAULT_WORKFLOW_FILES if (current_dir / name).exists()}
    found.update(current_dir.glob("*_workflow.py"))
    return sorted(found)


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Discover workflow file from argument or default.

    Raises:
        SystemExit: If workflow cannot be found or multiple workflows exist
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists() and not workflow_path.suffix:
            workflow_path = Path(str(workflow_path) + ".py")
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  gateci run --workflow my_workflow.py",
            )
            sys.exit(2)
        return workflow_path

    workflow_files = find_workflow_files()

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=["Looked for:", *[f"  {n}" for n in DEFAULT_WORKFLOW_FILES], "  *_workflow.py"],
            suggestion="Specify a workflow explicitly:\n  gateci run --workflow pipeline.yml",
        )
        sys.exit(2)

    if len(workflow_files) > 1:
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[f"  {f}" for f in workflow_files],
            suggestion="Specify a workflow explicitly:\n  gateci run --workflow gateci_workflow.py",
        )
        sys.exit(2)

    return workflow_files[0]


def _load(workflow_path: Path, debug: bool) -> Pipeline:
    console = get_console()
    try:
        return load_workflow(workflow_path)
    except DefinitionError as e:
        console.print_error("Invalid pipeline definition", str(e))
    except Exception as e:
        console.print_error(
            "Failed to load workflow",
            f"Could not load workflow from {workflow_path}",
            details=[str(e)],
        )
        if debug:
            console.print_exception(e)
    sys.exit(2)


def _resolve_context(ref: str | None, event: str, sha: str | None) -> PipelineContext:
    console = get_console()
    if not ref:
        try:
            ref = current_ref()
            console.print_debug(f"Using git ref: {ref}")
        except (subprocess.CalledProcessError, FileNotFoundError):
            console.print_error(
                "Could not determine git ref",
                "No --ref given and the current directory is not a git checkout.",
                suggestion="Specify the ref explicitly:\n  gateci run --ref refs/heads/main",
            )
            sys.exit(2)
    elif not ref.startswith("refs/"):
        # `--ref main` means the branch
        ref = f"refs/heads/{ref}"

    if not sha:
        try:
            sha = head_sha()
        except (subprocess.CalledProcessError, FileNotFoundError):
            sha = None

    return PipelineContext(ref=ref, event=EventKind.parse(event), sha=sha)


def _build_publisher(settings: Settings, repo: str | None) -> Publisher | None:
    console = get_console()
    if not settings.github_token:
        console.print_debug("GITHUB_TOKEN not set; release jobs will fail if they run")
        return None

    if not repo:
        try:
            repo = repo_slug_from_url(get_remote_url("origin"))
        except (subprocess.CalledProcessError, FileNotFoundError):
            repo = None
    if not repo:
        console.print_debug("No repository for releases (set GITHUB_REPOSITORY or --repo)")
        return None

    client = GitHubReleaseClient(
        repo,
        settings.github_token,
        api_url=settings.github_api_url,
        uploads_url=settings.github_uploads_url,
    )
    return Publisher(client, attempts=settings.publish_attempts, backoff=settings.publish_backoff)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """gateci: gated build pipeline with floating-tag releases."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (.py or .yml); discovered if omitted")
@click.option("--ref", envvar=["GATECI_REF", "GITHUB_REF"], default=None, help="Git ref, e.g. refs/heads/main (defaults to the checkout's ref)")
@click.option(
    "--event",
    envvar=["GATECI_EVENT", "GITHUB_EVENT_NAME"],
    default="push",
    show_default=True,
    type=click.Choice([e.value for e in EventKind], case_sensitive=False),
    help="Event that triggered this run",
)
@click.option("--sha", envvar=["GATECI_SHA", "GITHUB_SHA"], default=None, help="Commit being built (defaults to HEAD)")
@click.option("--workers", default=None, type=int, help="Number of parallel workers")
@click.option("--workspace", default=None, help="Root directory for job workspaces")
@click.option("--artifacts", "artifact_dir", default=None, help="Artifact store directory")
@click.option("--source", default=".", show_default=True, help="Source tree copied into jobs with checkout enabled")
@click.option("--repo", envvar="GITHUB_REPOSITORY", default=None, help="owner/name to publish releases to")
@click.pass_context
def run(ctx, workflow, ref, event, sha, workers, workspace, artifact_dir, source, repo):
    """Run a gateci workflow."""
    console = get_console()
    debug = ctx.obj.get("debug", False)
    settings = Settings.from_env()

    workflow_path = discover_workflow(workflow)
    pipeline = _load(workflow_path, debug)
    context = _resolve_context(ref, event, sha)

    run_id = new_run_id()
    store = ArtifactStore(Path(artifact_dir or settings.artifact_dir) / run_id)
    publisher = _build_publisher(settings, repo)

    console.print_run_started(workflow=workflow_path.name, context=context, job_count=len(pipeline.jobs))
    console.print_plan(pipeline.levels)

    cancel = threading.Event()
    outcome: dict = {}

    def _target() -> None:
        try:
            outcome["run"] = pipeline.run(
                context,
                store=store,
                workspace_root=Path(workspace or settings.workspace_dir) / run_id,
                source_dir=source,
                publisher=publisher,
                max_workers=workers or settings.max_workers,
                cancel=cancel,
            )
        except Exception as e:
            outcome["error"] = e

    previous = signal.signal(signal.SIGTERM, lambda signum, frame: cancel.set())
    worker = threading.Thread(target=_target, name="gateci-run", daemon=True)
    worker.start()
    try:
        while worker.is_alive():
            worker.join(0.2)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user, cancelling running jobs...")
        cancel.set()
        worker.join()
    finally:
        signal.signal(signal.SIGTERM, previous)

    if "error" in outcome:
        console.print_exception(outcome["error"])
        sys.exit(1)

    result = outcome["run"]
    console.print_results(result)
    console.print_info(f"Artifacts: {store.root}")

    if result.cancelled:
        sys.exit(130)
    if not result.succeeded:
        sys.exit(1)


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (.py or .yml); discovered if omitted")
@click.pass_context
def validate(ctx, workflow):
    """Load a workflow, check it, and print the execution plan."""
    console = get_console()
    workflow_path = discover_workflow(workflow)
    pipeline = _load(workflow_path, ctx.obj.get("debug", False))

    console.print_info(f"{workflow_path.name}: OK ({len(pipeline.jobs)} jobs)")
    if pipeline.triggers is not None:
        console.print_info("Triggers: " + ", ".join(t.value for t in pipeline.triggers))
    console.print_plan(pipeline.levels)
    for job in pipeline.jobs:
        if job.condition is not None:
            console.print_info(f"  {job.name} runs if: {job.condition}")
        if job.release is not None:
            console.print_info(f"  {job.name} publishes release '{job.release.tag}'")


if __name__ == "__main__":
    cli()
