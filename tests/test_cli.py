from pathlib import Path

import pytest
from click.testing import CliRunner

from gateci.cli import cli

EXAMPLE = Path(__file__).resolve().parent.parent / "examples" / "eyebright.yml"

WORKFLOW = """\
from gateci import job, sh, release, wf

def workflow():
    return wf(
        job("build", sh("make", "mkdir -p out && echo hi > out/tool"), outputs={"tool": "out/tool"}),
        job("check", sh("use", "test -f tool/tool"), needs=["build"], inputs=["tool"]),
        job(
            "prerelease",
            needs=["check"],
            when="ref == 'refs/heads/main'",
            publish=release("latest", "Latest"),
        ),
    )
"""


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "GITHUB_TOKEN", "GITHUB_REPOSITORY", "GITHUB_REF", "GITHUB_EVENT_NAME", "GITHUB_SHA",
        "GATECI_REF", "GATECI_EVENT", "GATECI_SHA", "GATECI_WORKSPACE", "GATECI_ARTIFACTS",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def runner():
    return CliRunner()


def test_validate_prints_plan(runner):
    result = runner.invoke(cli, ["validate", "--workflow", str(EXAMPLE)])

    assert result.exit_code == 0, result.output
    assert "eyebright.yml: OK (2 jobs)" in result.output
    assert "Triggers: push, pull_request, schedule" in result.output
    assert "prerelease runs if: ref == 'refs/heads/main'" in result.output


def test_validate_reports_definition_errors(runner):
    with runner.isolated_filesystem():
        Path("gateci.yml").write_text("jobs:\n  a:\n    needs: [a]\n    steps: [{run: 'true'}]\n")
        result = runner.invoke(cli, ["validate"])

    assert result.exit_code == 2
    assert "dependency cycle" in result.output


def test_missing_workflow_exits_2(runner):
    with runner.isolated_filesystem():
        result = runner.invoke(cli, ["run", "--ref", "main", "--sha", "abc"])
    assert result.exit_code == 2
    assert "No workflow file found" in result.output


def test_run_on_feature_branch_succeeds_without_publishing(runner):
    with runner.isolated_filesystem():
        Path("gateci_workflow.py").write_text(WORKFLOW)
        result = runner.invoke(cli, ["run", "--ref", "feature-x", "--sha", "abc"])

    assert result.exit_code == 0, result.output
    assert "condition not met" in result.output


def test_run_on_main_without_token_fails_the_release_job(runner):
    with runner.isolated_filesystem():
        Path("gateci_workflow.py").write_text(WORKFLOW)
        result = runner.invoke(cli, ["run", "--ref", "refs/heads/main", "--sha", "abc"])

    assert result.exit_code == 1
    assert "no release host configured" in result.output


def test_untriggered_event_is_a_successful_noop(runner):
    with runner.isolated_filesystem():
        Path("gateci.yml").write_text("on: push\njobs:\n  a:\n    steps: [{run: 'exit 1'}]\n")
        result = runner.invoke(cli, ["run", "--ref", "main", "--sha", "abc", "--event", "schedule"])

    assert result.exit_code == 0, result.output
