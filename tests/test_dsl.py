import pytest

from gateci import build, job, release, sh
from gateci.conditions import FieldEquals
from gateci.model import AssetMapping
from gateci.settings import Settings


def test_job_helper_applies_default_cwd():
    j = job("test", sh("a", "pytest"), sh("b", "ls", cwd="docs"), cwd="pkg", when="event == 'push'")

    assert [s.cwd for s in j.steps] == ["pkg", "docs"]
    assert j.condition == FieldEquals("event", "push")


def test_job_requires_steps_or_release():
    with pytest.raises(ValueError):
        job("empty")
    assert job("publish-only", publish=release("latest", "Latest")).steps == ()


def test_builder_matches_functional_helper():
    built = (
        build("prerelease")
        .depends_on("build")
        .consumes("eyebright")
        .with_env(LEVEL=3)
        .when("ref == 'refs/heads/main'")
        .publishes(release("latest", "Latest", "eyebright/eyebright", prerelease=True))
        .build()
    )
    functional = job(
        "prerelease",
        needs=["build"],
        inputs=["eyebright"],
        env={"LEVEL": "3"},
        when="ref == 'refs/heads/main'",
        publish=release("latest", "Latest", "eyebright/eyebright", prerelease=True),
    )
    assert built == functional


def test_release_helper_wraps_paths():
    target = release("latest", "Latest", "a/bin", AssetMapping("b/bin", name="bin-mac"))
    assert [f.remote_name for f in target.files] == ["bin", "bin-mac"]


def test_settings_from_env():
    s = Settings.from_env({
        "GATECI_MAX_WORKERS": "4",
        "GATECI_PUBLISH_ATTEMPTS": "5",
        "GITHUB_TOKEN": "",
        "GITHUB_REPOSITORY": "octo/eyebright",
    })
    assert s.max_workers == 4
    assert s.publish_attempts == 5
    assert s.github_token is None
    assert s.github_repository == "octo/eyebright"
    assert s.workspace_dir == ".gateci/work"
