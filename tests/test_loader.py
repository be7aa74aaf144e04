from pathlib import Path

import pytest
import yaml

from gateci.conditions import FieldEquals
from gateci.errors import CyclicDependencyError, DefinitionError
from gateci.loader import load_pipeline_file, load_pipeline_from_dict
from gateci.model import AssetMapping, EventKind
from gateci.runner import load_workflow

EXAMPLE = Path(__file__).resolve().parent.parent / "examples" / "eyebright.yml"


def _definition(**jobs):
    return {"jobs": jobs}


def test_example_pipeline_loads():
    pipeline = load_pipeline_file(EXAMPLE)

    assert pipeline.triggers == (EventKind.PUSH, EventKind.PULL_REQUEST, EventKind.SCHEDULE)
    assert pipeline.levels == [["build"], ["prerelease"]]

    build = pipeline.by_name["build"]
    assert build.checkout is True
    assert build.outputs == {"eyebright": "target/release/eyebright"}
    assert build.steps[0].name == "Build eyebright and run unit tests"

    prerelease = pipeline.by_name["prerelease"]
    assert prerelease.condition == FieldEquals("ref", "refs/heads/main")
    assert prerelease.steps == ()
    assert prerelease.release.tag == "latest"
    assert prerelease.release.prerelease is True
    assert prerelease.release.files == (AssetMapping("eyebright/eyebright"),)
    assert pipeline.bindings["prerelease"] == {"eyebright": ("build", "eyebright")}


def test_load_workflow_dispatches_on_suffix():
    assert [j.name for j in load_workflow(EXAMPLE).jobs] == ["build", "prerelease"]


def test_bare_on_key_parsed_as_true():
    # what yaml.safe_load produces for an unquoted `on:`
    data = yaml.safe_load("on: push\njobs:\n  build:\n    steps:\n      - run: make\n")
    assert True in data

    pipeline = load_pipeline_from_dict(data)

    assert pipeline.triggers == (EventKind.PUSH,)


def test_on_mapping_form():
    pipeline = load_pipeline_from_dict({
        "on": {"push": None, "schedule": [{"cron": "0 0 * * *"}]},
        "jobs": {"build": {"steps": [{"run": "make"}]}},
    })
    assert pipeline.triggers == (EventKind.PUSH, EventKind.SCHEDULE)


def test_no_on_key_means_every_event():
    pipeline = load_pipeline_from_dict(_definition(build={"steps": [{"run": "make"}]}))
    assert pipeline.triggers is None


def test_shorthand_and_defaults():
    pipeline = load_pipeline_from_dict(_definition(
        build={"steps": [{"run": "make\nmake check", "working-directory": "sub"}], "env": {"LEVEL": 3}},
        test={"needs": "build", "steps": [{"name": "unit", "run": "make test"}]},
    ))
    build = pipeline.by_name["build"]
    assert build.steps[0].name == "make"
    assert build.steps[0].cwd == "sub"
    assert build.env == {"LEVEL": "3"}
    assert pipeline.by_name["test"].needs == ("build",)


@pytest.mark.parametrize(
    "data,match",
    [
        ({"jobs": {}}, "no jobs"),
        ({"jobs": {"build": {"steps": [{"run": "make"}], "runs-on": "ubuntu"}}}, "Invalid pipeline"),
        ({"jobs": {"build": {"steps": [{"command": "make"}]}}}, "Invalid pipeline"),
        ({"jobs": {"build": {}}}, "has no steps"),
        ({"on": ["release"], "jobs": {"build": {"steps": [{"run": "make"}]}}}, "Invalid trigger"),
        ({"jobs": {"build": {"steps": [{"run": "make"}], "if": "ref =="}}}, ""),
        ({"jobs": {"build": {"steps": [{"run": "make"}], "if": "actor == 'me'"}}}, "unknown field"),
        ({"jobs": {"build": {"steps": [{"run": "make"}], "needs": ["compile"]}}}, "missing job"),
        ({"jobs": {"r": {"release": {"tag": " ", "title": "t"}}}}, "Invalid pipeline"),
    ],
)
def test_invalid_definitions_rejected(data, match):
    with pytest.raises(DefinitionError, match=match):
        load_pipeline_from_dict(data)


def test_cycle_rejected():
    with pytest.raises(CyclicDependencyError):
        load_pipeline_from_dict(_definition(
            a={"needs": ["b"], "steps": [{"run": "true"}]},
            b={"needs": ["a"], "steps": [{"run": "true"}]},
        ))


def test_non_mapping_document_rejected(tmp_path):
    p = tmp_path / "pipeline.yml"
    p.write_text("- just\n- a list\n")
    with pytest.raises(DefinitionError, match="must be a mapping"):
        load_pipeline_file(p)


def test_malformed_yaml_rejected(tmp_path):
    p = tmp_path / "pipeline.yml"
    p.write_text("jobs: [unclosed\n")
    with pytest.raises(DefinitionError, match="Invalid YAML"):
        load_pipeline_file(p)


def test_duplicate_yaml_keys_rejected(tmp_path):
    p = tmp_path / "pipeline.yml"
    p.write_text(
        "jobs:\n"
        "  build:\n"
        "    steps: [{run: make}]\n"
        "    outputs:\n"
        "      binary: target/a\n"
        "      binary: target/b\n"
    )
    with pytest.raises(DefinitionError, match="duplicate key 'binary'"):
        load_pipeline_file(p)
