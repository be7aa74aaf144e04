"""
Pipeline loader - build a Pipeline from a YAML definition.

    on: [push, pull_request, schedule]
    jobs:
      build:
        checkout: true
        steps:
          - name: Build
            run: cargo build --release
        outputs:
          eyebright: target/release/eyebright
      prerelease:
        needs: [build]
        if: ref == 'refs/heads/main'
        inputs: [eyebright]
        release:
          tag: latest
          title: Latest development build
          prerelease: true
          files: [eyebright/eyebright]
"""

from __future__ import annotations

from collections.abc import Hashable
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .conditions import parse_condition
from .errors import DefinitionError
from .model import AssetMapping, EventKind, Job, ReleaseTarget, Step
from .runner import Pipeline


class _UniqueKeyLoader(yaml.SafeLoader):
    """SafeLoader that rejects a key given twice in one mapping instead of keeping the last."""

    def construct_mapping(self, node, deep=False):
        seen = set()
        for key_node, _ in node.value:
            key = self.construct_object(key_node, deep=deep)
            if not isinstance(key, Hashable):
                continue
            if key in seen:
                raise yaml.constructor.ConstructorError(
                    "while constructing a mapping",
                    node.start_mark,
                    f"found duplicate key {key!r}",
                    key_node.start_mark,
                )
            seen.add(key)
        return super().construct_mapping(node, deep=deep)


class _Strict(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class StepDefinition(_Strict):
    name: Optional[str] = None
    run: str
    cwd: Optional[str] = Field(default=None, alias="working-directory")


class AssetDefinition(_Strict):
    path: str
    name: Optional[str] = None


class ReleaseDefinition(_Strict):
    tag: str
    title: str
    prerelease: bool = False
    body: str = ""
    files: List[Union[str, AssetDefinition]] = Field(default_factory=list)

    @field_validator("tag")
    @classmethod
    def _tag_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("release tag must not be empty")
        return v


class JobDefinition(_Strict):
    steps: List[StepDefinition] = Field(default_factory=list)
    needs: List[str] = Field(default_factory=list)
    outputs: Dict[str, str] = Field(default_factory=dict)
    inputs: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)
    condition: Optional[str] = Field(default=None, alias="if")
    checkout: bool = False
    release: Optional[ReleaseDefinition] = None

    @field_validator("needs", "inputs", mode="before")
    @classmethod
    def _one_or_many(cls, v: Any) -> Any:
        # `needs: build` is shorthand for `needs: [build]`
        if isinstance(v, str):
            return [v]
        return v

    @field_validator("env", mode="before")
    @classmethod
    def _stringify_env(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return {str(k): str(val) for k, val in v.items()}
        return v


class PipelineDefinition(_Strict):
    on: Optional[List[str]] = None
    jobs: Dict[str, JobDefinition]

    @field_validator("on", mode="before")
    @classmethod
    def _normalize_on(cls, v: Any) -> Any:
        # `on: push`, `on: [push]`, or the mapping form `on: {push: null, schedule: [...]}`
        if isinstance(v, str):
            return [v]
        if isinstance(v, dict):
            return list(v.keys())
        return v

    @field_validator("jobs")
    @classmethod
    def _has_jobs(cls, v: Dict[str, JobDefinition]) -> Dict[str, JobDefinition]:
        if not v:
            raise ValueError("pipeline defines no jobs")
        return v


def _to_job(name: str, d: JobDefinition) -> Job:
    steps = tuple(
        Step(name=s.name or s.run.splitlines()[0], run=s.run, cwd=s.cwd)
        for s in d.steps
    )

    release = None
    if d.release is not None:
        files = tuple(
            AssetMapping(path=f) if isinstance(f, str) else AssetMapping(path=f.path, name=f.name)
            for f in d.release.files
        )
        release = ReleaseTarget(
            tag=d.release.tag,
            title=d.release.title,
            prerelease=d.release.prerelease,
            files=files,
            body=d.release.body,
        )

    if not steps and release is None:
        raise DefinitionError(f"Job '{name}' has no steps")

    condition = None
    if d.condition is not None:
        try:
            condition = parse_condition(d.condition)
        except DefinitionError as e:
            e.job = name
            raise

    return Job(
        name=name,
        steps=steps,
        needs=tuple(d.needs),
        outputs=dict(d.outputs),
        inputs=tuple(d.inputs),
        env=dict(d.env),
        condition=condition,
        checkout=d.checkout,
        release=release,
    )


def load_pipeline_from_dict(data: Dict[str, Any], *, source: str = "dict") -> Pipeline:
    """
    Validate a pipeline definition and build a Pipeline.

    Raises:
        DefinitionError: on schema errors, bad conditions, cycles, unknown needs/inputs
    """
    if not isinstance(data, dict):
        raise DefinitionError(f"Pipeline must be a mapping, got {type(data).__name__} (source: {source})")

    # YAML 1.1 reads a bare `on:` key as boolean True
    if True in data and "on" not in data:
        data = {("on" if k is True else k): v for k, v in data.items()}

    try:
        definition = PipelineDefinition.model_validate(data)
    except ValidationError as e:
        raise DefinitionError(f"Invalid pipeline definition ({source}):\n{e}") from None

    jobs = [_to_job(name, d) for name, d in definition.jobs.items()]
    triggers = None
    if definition.on is not None:
        try:
            triggers = [EventKind.parse(t) for t in definition.on]
        except ValueError as e:
            raise DefinitionError(f"Invalid trigger ({source}): {e}") from None
    return Pipeline(jobs, triggers=triggers)


def load_pipeline_file(path: str | Path) -> Pipeline:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Pipeline file not found: {p}")
    try:
        data = yaml.load(p.read_text(encoding="utf-8"), Loader=_UniqueKeyLoader)
    except yaml.YAMLError as e:
        raise DefinitionError(f"Invalid YAML in {p}: {e}") from None
    return load_pipeline_from_dict(data, source=str(p))
