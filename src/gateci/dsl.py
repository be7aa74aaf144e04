# src/gateci/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Dict, List, Optional, Sequence, Union

from .conditions import Condition, parse_condition
from .model import AssetMapping, Job, ReleaseTarget, Step


# ---------------------------------------------------------------------
# Step helper
# ---------------------------------------------------------------------

def sh(name: str, cmd: str, *, cwd: str | None = None) -> Step:
    """Create a shell step."""
    return Step(name=name, run=cmd, cwd=cwd)


# ---------------------------------------------------------------------
# Release helper
# ---------------------------------------------------------------------

def release(
    tag: str,
    title: str,
    *files: Union[str, AssetMapping],
    prerelease: bool = False,
    body: str = "",
) -> ReleaseTarget:
    """
    release("latest", "Latest development build", "eyebright/eyebright", prerelease=True)
    """
    mappings = tuple(f if isinstance(f, AssetMapping) else AssetMapping(path=f) for f in files)
    return ReleaseTarget(tag=tag, title=title, prerelease=prerelease, files=mappings, body=body)


def _as_condition(when: Union[str, Condition, None]) -> Optional[Condition]:
    if isinstance(when, str):
        return parse_condition(when)
    return when


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,  # allow: job("x", sh(...), sh(...))
    needs: Optional[Sequence[str]] = None,
    outputs: Optional[Dict[str, str]] = None,
    inputs: Optional[Sequence[str]] = None,
    env: Optional[Dict[str, str]] = None,
    when: Union[str, Condition, None] = None,
    checkout: bool = False,
    publish: Optional[ReleaseTarget] = None,
    cwd: str | None = None,  # default cwd applied to steps missing cwd
) -> Job:
    steps_final: List[Step] = list(steps)

    if not steps_final and publish is None:
        raise ValueError(f"job({name!r}) must have at least one step")

    if cwd is not None:
        steps_final = [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps_final]

    return Job(
        name=name,
        steps=tuple(steps_final),
        needs=tuple(needs or ()),
        outputs=dict(outputs or {}),
        inputs=tuple(inputs or ()),
        env=dict(env or {}),
        condition=_as_condition(when),
        checkout=checkout,
        release=publish,
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, name: str):
        self.name = name
        self._needs: list[str] = []
        self._steps: list[Step] = []
        self._outputs: dict[str, str] = {}
        self._inputs: list[str] = []
        self._env: dict[str, str] = {}
        self._condition: Optional[Condition] = None
        self._checkout: bool = False
        self._release: Optional[ReleaseTarget] = None

    def depends_on(self, *job_names: str):
        self._needs.extend(job_names)
        return self

    def define_step(self, name: str, run: str, cwd: str | None = None):
        self._steps.append(Step(name=name, run=run, cwd=cwd))
        return self

    def produces(self, name: str, path: str):
        self._outputs[name] = path
        return self

    def consumes(self, *artifacts: str):
        self._inputs.extend(artifacts)
        return self

    def with_env(self, **env):
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def when(self, condition: Union[str, Condition]):
        self._condition = _as_condition(condition)
        return self

    def with_checkout(self, enabled: bool = True):
        self._checkout = enabled
        return self

    def publishes(self, target: ReleaseTarget):
        self._release = target
        return self

    def build(self) -> Job:
        if not self._steps and self._release is None:
            raise ValueError(f"Job '{self.name}' has no steps")

        return Job(
            name=self.name,
            steps=tuple(self._steps),
            needs=tuple(self._needs),
            outputs=dict(self._outputs),
            inputs=tuple(self._inputs),
            env=dict(self._env),
            condition=self._condition,
            checkout=self._checkout,
            release=self._release,
        )


def build(name: str) -> JobBuilder:
    """Convenience: build('test').define_step(...).build()"""
    return JobBuilder(name)


# ---------------------------------------------------------------------
# Workflow helper (single-file story)
# ---------------------------------------------------------------------

def wf(*jobs: Job) -> List[Job]:
    """
    Workflow definition helper. Use this name so you can define your own
    def workflow(): return wf(job(...), job(...)).

        from gateci import wf, job, sh

        def workflow():
            return wf(
                job(...),
                job(...),
            )

    Or use JOBS directly:
        JOBS = wf(job(...), job(...))
    """
    return list(jobs)
