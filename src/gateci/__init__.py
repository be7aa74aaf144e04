from .conditions import branch_is, event_is, parse_condition, ref_is
from .dsl import JobBuilder, build, job, release, sh, wf
from .model import EventKind, Job, JobStatus, PipelineContext, ReleaseTarget, Step
from .runner import Pipeline, load_workflow

__all__ = [
    "job", "sh", "release", "wf", "JobBuilder", "build",
    "ref_is", "branch_is", "event_is", "parse_condition",
    "Pipeline", "load_workflow",
    "Job", "Step", "ReleaseTarget", "PipelineContext", "EventKind", "JobStatus",
]
