import pytest

from gateci.dag import build_dag, find_cycle, topo_levels
from gateci.dsl import job, sh
from gateci.errors import CyclicDependencyError, DefinitionError


def _job(name, *needs):
    return job(name, sh("noop", "true"), needs=list(needs))


def test_levels_follow_needs_edges():
    jobs = [_job("build"), _job("lint"), _job("test", "build"), _job("publish", "test", "lint")]
    adj, indeg = build_dag(jobs)

    assert adj["build"] == {"test"}
    assert indeg["publish"] == 2
    assert topo_levels(adj, indeg) == [["build", "lint"], ["test"], ["publish"]]


def test_duplicate_job_names_rejected():
    with pytest.raises(DefinitionError, match="Duplicate job names"):
        build_dag([_job("build"), _job("build")])


def test_unknown_dependency_rejected():
    with pytest.raises(DefinitionError, match="needs missing job 'compile'"):
        build_dag([_job("test", "compile")])


def test_cycle_is_named():
    jobs = [_job("a", "c"), _job("b", "a"), _job("c", "b"), _job("d")]
    adj, indeg = build_dag(jobs)

    with pytest.raises(CyclicDependencyError) as exc:
        topo_levels(adj, indeg)

    cycle = exc.value.cycle
    assert cycle[0] == cycle[-1]
    assert set(cycle) == {"a", "b", "c"}
    assert "->" in str(exc.value)


def test_self_dependency_is_a_cycle():
    adj, _ = build_dag([_job("loop", "loop")])
    assert find_cycle(adj) == ["loop", "loop"]


def test_acyclic_graph_has_no_cycle():
    adj, _ = build_dag([_job("a"), _job("b", "a")])
    assert find_cycle(adj) is None
