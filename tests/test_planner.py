from __future__ import annotations

from pathlib import Path

import pytest

from rankplan.models import (
    Allocation,
    BindingDecision,
    GeometryConflict,
    JobRequest,
    MpiStack,
    Topology,
)
from rankplan.planner import resolve_plan

_STACK = MpiStack(name="mvapich2", version="2.0")


def _allocation(num_nodes: int, cores: int) -> Allocation:
    return Allocation(
        nodes=tuple(f"n{idx}" for idx in range(num_nodes) for _ in range(cores)),
        num_nodes=num_nodes,
        cores_per_node=cores,
        nodefile=Path("/var/spool/pbs/aux/77"),
        job_id="77",
    )


def test_threads_filling_sockets_give_one_rank_per_node() -> None:
    topology = Topology(name="fat", cores_per_socket=16)
    plan = resolve_plan(
        _allocation(4, 16),
        JobRequest(num_nodes=4, threads_per_rank=16),
        topology,
        _STACK,
    )
    assert plan.geometry.ranks_per_node == 1
    assert plan.placement.counts == [1, 1, 1, 1]
    assert plan.binding == BindingDecision(policy="scatter", level="socket")
    assert plan.source_nodefile is None


def test_packed_request_keeps_the_requested_node_count() -> None:
    plan = resolve_plan(
        _allocation(2, 8),
        JobRequest(num_nodes=1, num_ranks=16),
        Topology(name="t"),
        _STACK,
    )
    assert plan.geometry.ranks_per_node == 16
    assert plan.placement.counts == [16]
    assert plan.source_nodefile is None


def test_uneven_request_places_front_loaded_ranks() -> None:
    plan = resolve_plan(
        _allocation(2, 8), JobRequest(num_ranks=3), Topology(name="t"), _STACK
    )
    assert plan.geometry.num_nodes == 2
    assert plan.geometry.ranks_per_node == -1
    assert plan.placement.counts == [2, 1]
    assert plan.binding == BindingDecision(policy="scatter", level="core")


def test_uneven_request_with_thread_hint_mismatch_disables_binding() -> None:
    plan = resolve_plan(
        _allocation(2, 8),
        JobRequest(num_ranks=3),
        Topology(name="t"),
        _STACK,
        thread_hint="4",
    )
    assert plan.binding == BindingDecision(policy="none", level="off")


def test_conflict_fails_before_placement(monkeypatch) -> None:
    def _boom(*args, **kwargs):
        raise AssertionError("placement must not run")

    monkeypatch.setattr("rankplan.planner.expand_placement", _boom)
    with pytest.raises(GeometryConflict):
        resolve_plan(
            _allocation(4, 8),
            JobRequest(num_ranks=10, num_nodes=3, ranks_per_node=4),
            Topology(name="t"),
            _STACK,
        )


def test_full_allocation_reuses_resource_manager_file() -> None:
    plan = resolve_plan(_allocation(2, 4), JobRequest(), Topology(name="t"), _STACK)
    assert plan.placement.reuses_nodefile
    assert plan.source_nodefile == Path("/var/spool/pbs/aux/77")


def test_resolution_is_deterministic() -> None:
    request = JobRequest(
        num_ranks=7,
        threads_per_rank=2,
        binding_policy="compact",
        extra_switches=("-v",),
        command=("./a.out", "input.dat"),
    )
    first = resolve_plan(_allocation(3, 8), request, Topology(name="t"), _STACK)
    second = resolve_plan(_allocation(3, 8), request, Topology(name="t"), _STACK)
    assert first == second
    assert first.to_json() == second.to_json()
    assert first.placement.counts == [3, 2, 2]
