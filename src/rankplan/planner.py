from __future__ import annotations

import logging

from rankplan.binding import select_binding
from rankplan.geometry import resolve_geometry
from rankplan.models import Allocation, JobRequest, LaunchPlan, MpiStack, Topology
from rankplan.placement import expand_placement

_log = logging.getLogger("rankplan.planner")


def resolve_plan(
    allocation: Allocation,
    request: JobRequest,
    topology: Topology,
    stack: MpiStack,
    *,
    thread_hint: str | None = None,
) -> LaunchPlan:
    """Resolve geometry, placement and binding for one job.

    Pure: the same inputs always give an identical plan, and nothing is
    written to disk until the plan is materialized by the invocation step.
    """
    geometry = resolve_geometry(
        request,
        rm_num_nodes=allocation.num_nodes,
        rm_cores_per_node=allocation.cores_per_node,
        topology=topology,
    )
    placement = expand_placement(
        allocation, geometry, node_offset=request.node_offset
    )
    binding = select_binding(
        threads_per_rank=geometry.threads_per_rank,
        max_ranks_per_node=geometry.max_ranks_per_node,
        cores_per_socket=topology.socket_cores(allocation.cores_per_node),
        cores_per_node=allocation.cores_per_node,
        policy=request.binding_policy,
        level=request.binding_level,
        thread_hint=thread_hint,
    )
    plan = LaunchPlan(
        geometry=geometry,
        placement=placement,
        binding=binding,
        stack=stack,
        job_id=allocation.job_id,
        source_nodefile=allocation.nodefile if placement.reuses_nodefile else None,
        extra_switches=request.extra_switches,
        command=request.command,
    )
    _log.info(
        "plan_resolved stack=%s system=%s ranks=%d nodes=%d binding=%s/%s",
        stack.name,
        topology.name,
        geometry.num_ranks,
        geometry.num_nodes,
        binding.policy,
        binding.level,
    )
    return plan
