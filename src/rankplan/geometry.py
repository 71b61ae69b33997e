"""Reconcile partial user geometry with the resource manager allocation."""

from __future__ import annotations

import logging

from rankplan.models import (
    GeometryConflict,
    InvalidParameter,
    JobGeometry,
    JobRequest,
    QuotaExceeded,
    ResourceManagerMismatch,
    Topology,
)

_log = logging.getLogger("rankplan.geometry")

_POSITIVE_FIELDS = ("num_nodes", "num_ranks", "ranks_per_node", "threads_per_rank")


def _check_conflicts(request: JobRequest) -> None:
    nodes = request.num_nodes
    ranks = request.num_ranks
    per_node = request.ranks_per_node
    if ranks is not None and per_node is not None:
        if nodes is None:
            raise GeometryConflict(
                f"Ambiguous geometry: {ranks} ranks and {per_node} ranks per node "
                "given without a node count"
            )
        if nodes * per_node != ranks:
            raise GeometryConflict(
                f"{nodes} nodes x {per_node} ranks per node != {ranks} ranks"
            )


def _check_positive(request: JobRequest) -> None:
    for name in _POSITIVE_FIELDS:
        value = getattr(request, name)
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidParameter(f"{name} must be an integer, got {value!r}")
        if value <= 0:
            raise InvalidParameter(f"{name} must be > 0, got {value}")


def resolve_geometry(
    request: JobRequest,
    *,
    rm_num_nodes: int | None,
    rm_cores_per_node: int | None,
    topology: Topology,
) -> JobGeometry:
    """Resolve a fully consistent :class:`JobGeometry`.

    User values win over resource manager defaults except where they cannot
    be honoured: a rank count that does not divide evenly over the nodes
    always yields the negative ``ranks_per_node`` sentinel, and a rank count
    that disagrees with ``num_nodes * ranks_per_node`` is recomputed.
    """
    _check_conflicts(request)
    _check_positive(request)

    num_nodes = request.num_nodes
    if num_nodes is None:
        if rm_num_nodes is None:
            raise ResourceManagerMismatch(
                "Node count not given and not available from the resource manager"
            )
        num_nodes = rm_num_nodes

    per_node = request.ranks_per_node
    num_ranks = request.num_ranks
    if num_ranks is None:
        if num_nodes == rm_num_nodes:
            num_ranks = rm_num_nodes * _slots_per_node(rm_cores_per_node, request)
        elif per_node is None:
            num_ranks = num_nodes * _slots_per_node(rm_cores_per_node, request)

    if num_ranks is not None:
        if num_ranks < num_nodes and request.num_nodes is None:
            _log.warning(
                "num_nodes reduced from %d to %d: only %d ranks requested",
                num_nodes,
                num_ranks,
                num_ranks,
            )
            num_nodes = num_ranks
        if num_ranks < num_nodes:
            raise GeometryConflict(
                f"Cannot place {num_ranks} ranks on {num_nodes} nodes; "
                "every node needs at least one rank"
            )
        if num_ranks % num_nodes != 0:
            uneven = -(num_ranks // num_nodes)
            if per_node is not None and per_node != uneven:
                _log.warning(
                    "ranks_per_node recalculated from %d to %d: %d ranks do not "
                    "divide evenly over %d nodes",
                    per_node,
                    uneven,
                    num_ranks,
                    num_nodes,
                )
            per_node = uneven
        elif per_node is None:
            per_node = num_ranks // num_nodes

    if per_node is None:
        # num_ranks is only left unset when ranks_per_node was given
        raise GeometryConflict("Unable to resolve ranks per node")

    if per_node > 0:
        expected = num_nodes * per_node
        if num_ranks is not None and num_ranks != expected:
            _log.warning(
                "num_ranks recalculated from %d to %d (%d nodes x %d ranks per node)",
                num_ranks,
                expected,
                num_nodes,
                per_node,
            )
        num_ranks = expected
    assert num_ranks is not None

    threads = request.threads_per_rank if request.threads_per_rank is not None else 1

    geometry = JobGeometry(
        num_nodes=num_nodes,
        num_ranks=num_ranks,
        ranks_per_node=per_node,
        threads_per_rank=threads,
    )
    _warn_overload(geometry, rm_cores_per_node)

    if num_nodes > topology.max_nodes_per_job:
        raise QuotaExceeded(
            f"{num_nodes} nodes requested; system '{topology.name}' allows at most "
            f"{topology.max_nodes_per_job} nodes per job"
        )

    _log.info(
        "geometry_resolved nodes=%d ranks=%d ranks_per_node=%d threads_per_rank=%d",
        geometry.num_nodes,
        geometry.num_ranks,
        geometry.ranks_per_node,
        geometry.threads_per_rank,
    )
    return geometry


def _slots_per_node(rm_cores_per_node: int | None, request: JobRequest) -> int:
    # an explicit thread count reserves that many cores for every rank
    if rm_cores_per_node is None:
        raise ResourceManagerMismatch(
            "Cores per node not available from the resource manager"
        )
    threads = request.threads_per_rank or 1
    return max(1, rm_cores_per_node // threads)


def _warn_overload(geometry: JobGeometry, rm_cores_per_node: int | None) -> None:
    if rm_cores_per_node is None:
        return
    peak = geometry.max_ranks_per_node
    if peak > rm_cores_per_node:
        _log.warning(
            "Overloading cores: %d ranks per node requested, %d cores allocated per node",
            peak,
            rm_cores_per_node,
        )
    elif peak * geometry.threads_per_rank > rm_cores_per_node:
        _log.warning(
            "Overloading cores: %d ranks x %d threads per node exceeds %d cores",
            peak,
            geometry.threads_per_rank,
            rm_cores_per_node,
        )
