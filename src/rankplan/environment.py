"""Read the resource manager allocation and the loaded MPI module."""

from __future__ import annotations

import logging
from collections import Counter
from pathlib import Path
from typing import Mapping

from rankplan.models import (
    Allocation,
    MpiStack,
    NoMpiModuleLoaded,
    ResourceManagerMismatch,
)
from rankplan.placement import parse_nodefile
from rankplan.utils import unique_in_order

_log = logging.getLogger("rankplan.environment")

NODEFILE_ENV = "PBS_NODEFILE"
NUM_NODES_ENV = "PBS_NUM_NODES"
NUM_PPN_ENV = "PBS_NUM_PPN"
JOB_ID_ENV = "PBS_JOBID"
MODULES_ENV = "LOADEDMODULES"
THREAD_HINT_ENV = "OMP_NUM_THREADS"

# checked in order; "mpich2" must precede "mpich"
_MODULE_PREFIXES = (
    ("mvapich2", "mvapich2"),
    ("openmpi", "openmpi"),
    ("mpich2", "mpich2"),
    ("mpich", "mpich2"),
)


def _env_int(env: Mapping[str, str], key: str) -> int | None:
    raw = env.get(key, "").strip()
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError as exc:
        raise ResourceManagerMismatch(f"{key}={raw!r} is not an integer") from exc
    if value <= 0:
        raise ResourceManagerMismatch(f"{key}={raw!r} must be positive")
    return value


def read_allocation(
    env: Mapping[str, str],
    *,
    nodefile_override: str | Path | None = None,
) -> Allocation:
    """Build an :class:`Allocation` from Torque-style variables.

    With *nodefile_override* the node list comes from that file and the
    counts fall back to what the file itself shows when the resource manager
    does not report them.
    """
    if nodefile_override is not None:
        nodefile = Path(nodefile_override).expanduser()
    else:
        raw_path = env.get(NODEFILE_ENV, "").strip()
        if not raw_path:
            raise ResourceManagerMismatch(
                f"{NODEFILE_ENV} is not set; run inside a batch job or pass --nodefile"
            )
        nodefile = Path(raw_path)

    nodes = parse_nodefile(nodefile)
    if not nodes:
        raise ResourceManagerMismatch(f"Node file {nodefile} lists no nodes")

    num_nodes = _env_int(env, NUM_NODES_ENV)
    cores_per_node = _env_int(env, NUM_PPN_ENV)
    if nodefile_override is None:
        missing = [
            key
            for key, value in ((NUM_NODES_ENV, num_nodes), (NUM_PPN_ENV, cores_per_node))
            if value is None
        ]
        if missing:
            raise ResourceManagerMismatch(f"Resource manager did not set {missing}")
    if num_nodes is None:
        num_nodes = len(unique_in_order(nodes))
    if cores_per_node is None:
        cores_per_node = max(Counter(nodes).values())

    allocation = Allocation(
        nodes=tuple(nodes),
        num_nodes=num_nodes,
        cores_per_node=cores_per_node,
        nodefile=nodefile,
        job_id=env.get(JOB_ID_ENV, "").strip() or "0",
    )
    _log.info(
        "allocation_read nodefile=%s nodes=%d cores_per_node=%d slots=%d job_id=%s",
        nodefile,
        allocation.num_nodes,
        allocation.cores_per_node,
        len(allocation.nodes),
        allocation.job_id,
    )
    return allocation


def _stack_for(module_name: str) -> str | None:
    lowered = module_name.lower()
    for prefix, stack in _MODULE_PREFIXES:
        if lowered.startswith(prefix):
            return stack
    return None


def detect_mpi_stack(env: Mapping[str, str]) -> MpiStack:
    """Pick the MPI stack from ``LOADEDMODULES`` (``name/version`` tokens)."""
    raw = env.get(MODULES_ENV, "")
    found: list[MpiStack] = []
    for token in raw.split(":"):
        token = token.strip()
        if not token:
            continue
        name, _, version = token.partition("/")
        stack = _stack_for(name)
        if stack is None:
            continue
        found.append(MpiStack(name=stack, version=version or None, module=token))

    if not found:
        raise NoMpiModuleLoaded(
            f"No MPI module found in {MODULES_ENV}; load mvapich2 or openmpi"
        )
    if len(found) > 1:
        _log.warning(
            "Several MPI modules loaded (%s); using %s",
            ", ".join(str(stack.module) for stack in found),
            found[0].module,
        )
    return found[0]


def thread_hint(env: Mapping[str, str]) -> str | None:
    raw = env.get(THREAD_HINT_ENV)
    if raw is None or not raw.strip():
        return None
    return raw.strip()
