from __future__ import annotations

import logging

from rankplan.models import BindingDecision, InvalidParameter
from rankplan.utils import cpu_range

_log = logging.getLogger("rankplan.binding")

_POLICY_ALIASES = {
    "scatter": "scatter",
    "rr": "scatter",
    "compact": "compact",
    "bunch": "compact",
    "none": "none",
    "off": "none",
}
_LEVEL_ALIASES = {
    "core": "core",
    "socket": "socket",
    "numanode": "numanode",
    "numa": "numanode",
    "none": "off",
    "off": "off",
}

DISABLED = BindingDecision(policy="none", level="off")


def normalize_policy(value: str) -> str:
    key = value.strip().lower()
    if key not in _POLICY_ALIASES:
        raise InvalidParameter(
            f"Unknown binding policy '{value}'. Allowed: {sorted(_POLICY_ALIASES)}"
        )
    return _POLICY_ALIASES[key]


def normalize_level(value: str) -> str:
    key = value.strip().lower()
    if key not in _LEVEL_ALIASES:
        raise InvalidParameter(
            f"Unknown binding level '{value}'. Allowed: {sorted(_LEVEL_ALIASES)}"
        )
    return _LEVEL_ALIASES[key]


def default_binding(threads_per_rank: int, cores_per_socket: int) -> BindingDecision:
    if threads_per_rank == 1:
        return BindingDecision(policy="scatter", level="core")
    if threads_per_rank == cores_per_socket:
        return BindingDecision(policy="scatter", level="socket")
    if threads_per_rank > 0:
        return BindingDecision(policy="illogical", level="arbitrary")
    return DISABLED


def _apply_overrides(
    default: BindingDecision, policy: str | None, level: str | None
) -> BindingDecision:
    chosen_policy = default.policy if policy is None else normalize_policy(policy)
    chosen_level = default.level if level is None else normalize_level(level)

    if chosen_policy == "none" or chosen_level == "off":
        if (chosen_policy, chosen_level) != ("none", "off"):
            _log.warning(
                "Binding policy '%s' with level '%s' disables binding entirely",
                chosen_policy,
                chosen_level,
            )
        return DISABLED
    if chosen_policy == "illogical" and chosen_level != "arbitrary":
        _log.warning(
            "Binding level '%s' requested; using policy 'scatter' instead of "
            "per-rank core ranges",
            chosen_level,
        )
        chosen_policy = "scatter"
    elif chosen_level == "arbitrary" and chosen_policy != "illogical":
        _log.warning(
            "Binding policy '%s' requested; binding at level 'core' instead of "
            "per-rank core ranges",
            chosen_policy,
        )
        chosen_level = "core"
    return BindingDecision(policy=chosen_policy, level=chosen_level)


def select_binding(
    *,
    threads_per_rank: int,
    max_ranks_per_node: int,
    cores_per_socket: int,
    cores_per_node: int,
    policy: str | None = None,
    level: str | None = None,
    thread_hint: str | None = None,
) -> BindingDecision:
    """Pick the CPU binding for one job.

    ``thread_hint`` is the ambient ``OMP_NUM_THREADS`` value; when it
    disagrees with ``threads_per_rank`` the default is derived as if binding
    were disabled. Explicit *policy* and *level* still apply.
    """
    effective_threads = threads_per_rank
    if thread_hint is not None and thread_hint.strip() != str(threads_per_rank):
        _log.warning(
            "OMP_NUM_THREADS=%s disagrees with %d threads per rank; "
            "default binding disabled",
            thread_hint,
            threads_per_rank,
        )
        effective_threads = -1

    decision = _apply_overrides(
        default_binding(effective_threads, cores_per_socket), policy, level
    )

    if (
        decision.policy == "illogical"
        and threads_per_rank * max_ranks_per_node > cores_per_node
    ):
        _log.warning(
            "%d ranks x %d threads per node exceeds %d cores; binding disabled",
            max_ranks_per_node,
            threads_per_rank,
            cores_per_node,
        )
        decision = DISABLED

    _log.info("binding_selected policy=%s level=%s", decision.policy, decision.level)
    return decision


def core_ranges(max_ranks_per_node: int, threads_per_rank: int) -> list[str]:
    """Split ``0..max_ranks_per_node*threads_per_rank-1`` into per-rank ranges."""
    if max_ranks_per_node < 1 or threads_per_rank < 1:
        raise InvalidParameter("core ranges need at least one rank and one thread")
    return [
        cpu_range(slot * threads_per_rank, (slot + 1) * threads_per_rank - 1)
        for slot in range(max_ranks_per_node)
    ]
