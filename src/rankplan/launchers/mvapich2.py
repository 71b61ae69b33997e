from __future__ import annotations

from pathlib import Path
from typing import Mapping

from rankplan.binding import core_ranges
from rankplan.launchers.base import RenderedLaunch, absent_only, thread_env
from rankplan.models import LaunchPlan

_POLICY_VALUES = {"scatter": "scatter", "compact": "bunch"}
_LEVEL_VALUES = {"core": "core", "socket": "socket", "numanode": "numanode"}


class Mvapich2Profile:
    """MVAPICH2 through the hydra ``mpiexec``; binding is driven by ``MV2_*``."""

    name = "mvapich2"
    executable = "mpiexec"

    def _hack_env(self, plan: LaunchPlan) -> dict[str, str]:
        env: dict[str, str] = {}
        if plan.geometry.threads_per_rank > 1:
            env["MV2_USE_THREAD_WARNING"] = "0"
        return env

    def _binding_env(self, plan: LaunchPlan) -> dict[str, str]:
        binding = plan.binding
        if not binding.enabled:
            return {"MV2_ENABLE_AFFINITY": "0"}
        env = {"MV2_ENABLE_AFFINITY": "1"}
        if binding.policy == "illogical":
            geometry = plan.geometry
            env["MV2_CPU_MAPPING"] = ":".join(
                core_ranges(geometry.max_ranks_per_node, geometry.threads_per_rank)
            )
            return env
        env["MV2_CPU_BINDING_POLICY"] = _POLICY_VALUES[binding.policy]
        env["MV2_CPU_BINDING_LEVEL"] = _LEVEL_VALUES[binding.level]
        return env

    def render(
        self,
        plan: LaunchPlan,
        nodefile: Path,
        ambient_env: Mapping[str, str],
    ) -> RenderedLaunch:
        switches = ("-n", str(plan.geometry.num_ranks), "-f", str(nodefile))
        candidates = {
            **self._hack_env(plan),
            **thread_env(plan),
            **self._binding_env(plan),
        }
        return RenderedLaunch(
            executable=self.executable,
            switches=switches,
            env=absent_only(candidates, ambient_env),
        )
