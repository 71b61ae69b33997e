from __future__ import annotations

from pathlib import Path
from typing import Mapping

from rankplan.launchers.base import RenderedLaunch, absent_only, thread_env
from rankplan.models import LaunchPlan, UnsupportedFeature

# releases before this only know the --bind-to-<level> spelling and no numa level
MODERN_RELEASE = (1, 7)

_MAP_BY = {"scatter": "socket", "compact": "core"}
_BIND_TO = {"core": "core", "socket": "socket", "numanode": "numa"}
_LEGACY_MAP_BY = {"scatter": "--bysocket", "compact": "--bycore"}
_LEGACY_BIND_TO = {"core": "--bind-to-core", "socket": "--bind-to-socket"}
_HACK_ENV = {"OMPI_MCA_mpi_warn_on_fork": "0"}


class OpenMpiProfile:
    """Open MPI ``mpirun``; binding is expressed as switches."""

    name = "openmpi"
    executable = "mpirun"

    def _is_legacy(self, plan: LaunchPlan) -> bool:
        version = plan.stack.version_tuple
        return bool(version) and version < MODERN_RELEASE

    def _binding_switches(self, plan: LaunchPlan) -> list[str]:
        binding = plan.binding
        threads = str(plan.geometry.threads_per_rank)
        if self._is_legacy(plan):
            if not binding.enabled:
                return ["--bind-to-none"]
            if binding.policy == "illogical":
                return ["--cpus-per-proc", threads, "--bind-to-core"]
            if binding.level not in _LEGACY_BIND_TO:
                raise UnsupportedFeature(
                    f"Binding level '{binding.level}' needs Open MPI "
                    f"{'.'.join(str(part) for part in MODERN_RELEASE)} or newer; "
                    f"detected {plan.stack.version}"
                )
            return [_LEGACY_MAP_BY[binding.policy], _LEGACY_BIND_TO[binding.level]]

        if not binding.enabled:
            return ["--bind-to", "none"]
        if binding.policy == "illogical":
            return ["--map-by", f"slot:PE={threads}", "--bind-to", "core"]
        return [
            "--map-by",
            _MAP_BY[binding.policy],
            "--bind-to",
            _BIND_TO[binding.level],
        ]

    def render(
        self,
        plan: LaunchPlan,
        nodefile: Path,
        ambient_env: Mapping[str, str],
    ) -> RenderedLaunch:
        switches = [
            "-np",
            str(plan.geometry.num_ranks),
            "--hostfile",
            str(nodefile),
        ]
        switches.extend(self._binding_switches(plan))

        candidates = {**_HACK_ENV, **thread_env(plan)}
        # mpirun does not forward the environment to remote ranks on its own
        for key in candidates:
            switches.extend(["-x", key])
        return RenderedLaunch(
            executable=self.executable,
            switches=tuple(switches),
            env=absent_only(candidates, ambient_env),
        )
