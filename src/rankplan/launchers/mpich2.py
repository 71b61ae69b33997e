from __future__ import annotations

from pathlib import Path
from typing import Mapping

from rankplan.launchers.base import RenderedLaunch
from rankplan.models import LaunchPlan, UnsupportedStack


class Mpich2Profile:
    name = "mpich2"
    executable = "mpiexec"

    def render(
        self,
        plan: LaunchPlan,
        nodefile: Path,
        ambient_env: Mapping[str, str],
    ) -> RenderedLaunch:
        version = f" {plan.stack.version}" if plan.stack.version else ""
        raise UnsupportedStack(
            f"MPICH2{version} is detected but not supported; load an mvapich2 "
            "or openmpi module instead"
        )
