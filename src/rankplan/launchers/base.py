from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Protocol

from rankplan.models import LaunchPlan

_log = logging.getLogger("rankplan.launchers")


@dataclass(frozen=True)
class RenderedLaunch:
    executable: str
    switches: tuple[str, ...]
    env: dict[str, str] = field(default_factory=dict)


class LauncherProfile(Protocol):
    name: str
    executable: str

    def render(
        self,
        plan: LaunchPlan,
        nodefile: Path,
        ambient_env: Mapping[str, str],
    ) -> RenderedLaunch: ...


def thread_env(plan: LaunchPlan) -> dict[str, str]:
    return {"OMP_NUM_THREADS": str(plan.geometry.threads_per_rank)}


def absent_only(
    candidates: Mapping[str, str], ambient_env: Mapping[str, str]
) -> dict[str, str]:
    """Drop every candidate already present in the ambient environment."""
    kept: dict[str, str] = {}
    for key, value in candidates.items():
        if key in ambient_env:
            if ambient_env[key] != value:
                _log.info(
                    "env_override_skipped key=%s ambient=%s wanted=%s",
                    key,
                    ambient_env[key],
                    value,
                )
            continue
        kept[key] = value
    return kept
