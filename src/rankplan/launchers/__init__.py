from __future__ import annotations

from rankplan.launchers.base import LauncherProfile, RenderedLaunch
from rankplan.launchers.mpich2 import Mpich2Profile
from rankplan.launchers.mvapich2 import Mvapich2Profile
from rankplan.launchers.openmpi import OpenMpiProfile
from rankplan.models import UnsupportedStack

SUPPORTED_STACKS = ("mvapich2", "openmpi", "mpich2")


def get_profile(stack: str) -> LauncherProfile:
    if stack == "mvapich2":
        return Mvapich2Profile()
    if stack == "openmpi":
        return OpenMpiProfile()
    if stack == "mpich2":
        return Mpich2Profile()
    raise UnsupportedStack(
        f"Unknown MPI stack '{stack}'. Known: {list(SUPPORTED_STACKS)}"
    )


__all__ = [
    "LauncherProfile",
    "Mpich2Profile",
    "Mvapich2Profile",
    "OpenMpiProfile",
    "RenderedLaunch",
    "SUPPORTED_STACKS",
    "get_profile",
]
