"""Resolve MPI job geometry and render launcher invocations."""

from rankplan.invocation import build_invocation, nodefile_artifact
from rankplan.planner import resolve_plan

__all__ = ["build_invocation", "nodefile_artifact", "resolve_plan"]
