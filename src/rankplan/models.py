from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


class RankplanError(RuntimeError):
    """Base error for launch plan failures."""

    kind = "error"
    exit_code = 1


class ConfigError(RankplanError):
    """Raised when the systems configuration is invalid."""

    kind = "config error"
    exit_code = 2


class InvalidParameter(RankplanError):
    kind = "invalid parameter"
    exit_code = 3


class GeometryConflict(RankplanError):
    kind = "geometry conflict"
    exit_code = 4


class ResourceManagerMismatch(RankplanError):
    kind = "resource manager mismatch"
    exit_code = 5


class InsufficientNodes(RankplanError):
    kind = "insufficient nodes"
    exit_code = 6


class AllocationMismatch(RankplanError):
    kind = "allocation mismatch"
    exit_code = 7


class QuotaExceeded(RankplanError):
    kind = "quota exceeded"
    exit_code = 8


class NoMpiModuleLoaded(RankplanError):
    kind = "no mpi module loaded"
    exit_code = 9


class UnsupportedStack(RankplanError):
    kind = "unsupported stack"
    exit_code = 10


class UnsupportedFeature(RankplanError):
    kind = "unsupported feature"
    exit_code = 11


@dataclass(frozen=True)
class Allocation:
    nodes: tuple[str, ...]
    num_nodes: int
    cores_per_node: int
    nodefile: Path | None = None
    job_id: str = "0"

    def to_json(self) -> dict[str, Any]:
        return {
            "nodes": list(self.nodes),
            "num_nodes": self.num_nodes,
            "cores_per_node": self.cores_per_node,
            "nodefile": None if self.nodefile is None else str(self.nodefile),
            "job_id": self.job_id,
        }


@dataclass(frozen=True)
class JobRequest:
    num_nodes: int | None = None
    num_ranks: int | None = None
    ranks_per_node: int | None = None
    threads_per_rank: int | None = None
    binding_policy: str | None = None
    binding_level: str | None = None
    node_offset: int = 0
    extra_switches: tuple[str, ...] = ()
    command: tuple[str, ...] = ()


@dataclass(frozen=True)
class JobGeometry:
    num_nodes: int
    num_ranks: int
    # negative: magnitude of the per-node floor when ranks do not divide evenly
    ranks_per_node: int
    threads_per_rank: int

    @property
    def is_uneven(self) -> bool:
        return self.ranks_per_node < 0

    @property
    def remainder(self) -> int:
        return self.num_ranks - self.num_nodes * abs(self.ranks_per_node)

    @property
    def max_ranks_per_node(self) -> int:
        return abs(self.ranks_per_node) + (1 if self.remainder > 0 else 0)

    def to_json(self) -> dict[str, Any]:
        return {
            "num_nodes": self.num_nodes,
            "num_ranks": self.num_ranks,
            "ranks_per_node": self.ranks_per_node,
            "threads_per_rank": self.threads_per_rank,
        }


@dataclass(frozen=True)
class PlacementEntry:
    node: str
    rank_count: int


@dataclass(frozen=True)
class PlacementTable:
    entries: tuple[PlacementEntry, ...]
    # set when the resource manager node file is used verbatim
    reused_hosts: tuple[str, ...] | None = None

    @property
    def num_ranks(self) -> int:
        return sum(entry.rank_count for entry in self.entries)

    @property
    def counts(self) -> list[int]:
        return [entry.rank_count for entry in self.entries]

    @property
    def reuses_nodefile(self) -> bool:
        return self.reused_hosts is not None

    def hosts(self) -> list[str]:
        if self.reused_hosts is not None:
            return list(self.reused_hosts)
        out: list[str] = []
        for entry in self.entries:
            out.extend([entry.node] * entry.rank_count)
        return out

    def to_json(self) -> dict[str, Any]:
        return {
            "entries": [
                {"node": entry.node, "rank_count": entry.rank_count}
                for entry in self.entries
            ],
            "reuses_nodefile": self.reuses_nodefile,
        }


@dataclass(frozen=True)
class BindingDecision:
    policy: str  # scatter | compact | illogical | none
    level: str  # core | socket | numanode | arbitrary | off

    @property
    def enabled(self) -> bool:
        return self.policy != "none"

    def to_json(self) -> dict[str, Any]:
        return {"policy": self.policy, "level": self.level}


@dataclass(frozen=True)
class MpiStack:
    name: str
    version: str | None = None
    module: str | None = None

    @property
    def version_tuple(self) -> tuple[int, ...]:
        if not self.version:
            return ()
        parts: list[int] = []
        for token in self.version.replace("-", ".").split("."):
            digits = ""
            for char in token:
                if not char.isdigit():
                    break
                digits += char
            if not digits:
                break
            parts.append(int(digits))
        return tuple(parts)

    def to_json(self) -> dict[str, Any]:
        return {"name": self.name, "version": self.version, "module": self.module}


@dataclass(frozen=True)
class Topology:
    name: str
    hostname_pattern: str | None = None
    cores_per_socket: int | None = None
    sockets_per_node: int = 2
    max_nodes_per_job: int = 1024
    tmp_dir: str | None = None

    def socket_cores(self, cores_per_node: int) -> int:
        if self.cores_per_socket is not None:
            return self.cores_per_socket
        return max(1, cores_per_node // max(1, self.sockets_per_node))

    def to_json(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "hostname_pattern": self.hostname_pattern,
            "cores_per_socket": self.cores_per_socket,
            "sockets_per_node": self.sockets_per_node,
            "max_nodes_per_job": self.max_nodes_per_job,
            "tmp_dir": self.tmp_dir,
        }


@dataclass(frozen=True)
class LaunchPlan:
    geometry: JobGeometry
    placement: PlacementTable
    binding: BindingDecision
    stack: MpiStack
    job_id: str = "0"
    source_nodefile: Path | None = None
    extra_switches: tuple[str, ...] = ()
    command: tuple[str, ...] = ()

    def to_json(self) -> dict[str, Any]:
        return {
            "geometry": self.geometry.to_json(),
            "placement": self.placement.to_json(),
            "binding": self.binding.to_json(),
            "stack": self.stack.to_json(),
            "job_id": self.job_id,
            "source_nodefile": (
                None if self.source_nodefile is None else str(self.source_nodefile)
            ),
            "extra_switches": list(self.extra_switches),
            "command": list(self.command),
        }


@dataclass(frozen=True)
class Invocation:
    argv: tuple[str, ...]
    env_overrides: dict[str, str] = field(default_factory=dict)
    nodefile: Path | None = None

    def to_json(self) -> dict[str, Any]:
        return {
            "argv": list(self.argv),
            "env_overrides": dict(self.env_overrides),
            "nodefile": None if self.nodefile is None else str(self.nodefile),
        }
