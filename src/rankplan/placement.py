"""Expand an allocation into a per-node rank placement table."""

from __future__ import annotations

import logging
from collections import Counter
from pathlib import Path
from typing import Iterable

from rankplan.models import (
    Allocation,
    AllocationMismatch,
    InsufficientNodes,
    InvalidParameter,
    JobGeometry,
    PlacementEntry,
    PlacementTable,
    ResourceManagerMismatch,
)
from rankplan.utils import unique_in_order

_log = logging.getLogger("rankplan.placement")


def parse_nodefile(path: Path) -> list[str]:
    """Read one node identifier per line.

    Blank lines and ``#`` comments are skipped; the first line holding more
    than one token aborts the parse.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ResourceManagerMismatch(f"Cannot read node file {path}: {exc}") from exc
    return parse_nodefile_text(text, source=str(path))


def parse_nodefile_text(text: str, *, source: str = "<nodefile>") -> list[str]:
    nodes: list[str] = []
    for line_number, raw in enumerate(text.splitlines(), 1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        tokens = line.split()
        if len(tokens) != 1:
            raise ResourceManagerMismatch(
                f"Malformed line {line_number} in {source}: {raw!r}"
            )
        nodes.append(tokens[0])
    return nodes


def render_nodefile(table: PlacementTable) -> str:
    return "".join(f"{host}\n" for host in table.hosts())


def table_from_hosts(hosts: Iterable[str]) -> PlacementTable:
    """Count ranks per node in order of first appearance."""
    host_list = list(hosts)
    counts = Counter(host_list)
    return PlacementTable(
        entries=tuple(
            PlacementEntry(node=node, rank_count=counts[node])
            for node in unique_in_order(host_list)
        )
    )


def _rebuild(nodes: list[str], geometry: JobGeometry) -> PlacementTable:
    base = abs(geometry.ranks_per_node)
    extra = geometry.remainder if geometry.is_uneven else 0
    entries = []
    for index, node in enumerate(nodes):
        # uneven division front-loads one extra rank on the first nodes
        count = base + (1 if index < extra else 0)
        entries.append(PlacementEntry(node=node, rank_count=count))
    return PlacementTable(entries=tuple(entries))


def expand_placement(
    allocation: Allocation,
    geometry: JobGeometry,
    *,
    node_offset: int = 0,
) -> PlacementTable:
    if node_offset < 0:
        raise InvalidParameter(f"node_offset must be >= 0, got {node_offset}")

    distinct = unique_in_order(allocation.nodes)
    if len(distinct) != allocation.num_nodes:
        raise AllocationMismatch(
            f"Node file names {len(distinct)} unique nodes but the resource "
            f"manager reports {allocation.num_nodes}"
        )

    available = distinct[node_offset:]
    if len(available) < geometry.num_nodes:
        raise InsufficientNodes(
            f"{geometry.num_nodes} nodes requested but only {len(available)} "
            f"allocated nodes are available after offset {node_offset}"
        )

    provided = allocation.num_nodes * allocation.cores_per_node
    if (
        node_offset == 0
        and geometry.num_nodes == allocation.num_nodes
        and geometry.num_nodes * geometry.ranks_per_node == provided
        and len(allocation.nodes) == geometry.num_ranks
    ):
        _log.info("placement_reuse nodefile=%s ranks=%d", allocation.nodefile, provided)
        reused = table_from_hosts(allocation.nodes)
        return PlacementTable(
            entries=reused.entries, reused_hosts=tuple(allocation.nodes)
        )

    table = _rebuild(available[: geometry.num_nodes], geometry)
    _log.info(
        "placement_rebuilt nodes=%d counts=%s offset=%d",
        len(table.entries),
        table.counts,
        node_offset,
    )
    return table
