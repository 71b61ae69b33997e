from __future__ import annotations

from pathlib import Path

import pytest

from rankplan.models import (
    Allocation,
    AllocationMismatch,
    InsufficientNodes,
    InvalidParameter,
    JobGeometry,
    ResourceManagerMismatch,
)
from rankplan.placement import (
    expand_placement,
    parse_nodefile,
    parse_nodefile_text,
    render_nodefile,
    table_from_hosts,
)


def _allocation(num_nodes: int, cores: int, *, interleaved: bool = False) -> Allocation:
    names = [f"node{idx:02d}" for idx in range(num_nodes)]
    if interleaved:
        nodes = [name for _ in range(cores) for name in names]
    else:
        nodes = [name for name in names for _ in range(cores)]
    return Allocation(
        nodes=tuple(nodes),
        num_nodes=num_nodes,
        cores_per_node=cores,
        nodefile=Path("/var/spool/torque/aux/1234.server"),
        job_id="1234.server",
    )


def test_uniform_rebuild_assigns_ranks_per_node() -> None:
    geometry = JobGeometry(num_nodes=3, num_ranks=6, ranks_per_node=2, threads_per_rank=1)
    table = expand_placement(_allocation(4, 8), geometry)
    assert [entry.node for entry in table.entries] == ["node00", "node01", "node02"]
    assert table.counts == [2, 2, 2]
    assert not table.reuses_nodefile
    assert table.hosts() == [
        "node00",
        "node00",
        "node01",
        "node01",
        "node02",
        "node02",
    ]


@pytest.mark.parametrize(
    ("num_nodes", "num_ranks", "expected"),
    [
        (3, 7, [3, 2, 2]),
        (2, 3, [2, 1]),
        (4, 11, [3, 3, 3, 2]),
        (4, 5, [2, 1, 1, 1]),
    ],
)
def test_uneven_rebuild_front_loads_remainder(
    num_nodes: int, num_ranks: int, expected: list[int]
) -> None:
    geometry = JobGeometry(
        num_nodes=num_nodes,
        num_ranks=num_ranks,
        ranks_per_node=-(num_ranks // num_nodes),
        threads_per_rank=1,
    )
    table = expand_placement(_allocation(4, 8), geometry)
    assert table.counts == expected
    assert table.num_ranks == num_ranks


def test_full_allocation_reuses_resource_manager_file() -> None:
    allocation = _allocation(2, 4, interleaved=True)
    geometry = JobGeometry(num_nodes=2, num_ranks=8, ranks_per_node=4, threads_per_rank=1)
    table = expand_placement(allocation, geometry)
    assert table.reuses_nodefile
    assert table.counts == [4, 4]
    assert table.hosts() == list(allocation.nodes)


def test_packing_onto_fewer_nodes_rebuilds() -> None:
    allocation = _allocation(2, 8)
    geometry = JobGeometry(num_nodes=1, num_ranks=16, ranks_per_node=16, threads_per_rank=1)
    table = expand_placement(allocation, geometry)
    assert not table.reuses_nodefile
    assert [entry.node for entry in table.entries] == ["node00"]
    assert table.counts == [16]


def test_node_offset_forces_rebuild() -> None:
    allocation = _allocation(3, 2)
    geometry = JobGeometry(num_nodes=2, num_ranks=6, ranks_per_node=3, threads_per_rank=1)
    table = expand_placement(allocation, geometry, node_offset=1)
    assert [entry.node for entry in table.entries] == ["node01", "node02"]
    assert not table.reuses_nodefile


def test_negative_offset_is_invalid() -> None:
    geometry = JobGeometry(num_nodes=1, num_ranks=1, ranks_per_node=1, threads_per_rank=1)
    with pytest.raises(InvalidParameter):
        expand_placement(_allocation(2, 2), geometry, node_offset=-1)


def test_distinct_node_count_must_match_resource_manager() -> None:
    allocation = Allocation(nodes=("a", "a", "b"), num_nodes=3, cores_per_node=2)
    geometry = JobGeometry(num_nodes=2, num_ranks=2, ranks_per_node=1, threads_per_rank=1)
    with pytest.raises(AllocationMismatch, match="2 unique nodes"):
        expand_placement(allocation, geometry)


def test_insufficient_nodes_after_offset() -> None:
    geometry = JobGeometry(num_nodes=2, num_ranks=2, ranks_per_node=1, threads_per_rank=1)
    with pytest.raises(InsufficientNodes):
        expand_placement(_allocation(2, 1), geometry, node_offset=1)
    with pytest.raises(InsufficientNodes):
        expand_placement(
            _allocation(2, 1),
            JobGeometry(num_nodes=3, num_ranks=3, ranks_per_node=1, threads_per_rank=1),
        )


def test_rendered_nodefile_parses_back_to_the_same_table() -> None:
    geometry = JobGeometry(num_nodes=3, num_ranks=7, ranks_per_node=-2, threads_per_rank=1)
    table = expand_placement(_allocation(3, 4), geometry)
    text = render_nodefile(table)
    assert text.count("\n") == 7
    assert table_from_hosts(parse_nodefile_text(text)).entries == table.entries


def test_parse_nodefile_skips_comments_and_blank_lines(tmp_path: Path) -> None:
    path = tmp_path / "nodes"
    path.write_text("# header\nnode1\n\n  node2  \nnode1\n", encoding="utf-8")
    assert parse_nodefile(path) == ["node1", "node2", "node1"]


def test_parse_nodefile_stops_at_malformed_line(tmp_path: Path) -> None:
    path = tmp_path / "nodes"
    path.write_text("node1\nnode2 slots=4\nnode3\n", encoding="utf-8")
    with pytest.raises(ResourceManagerMismatch, match="Malformed line 2"):
        parse_nodefile(path)


def test_parse_nodefile_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ResourceManagerMismatch, match="Cannot read node file"):
        parse_nodefile(tmp_path / "missing")
