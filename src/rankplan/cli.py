from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import time
from pathlib import Path
from typing import Any, Mapping, Sequence

from rich.console import Console
from rich.table import Table

from rankplan._logging import setup_logging
from rankplan.environment import detect_mpi_stack, read_allocation, thread_hint
from rankplan.invocation import build_invocation, nodefile_artifact, run_invocation
from rankplan.launchers import SUPPORTED_STACKS
from rankplan.models import (
    Allocation,
    InvalidParameter,
    Invocation,
    JobRequest,
    LaunchPlan,
    MpiStack,
    RankplanError,
    Topology,
)
from rankplan.planner import resolve_plan
from rankplan.placement import render_nodefile
from rankplan.systems import load_systems, resolve_topology
from rankplan.utils import join_argv, split_switches

_cli_log = logging.getLogger("rankplan.cli")


def _console() -> Console:
    return Console()


def _render_systems_table(systems_file: Path, systems: dict[str, Topology]) -> None:
    console = _console()
    overview = Table(title="Systems File", show_header=False)
    overview.add_column("Field", style="bold cyan")
    overview.add_column("Value")
    overview.add_row("Path", str(systems_file))
    overview.add_row("Count", str(len(systems)))
    console.print(overview)

    table = Table(title="Known Systems")
    table.add_column("Name", style="bold")
    table.add_column("Hostname Pattern")
    table.add_column("Cores/Socket", justify="right")
    table.add_column("Sockets", justify="right")
    table.add_column("Max Nodes", justify="right")
    table.add_column("Tmp Dir")
    for name, topology in systems.items():
        table.add_row(
            name,
            topology.hostname_pattern or "",
            "" if topology.cores_per_socket is None else str(topology.cores_per_socket),
            str(topology.sockets_per_node),
            str(topology.max_nodes_per_job),
            topology.tmp_dir or "",
        )
    if not systems:
        table.add_row("<none>", "", "", "", "", "")
    console.print(table)


def _render_plan_table(
    plan: LaunchPlan, invocation: Invocation, topology: Topology
) -> None:
    console = _console()
    geometry = plan.geometry
    overview = Table(title="Launch Plan", show_header=False)
    overview.add_column("Field", style="bold cyan")
    overview.add_column("Value")
    overview.add_row("System", topology.name)
    overview.add_row(
        "MPI Stack",
        plan.stack.name + (f" {plan.stack.version}" if plan.stack.version else ""),
    )
    overview.add_row("Job ID", plan.job_id)
    overview.add_row("Nodes", str(geometry.num_nodes))
    overview.add_row("Ranks", str(geometry.num_ranks))
    overview.add_row("Ranks/Node", str(geometry.ranks_per_node))
    overview.add_row("Threads/Rank", str(geometry.threads_per_rank))
    overview.add_row("Binding", f"{plan.binding.policy}/{plan.binding.level}")
    overview.add_row(
        "Node File",
        f"{invocation.nodefile} "
        + ("(resource manager)" if plan.placement.reuses_nodefile else "(generated)"),
    )
    console.print(overview)

    placement = Table(title="Placement")
    placement.add_column("Node", style="bold")
    placement.add_column("Ranks", justify="right")
    for entry in plan.placement.entries:
        placement.add_row(entry.node, str(entry.rank_count))
    console.print(placement)

    if invocation.env_overrides:
        env_table = Table(title="Environment Overrides")
        env_table.add_column("Variable", style="bold")
        env_table.add_column("Value")
        for key, value in invocation.env_overrides.items():
            env_table.add_row(key, value)
        console.print(env_table)

    console.print(join_argv(invocation.argv), markup=False, soft_wrap=True)


def _dry_run_payload(
    plan: LaunchPlan,
    invocation: Invocation,
    topology: Topology,
    allocation: Allocation,
) -> dict[str, Any]:
    return {
        "system": topology.to_json(),
        "allocation": allocation.to_json(),
        "plan": plan.to_json(),
        "invocation": invocation.to_json(),
        "nodefile_contents": render_nodefile(plan.placement),
    }


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rankplan",
        description="Resolve an MPI job geometry and launch it with the loaded MPI stack",
    )
    geometry = parser.add_argument_group("job geometry")
    geometry.add_argument("-N", "--nodes", default=None, help="Node count")
    geometry.add_argument("-n", "--ranks", default=None, help="Rank count")
    geometry.add_argument(
        "--ppn",
        "--ranks-per-node",
        dest="ranks_per_node",
        default=None,
        help="Ranks per node",
    )
    geometry.add_argument(
        "-t",
        "--threads",
        dest="threads_per_rank",
        default=None,
        help="Threads per rank",
    )
    geometry.add_argument(
        "--node-offset",
        default=0,
        help="Skip this many allocated nodes before placing ranks",
    )
    geometry.add_argument(
        "--nodefile",
        "--machinefile",
        dest="nodefile",
        default=None,
        help="Node file to use instead of $PBS_NODEFILE",
    )

    binding = parser.add_argument_group("binding")
    binding.add_argument(
        "--binding-policy",
        default=None,
        help="scatter|rr, compact|bunch, none|off",
    )
    binding.add_argument(
        "--binding-level",
        default=None,
        help="core, socket, numanode|numa, none|off",
    )

    launcher = parser.add_argument_group("launcher")
    launcher.add_argument(
        "--mpi",
        choices=list(SUPPORTED_STACKS),
        default=None,
        help="MPI stack (default: detected from $LOADEDMODULES)",
    )
    launcher.add_argument(
        "--mpi-version", default=None, help="MPI release when --mpi is given"
    )
    launcher.add_argument(
        "--mpi-args",
        default=None,
        help="Extra launcher switches, appended after the generated ones",
    )

    config = parser.add_argument_group("configuration")
    config.add_argument("--system", default=None, help="System name")
    config.add_argument(
        "--systems-file",
        default=None,
        help="Systems YAML path (default: $RANKPLAN_SYSTEMS_FILE or ./systems.yaml)",
    )
    config.add_argument(
        "--list-systems", action="store_true", help="List known systems and exit"
    )

    parser.add_argument(
        "--dry-run", action="store_true", help="Print the plan without launching"
    )
    parser.add_argument("--format", choices=["json", "table"], default="table")
    parser.add_argument("-v", "--verbose", action="count", default=0)
    parser.add_argument(
        "-q", "--quiet", action="store_true", help="Only log errors to the console"
    )
    parser.add_argument(
        "--log-file", default=None, help="Log file (default: $RANKPLAN_LOG_FILE)"
    )
    parser.add_argument("command", nargs=argparse.REMAINDER, help="Program and arguments")
    return parser


def _parse_count(raw: str | int | None, flag: str) -> int | None:
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        raise InvalidParameter(f"{flag} expects an integer, got '{raw}'") from None


def _request_from_args(args: argparse.Namespace) -> JobRequest:
    return JobRequest(
        num_nodes=_parse_count(args.nodes, "--nodes"),
        num_ranks=_parse_count(args.ranks, "--ranks"),
        ranks_per_node=_parse_count(args.ranks_per_node, "--ranks-per-node"),
        threads_per_rank=_parse_count(args.threads_per_rank, "--threads"),
        binding_policy=args.binding_policy,
        binding_level=args.binding_level,
        node_offset=_parse_count(args.node_offset, "--node-offset"),
        extra_switches=split_switches(args.mpi_args),
        command=tuple(args.command),
    )


def _resolve_stack(args: argparse.Namespace, env: Mapping[str, str]) -> MpiStack:
    if args.mpi is not None:
        return MpiStack(name=args.mpi, version=args.mpi_version)
    return detect_mpi_stack(env)


def _cmd_list_systems(args: argparse.Namespace) -> int:
    systems_file, systems = load_systems(args.systems_file, required=False)
    payload = {
        "systems_file": str(systems_file),
        "count": len(systems),
        "systems": {name: topology.to_json() for name, topology in systems.items()},
    }
    if args.format == "json":
        print(json.dumps(payload, indent=2, sort_keys=True))
    else:
        _render_systems_table(systems_file, systems)
    return 0


def _cmd_launch(args: argparse.Namespace) -> int:
    ambient_env = dict(os.environ)
    request = _request_from_args(args)
    _, topology = resolve_topology(
        system_name=args.system, systems_file=args.systems_file
    )
    allocation = read_allocation(ambient_env, nodefile_override=args.nodefile)
    stack = _resolve_stack(args, ambient_env)
    plan = resolve_plan(
        allocation,
        request,
        topology,
        stack,
        thread_hint=thread_hint(ambient_env),
    )

    with nodefile_artifact(plan, tmp_dir=topology.tmp_dir) as nodefile:
        invocation = build_invocation(plan, nodefile, ambient_env)
        if args.dry_run:
            if args.format == "json":
                payload = _dry_run_payload(plan, invocation, topology, allocation)
                print(json.dumps(payload, indent=2, sort_keys=True))
            else:
                _render_plan_table(plan, invocation, topology)
            return 0
        return run_invocation(invocation, ambient_env)


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    raw_argv = list(argv) if argv is not None else sys.argv[1:]
    args = parser.parse_args(raw_argv)
    setup_logging(verbose=args.verbose, quiet=args.quiet, log_file=args.log_file)
    if args.command and args.command[0] == "--":
        args.command = args.command[1:]
    if not args.list_systems and not args.command:
        parser.error("a program to launch is required")

    command = "list-systems" if args.list_systems else "launch"
    argv_text = " ".join(raw_argv)
    started = time.perf_counter()
    _cli_log.info("cli_command_start command=%s argv=%s", command, argv_text)

    exit_code = 1
    try:
        if args.list_systems:
            exit_code = _cmd_list_systems(args)
        else:
            exit_code = _cmd_launch(args)
    except RankplanError as exc:
        _cli_log.error(
            "cli_command_error command=%s kind=%s error=%s", command, exc.kind, exc
        )
        print(f"[{exc.kind}] {exc}", file=sys.stderr)
        exit_code = exc.exit_code
    except KeyboardInterrupt:
        _cli_log.error("cli_command_error command=%s kind=interrupted", command)
        print("\n[interrupted]", file=sys.stderr)
        exit_code = 130
    except (OSError, ValueError) as exc:
        _cli_log.error(
            "cli_command_error command=%s kind=%s error=%s",
            command,
            type(exc).__name__,
            exc,
        )
        print(f"[error] {type(exc).__name__}: {exc}", file=sys.stderr)
        exit_code = 1
    finally:
        duration_sec = time.perf_counter() - started
        _cli_log.info(
            "cli_command_end command=%s exit_code=%s duration_sec=%.3f",
            command,
            exit_code,
            duration_sec,
        )

    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
