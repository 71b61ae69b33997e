from __future__ import annotations

import re
import socket
from pathlib import Path
from typing import Any

import yaml

from rankplan.models import ConfigError, Topology
from rankplan.utils import env_default

DEFAULT_SYSTEMS_FILE = "systems.yaml"
SYSTEMS_FILE_ENV = "RANKPLAN_SYSTEMS_FILE"
SYSTEM_ALLOWED_KEYS = {
    "hostname_pattern",
    "cores_per_socket",
    "sockets_per_node",
    "max_nodes_per_job",
    "tmp_dir",
}
DEFAULT_TOPOLOGY = Topology(name="default")


def default_systems_path() -> Path:
    return Path(env_default(SYSTEMS_FILE_ENV, DEFAULT_SYSTEMS_FILE)).expanduser().resolve()


def _require_mapping(value: Any, *, label: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ConfigError(f"{label} must be a mapping")
    return {str(k): v for k, v in value.items()}


def _coerce_optional_str(value: Any, *, label: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(f"{label} must be a string")
    trimmed = value.strip()
    return trimmed or None


def _coerce_optional_positive_int(value: Any, *, label: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{label} must be an integer")
    if value <= 0:
        raise ConfigError(f"{label} must be > 0")
    return int(value)


def _coerce_pattern(value: Any, *, label: str) -> str | None:
    pattern = _coerce_optional_str(value, label=label)
    if pattern is None:
        return None
    try:
        re.compile(pattern)
    except re.error as exc:
        raise ConfigError(f"{label} is not a valid regular expression: {exc}") from exc
    return pattern


def _parse_system(name: str, payload: Any) -> Topology:
    data = _require_mapping(payload, label=f"systems.{name}")
    unknown = sorted(set(data.keys()) - SYSTEM_ALLOWED_KEYS)
    if unknown:
        raise ConfigError(
            f"systems.{name} has unknown keys: {unknown}. "
            f"Allowed keys: {sorted(SYSTEM_ALLOWED_KEYS)}"
        )
    sockets = _coerce_optional_positive_int(
        data.get("sockets_per_node"), label=f"systems.{name}.sockets_per_node"
    )
    max_nodes = _coerce_optional_positive_int(
        data.get("max_nodes_per_job"), label=f"systems.{name}.max_nodes_per_job"
    )
    return Topology(
        name=name,
        hostname_pattern=_coerce_pattern(
            data.get("hostname_pattern"), label=f"systems.{name}.hostname_pattern"
        ),
        cores_per_socket=_coerce_optional_positive_int(
            data.get("cores_per_socket"), label=f"systems.{name}.cores_per_socket"
        ),
        sockets_per_node=(
            DEFAULT_TOPOLOGY.sockets_per_node if sockets is None else sockets
        ),
        max_nodes_per_job=(
            DEFAULT_TOPOLOGY.max_nodes_per_job if max_nodes is None else max_nodes
        ),
        tmp_dir=_coerce_optional_str(
            data.get("tmp_dir"), label=f"systems.{name}.tmp_dir"
        ),
    )


def load_systems(
    path: str | Path | None, *, required: bool
) -> tuple[Path, dict[str, Topology]]:
    """Load the systems catalog, keeping file order for hostname matching."""
    resolved_path = (
        default_systems_path() if path is None else Path(path).expanduser().resolve()
    )
    if not resolved_path.exists():
        if required:
            raise ConfigError(f"Systems file not found: {resolved_path}")
        return resolved_path, {}

    try:
        loaded = yaml.safe_load(resolved_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Cannot parse systems file {resolved_path}: {exc}") from exc
    if loaded is None:
        loaded = {}
    if not isinstance(loaded, dict):
        raise ConfigError(f"Systems file root must be a mapping: {resolved_path}")

    raw_systems = loaded.get("systems", {})
    if raw_systems is None:
        raw_systems = {}
    if not isinstance(raw_systems, dict):
        raise ConfigError(f"'systems' must be a mapping in {resolved_path}")

    parsed: dict[str, Topology] = {}
    for name, payload in raw_systems.items():
        if not isinstance(name, str) or not name.strip():
            raise ConfigError(f"System names must be non-empty strings: {resolved_path}")
        trimmed = name.strip()
        if trimmed in parsed:
            raise ConfigError(f"Duplicate system name: {trimmed}")
        parsed[trimmed] = _parse_system(trimmed, payload)
    return resolved_path, parsed


def match_system(systems: dict[str, Topology], hostname: str) -> Topology | None:
    for topology in systems.values():
        if topology.hostname_pattern and re.search(topology.hostname_pattern, hostname):
            return topology
    return None


def resolve_topology(
    *,
    system_name: str | None,
    systems_file: str | Path | None,
    hostname: str | None = None,
) -> tuple[Path, Topology]:
    required = system_name is not None or systems_file is not None
    resolved_path, systems = load_systems(systems_file, required=required)
    if system_name is not None:
        topology = systems.get(system_name)
        if topology is None:
            available = ", ".join(systems.keys()) or "<none>"
            raise ConfigError(
                f"Unknown system '{system_name}' in {resolved_path}. "
                f"Available: {available}"
            )
        return resolved_path, topology

    host = hostname if hostname is not None else socket.gethostname()
    matched = match_system(systems, host)
    return resolved_path, matched if matched is not None else DEFAULT_TOPOLOGY
