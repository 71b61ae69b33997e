from __future__ import annotations

import os
import shlex
from typing import Hashable, Iterable, Sequence, TypeVar

_T = TypeVar("_T", bound=Hashable)


def unique_in_order(values: Iterable[_T]) -> list[_T]:
    seen: set[_T] = set()
    out: list[_T] = []
    for value in values:
        if value in seen:
            continue
        out.append(value)
        seen.add(value)
    return out


def cpu_range(lo: int, hi: int) -> str:
    if hi < lo:
        raise ValueError(f"Invalid cpu range {lo}-{hi}")
    if lo == hi:
        return str(lo)
    return f"{lo}-{hi}"


def split_switches(raw: str | None) -> tuple[str, ...]:
    if raw is None or not raw.strip():
        return ()
    return tuple(shlex.split(raw))


def join_argv(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(arg) for arg in argv)


def sanitize_for_path(value: str) -> str:
    safe = []
    for char in value:
        if char.isalnum() or char in ("-", "_", "."):
            safe.append(char)
        else:
            safe.append("-")
    out = "".join(safe).strip("-")
    return out or "x"


def env_default(key: str, fallback: str) -> str:
    value = os.environ.get(key)
    return value if value else fallback
