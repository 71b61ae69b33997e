from __future__ import annotations

import contextlib
import logging
import os
import signal
import subprocess
import sys
import tempfile
from pathlib import Path
from typing import Iterator, Mapping

from rankplan.launchers import get_profile
from rankplan.models import Invocation, LaunchPlan, RankplanError
from rankplan.placement import render_nodefile
from rankplan.utils import join_argv, sanitize_for_path

_log = logging.getLogger("rankplan.invocation")


@contextlib.contextmanager
def nodefile_artifact(plan: LaunchPlan, *, tmp_dir: str | None = None) -> Iterator[Path]:
    """Yield the node file for *plan*, removing it again on every exit path.

    A resource manager file that is reused verbatim is yielded untouched and
    never deleted.
    """
    if plan.source_nodefile is not None:
        yield plan.source_nodefile
        return

    if tmp_dir is not None:
        Path(tmp_dir).mkdir(parents=True, exist_ok=True)
    fd, raw_path = tempfile.mkstemp(
        prefix=f"rankplan.{sanitize_for_path(plan.job_id)}.",
        suffix=".nodes",
        dir=tmp_dir,
    )
    path = Path(raw_path)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(render_nodefile(plan.placement))
        _log.info("nodefile_written path=%s lines=%d", path, plan.geometry.num_ranks)
        yield path
    finally:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            _log.warning("Failed to remove node file %s: %s", path, exc)
        else:
            _log.info("nodefile_removed path=%s", path)


def build_invocation(
    plan: LaunchPlan,
    nodefile: Path,
    ambient_env: Mapping[str, str],
) -> Invocation:
    rendered = get_profile(plan.stack.name).render(plan, nodefile, ambient_env)
    argv = (
        rendered.executable,
        *rendered.switches,
        # user switches go last and may repeat rendered ones
        *plan.extra_switches,
        *plan.command,
    )
    _log.info("invocation_built argv=%s", join_argv(argv))
    return Invocation(argv=argv, env_overrides=dict(rendered.env), nodefile=nodefile)


def _signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return f"signal {signum}"


def run_invocation(invocation: Invocation, ambient_env: Mapping[str, str]) -> int:
    """Run the launcher and return its exit status.

    Death by signal is reported and mapped to ``128 + signum`` like a shell.
    """
    child_env = dict(ambient_env)
    child_env.update(invocation.env_overrides)
    try:
        process = subprocess.Popen(list(invocation.argv), env=child_env)
    except OSError as exc:
        raise RankplanError(
            f"Failed to start launcher '{invocation.argv[0]}': {exc}"
        ) from exc

    _log.info("launcher_started pid=%d", process.pid)
    try:
        rc = process.wait()
    except KeyboardInterrupt:
        process.send_signal(signal.SIGINT)
        process.wait()
        raise

    if rc < 0:
        name = _signal_name(-rc)
        _log.error("launcher_signaled pid=%d signal=%s", process.pid, name)
        print(f"[launcher] {invocation.argv[0]} terminated by {name}", file=sys.stderr)
        return 128 - rc
    _log.info("launcher_exited pid=%d exit_code=%d", process.pid, rc)
    return rc
