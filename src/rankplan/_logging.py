"""Logging configuration for rankplan.

Every record carries the batch job id so launcher logs from concurrent jobs
sharing one log file can be told apart.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

_STREAM_HANDLER_ID = "rankplan_stream"
_FILE_HANDLER_ID = "rankplan_file"
_FORMAT = "ts=%(asctime)s level=%(levelname)s job=%(job)s logger=%(name)s msg=%(message)s"

LOG_LEVEL_ENV = "RANKPLAN_LOG_LEVEL"
LOG_FILE_ENV = "RANKPLAN_LOG_FILE"
JOB_ID_ENV = "PBS_JOBID"


class _JobContextFilter(logging.Filter):
    def __init__(self, job_id: str | None) -> None:
        super().__init__()
        self.job_id = job_id or "-"

    def filter(self, record: logging.LogRecord) -> bool:
        record.job = self.job_id
        return True


def _env_level() -> int | None:
    env_level = os.environ.get(LOG_LEVEL_ENV, "").strip().upper()
    resolved = getattr(logging, env_level, None) if env_level else None
    if not isinstance(resolved, int):
        return None
    return resolved


def stream_level(*, verbose: int = 0, quiet: bool = False) -> int:
    """Console level: ``-q`` beats ``-v``, which beats ``RANKPLAN_LOG_LEVEL``.

    The default is WARNING so recalculated geometry and downgraded binding
    stay visible.
    """
    if quiet:
        return logging.ERROR
    if verbose >= 2:
        return logging.DEBUG
    if verbose == 1:
        return logging.INFO
    env_level = _env_level()
    return logging.WARNING if env_level is None else env_level


def _resolve_log_file(log_file: str | os.PathLike[str] | None) -> Path | None:
    raw = str(log_file) if log_file is not None else os.environ.get(LOG_FILE_ENV, "")
    raw = raw.strip()
    if not raw:
        return None
    return Path(raw).expanduser().resolve()


def _get_handler(root: logging.Logger, handler_id: str) -> logging.Handler | None:
    for handler in root.handlers:
        if getattr(handler, "_rankplan_handler_id", None) == handler_id:
            return handler
    return None


def _install(root: logging.Logger, handler: logging.Handler, handler_id: str) -> None:
    setattr(handler, "_rankplan_handler_id", handler_id)
    root.addHandler(handler)


def _drop(root: logging.Logger, handler: logging.Handler) -> None:
    root.removeHandler(handler)
    handler.close()


def _configure(handler: logging.Handler, level: int, job_filter: logging.Filter) -> None:
    handler.setFormatter(logging.Formatter(_FORMAT))
    handler.setLevel(level)
    for old in list(handler.filters):
        if isinstance(old, _JobContextFilter):
            handler.removeFilter(old)
    handler.addFilter(job_filter)


def setup_logging(
    *,
    verbose: int = 0,
    quiet: bool = False,
    log_file: str | os.PathLike[str] | None = None,
    job_id: str | None = None,
) -> None:
    """Configure the ``rankplan`` logger for one launcher run.

    *log_file* (or ``RANKPLAN_LOG_FILE``) adds a file handler that always
    keeps the INFO launch trail (node file, argv, exit code) and follows
    ``-vv`` or ``RANKPLAN_LOG_LEVEL`` down to DEBUG; ``-q`` only quiets the
    console. *job_id* defaults to ``$PBS_JOBID``. Calling this again
    reconfigures the same handlers.
    """
    console_level = stream_level(verbose=verbose, quiet=quiet)
    job_filter = _JobContextFilter(job_id or os.environ.get(JOB_ID_ENV))

    root = logging.getLogger("rankplan")
    stream_handler = _get_handler(root, _STREAM_HANDLER_ID)
    if stream_handler is None:
        stream_handler = logging.StreamHandler()
        _install(root, stream_handler, _STREAM_HANDLER_ID)
    _configure(stream_handler, console_level, job_filter)

    file_path = _resolve_log_file(log_file)
    file_handler = _get_handler(root, _FILE_HANDLER_ID)
    file_level: int | None = None
    if file_path is not None:
        if (
            not isinstance(file_handler, logging.FileHandler)
            or Path(file_handler.baseFilename).resolve() != file_path
        ):
            if file_handler is not None:
                _drop(root, file_handler)
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(file_path, encoding="utf-8")
            _install(root, file_handler, _FILE_HANDLER_ID)
        file_level = min(logging.INFO, stream_level(verbose=verbose))
        _configure(file_handler, file_level, job_filter)
    elif file_handler is not None:
        _drop(root, file_handler)

    effective_level = console_level
    if file_level is not None:
        effective_level = min(effective_level, file_level)
    root.setLevel(effective_level)
