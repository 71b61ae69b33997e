from __future__ import annotations

import logging
from pathlib import Path

import pytest

from rankplan._logging import setup_logging, stream_level


@pytest.fixture(autouse=True)
def _reset_rankplan_logger(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("RANKPLAN_LOG_LEVEL", raising=False)
    monkeypatch.delenv("RANKPLAN_LOG_FILE", raising=False)
    monkeypatch.setenv("PBS_JOBID", "42.master")
    root = logging.getLogger("rankplan")
    before = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in before:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


def _file_handler() -> logging.FileHandler | None:
    for handler in logging.getLogger("rankplan").handlers:
        if isinstance(handler, logging.FileHandler):
            return handler
    return None


@pytest.mark.parametrize(
    ("verbose", "quiet", "env_level", "expected"),
    [
        (0, False, None, logging.WARNING),
        (0, False, "debug", logging.DEBUG),
        (0, False, "chatty", logging.WARNING),
        (1, False, "error", logging.INFO),
        (3, False, None, logging.DEBUG),
        (2, True, None, logging.ERROR),
    ],
)
def test_stream_level_precedence(
    monkeypatch: pytest.MonkeyPatch,
    verbose: int,
    quiet: bool,
    env_level: str | None,
    expected: int,
) -> None:
    if env_level is not None:
        monkeypatch.setenv("RANKPLAN_LOG_LEVEL", env_level)
    assert stream_level(verbose=verbose, quiet=quiet) == expected


def test_log_file_keeps_launch_trail_when_console_is_quiet(tmp_path: Path) -> None:
    log_path = tmp_path / "logs" / "launch.log"
    setup_logging(quiet=True, log_file=log_path)

    logging.getLogger("rankplan.invocation").info("launcher_exited exit_code=0")
    logging.getLogger("rankplan.invocation").debug("hidden detail")

    text = log_path.read_text(encoding="utf-8")
    assert "job=42.master" in text
    assert "logger=rankplan.invocation msg=launcher_exited exit_code=0" in text
    assert "hidden detail" not in text


def test_double_verbose_sends_debug_to_the_file(tmp_path: Path) -> None:
    log_path = tmp_path / "launch.log"
    setup_logging(verbose=2, log_file=log_path, job_id="7.pbs")

    logging.getLogger("rankplan.geometry").debug("slots_per_node=8")

    text = log_path.read_text(encoding="utf-8")
    assert "level=DEBUG job=7.pbs" in text


def test_env_log_file_and_reconfigure(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    first = tmp_path / "first.log"
    monkeypatch.setenv("RANKPLAN_LOG_FILE", str(first))
    setup_logging()
    handler = _file_handler()
    assert handler is not None
    assert Path(handler.baseFilename) == first.resolve()

    second = tmp_path / "second.log"
    setup_logging(log_file=second)
    handler = _file_handler()
    assert handler is not None
    assert Path(handler.baseFilename) == second.resolve()

    monkeypatch.delenv("RANKPLAN_LOG_FILE")
    setup_logging()
    assert _file_handler() is None
