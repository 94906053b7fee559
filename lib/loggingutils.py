"""Utilities for logging."""

import contextlib
import logging
import platform
from datetime import datetime
from importlib import metadata
from pathlib import Path
from typing import Generator

from mpi4py import MPI
from rich.console import Console
from rich.logging import RichHandler

_COMM: MPI.Intracomm = MPI.COMM_WORLD
_rank: int = _COMM.Get_rank()

_TIME_FORMAT: str = "%d.%m.%Y %H:%M:%S"


def _package_version(name: str) -> str:
    try:
        return metadata.version(name)
    except metadata.PackageNotFoundError:
        return "not installed"


def _write_header(file_path: Path) -> None:
    now = datetime.now().strftime(_TIME_FORMAT)
    header_lines = [
        f"# Session start: {now}",
        f"# Python: {platform.python_version()}",
        f"# Host: {platform.node()}",
        f"# MPI ranks: {_COMM.Get_size()}",
        f"# libceed: {_package_version('libceed')}",
        f"# petsc4py: {_package_version('petsc4py')}\n",
        "",
    ]
    file_path.write_text("\n".join(header_lines))


def setup_logging(
    verbose: bool = False, *, output_path: Path | None = None, disabled: bool = False
) -> None:
    """Set up console + file logging. Only rank 0 emits INFO/DEBUG; others WARN+."""
    if disabled:
        return
    root = logging.getLogger()
    if root.handlers:
        return

    level = logging.DEBUG if verbose else logging.INFO
    if _rank != 0:
        level = logging.WARNING

    console = Console(force_terminal=True, color_system="auto")
    console_handler = RichHandler(console=console, rich_tracebacks=True, markup=True)
    console_handler.setLevel(level)
    root.setLevel(level)
    root.addHandler(console_handler)

    if output_path is not None:
        output_path.mkdir(parents=True, exist_ok=True)
    else:
        output_path = Path(".")

    # A single log file per run, written by rank 0
    if _rank != 0:
        return
    log_file = output_path / "log.log"
    _write_header(log_file)

    file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt=_TIME_FORMAT,
        )
    )
    root.addHandler(file_handler)


def log_global(logger: logging.Logger, level: int, msg: str, *args, **kwargs) -> None:
    """Log globally (in parallel runs, this means logging only on rank 0)."""
    if _rank == 0:
        logger.log(level, msg, *args, stacklevel=2, **kwargs)


def log_rank(logger: logging.Logger, level: int, msg: str, *args, **kwargs) -> None:
    """Log on all ranks, prefixing the message with the rank."""
    logger.log(level, f"[{_rank:d}] {msg}", *args, stacklevel=2, **kwargs)


@contextlib.contextmanager
def log_stage(logger: logging.Logger, stage: str) -> Generator[None, None, None]:
    """Time a construction stage and report it by name if it fails.

    The exception is always re-raised; this only makes sure the log names the stage
    (restriction build, basis build, setup pass, ...) that broke.
    """
    t0 = MPI.Wtime()
    try:
        yield
    except Exception as e:
        log_rank(logger, logging.ERROR, "Stage '%s' failed: %s", stage, e)
        raise
    log_global(logger, logging.DEBUG, "Stage '%s' done in %.3f s", stage, MPI.Wtime() - t0)
