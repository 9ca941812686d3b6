"""Console logging for the CLI and spawned worker processes."""

from __future__ import annotations

import logging

from rich.logging import RichHandler


def configure_logging(level: str = "INFO", *, worker_name: str | None = None) -> None:
    """Route the root logger through a single ``RichHandler``."""

    fmt = "%(message)s" if worker_name is None else f"{worker_name} | %(message)s"
    logging.basicConfig(
        level=level.upper(),
        format=fmt,
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )
