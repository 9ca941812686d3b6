"""CLI entrypoint for mapart."""

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import rich_click as click

from mapart import __version__
from mapart.controllers import (
    BandsCommand,
    ContinueCommand,
    MapartCliController,
    PoolCommand,
    ProjectCommand,
    StartCommand,
    WorkerCommand,
)
from mapart.errors import PersistenceError, ProjectInputError
from mapart.imaging.dithering import DEFAULT_ALGORITHM, SUPPORTED_ALGORITHMS
from mapart.logs import configure_logging

click.rich_click.USE_MARKDOWN = True
CONTROLLER = MapartCliController()

DB_PATH_OPTION = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite ledger path.",
)
LAUNCH_OPTION = click.option(
    "--launch/--no-launch",
    default=False,
    show_default=True,
    help="Run the configured worker pool in the foreground afterwards.",
)


@click.group()
@click.version_option(version=__version__, prog_name="mapart")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Console log level.",
)
@click.pass_context
def mapart(ctx: click.Context, log_level: str) -> None:
    """Map art crew: build an image out of carpets with a pool of workers."""

    ctx.obj = {"log_level": log_level.upper()}
    configure_logging(log_level)


@mapart.command("start")
@DB_PATH_OPTION
@click.argument("image")
@click.option(
    "--algorithm",
    type=click.Choice(list(SUPPORTED_ALGORITHMS)),
    default=DEFAULT_ALGORITHM,
    show_default=True,
    help="Dithering algorithm used to quantize the image.",
)
@click.option(
    "--preview",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Also write the quantized grid as a PNG preview to this path.",
)
@LAUNCH_OPTION
@click.pass_context
def start(
    ctx: click.Context,
    db_path: Path | None,
    image: str,
    algorithm: str,
    preview: Path | None,
    launch: bool,
) -> None:
    """Start a new project from IMAGE (path, asset name or URL). Replaces any current project."""

    with _cli_errors():
        _emit_lines(
            CONTROLLER.start(
                StartCommand(
                    db_path=db_path,
                    image=image,
                    algorithm=algorithm,
                    launch=launch,
                    log_level=ctx.obj["log_level"],
                    preview=preview,
                ),
            ),
        )


@mapart.command("pause")
@DB_PATH_OPTION
def pause(db_path: Path | None) -> None:
    """Pause the current project."""

    with _cli_errors():
        _emit_lines(CONTROLLER.pause(ProjectCommand(db_path=db_path)))


@mapart.command("continue")
@DB_PATH_OPTION
@LAUNCH_OPTION
@click.pass_context
def continue_(ctx: click.Context, db_path: Path | None, launch: bool) -> None:
    """Resume a paused project."""

    with _cli_errors():
        _emit_lines(
            CONTROLLER.resume(
                ContinueCommand(db_path=db_path, launch=launch, log_level=ctx.obj["log_level"]),
            ),
        )


@mapart.command("clear")
@DB_PATH_OPTION
def clear(db_path: Path | None) -> None:
    """Delete the current project and all of its progress."""

    with _cli_errors():
        _emit_lines(CONTROLLER.clear(ProjectCommand(db_path=db_path)))


@mapart.command("status")
@DB_PATH_OPTION
def status(db_path: Path | None) -> None:
    """Show project progress."""

    with _cli_errors():
        _emit_lines(CONTROLLER.status(ProjectCommand(db_path=db_path)))


@mapart.command("bands")
@DB_PATH_OPTION
@click.option(
    "--status",
    "band_status",
    type=click.Choice(["pending", "assigned", "completed"], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option(
    "--events",
    type=click.IntRange(min=0, max=500),
    default=0,
    show_default=True,
    help="How many recent band events to print.",
)
def bands(db_path: Path | None, band_status: str | None, events: int) -> None:
    """List bands with their holders."""

    with _cli_errors():
        _emit_lines(
            CONTROLLER.bands(BandsCommand(db_path=db_path, status=band_status, events=events)),
        )


@mapart.command("worker")
@DB_PATH_OPTION
@click.option("--name", default=None, help="Worker identity. Defaults to the configured name.")
@click.option(
    "--index",
    type=click.IntRange(min=0),
    default=0,
    show_default=True,
    help="Worker ordinal; scales the startup stagger.",
)
@click.option(
    "--pool-size",
    type=click.IntRange(min=1),
    default=1,
    show_default=True,
    help="Number of workers sharing the ledger.",
)
@click.option(
    "--max-ticks",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after this many ticks (default: run until interrupted).",
)
def worker(
    db_path: Path | None,
    name: str | None,
    index: int,
    pool_size: int,
    max_ticks: int | None,
) -> None:
    """Run one builder worker in the foreground."""

    with _cli_errors():
        _emit_lines(
            CONTROLLER.run_worker(
                WorkerCommand(
                    db_path=db_path,
                    name=name,
                    index=index,
                    pool_size=pool_size,
                    max_ticks=max_ticks,
                ),
            ),
        )


@mapart.command("pool")
@DB_PATH_OPTION
@click.pass_context
def pool(ctx: click.Context, db_path: Path | None) -> None:
    """Run every configured worker in its own process until interrupted."""

    with _cli_errors():
        _emit_lines(
            CONTROLLER.run_pool(PoolCommand(db_path=db_path, log_level=ctx.obj["log_level"])),
        )


@contextmanager
def _cli_errors() -> Iterator[None]:
    try:
        yield
    except (ProjectInputError, PersistenceError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    mapart()
