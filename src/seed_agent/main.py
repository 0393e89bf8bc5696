"""CLI entrypoint for seed-agent."""

from pathlib import Path

import rich_click as click

from seed_agent import __version__
from seed_agent.dispatcher.controllers import (
    DispatcherCliController,
    ForgetCommand,
    ProcessedCommand,
    RunCommand,
)

click.rich_click.USE_MARKDOWN = True
DISPATCHER_CONTROLLER = DispatcherCliController()


@click.group()
@click.version_option(version=__version__, prog_name="seed-agent")
def seed_agent() -> None:
    """Seedstr marketplace job worker."""


@seed_agent.command("run")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--once",
    is_flag=True,
    default=False,
    help="Run a single poll pass, wait for admitted jobs, then exit.",
)
@click.option(
    "--max-jobs",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after this many jobs finished (submitted or failed).",
)
def run(db_path: Path | None, once: bool, max_jobs: int | None) -> None:
    """Discover marketplace jobs and answer them until interrupted."""

    try:
        lines = DISPATCHER_CONTROLLER.run(
            RunCommand(
                db_path=db_path,
                once=once,
                max_jobs=max_jobs,
            ),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@seed_agent.command("processed")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=20,
    show_default=True,
    help="How many latest entries to display.",
)
def processed(db_path: Path | None, limit: int) -> None:
    """List job ids recorded in the dedup store, newest first."""

    try:
        lines = DISPATCHER_CONTROLLER.processed(
            ProcessedCommand(
                db_path=db_path,
                limit=limit,
            ),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@seed_agent.command("forget")
@click.argument("job_id")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def forget(job_id: str, db_path: Path | None) -> None:
    """Remove JOB_ID from the dedup store so the job can be answered again."""

    try:
        lines = DISPATCHER_CONTROLLER.forget(
            ForgetCommand(
                db_path=db_path,
                job_id=job_id,
            ),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    seed_agent()
