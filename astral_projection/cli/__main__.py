from __future__ import annotations

import signal
import threading
from typing import Any, Optional

import typer

from astral_projection import __version__
from astral_projection.config import Config, load_config
from astral_projection.constants import LOG_FORMAT, PROJECT_NAME
from astral_projection.exceptions import ConfigurationError, MirrorPathError
from astral_projection.logger import logger, setup_logger
from astral_projection.mirror.paths import mirror_target
from astral_projection.mirror.sources import ensure_manifest_dir
from astral_projection.mirror.worker import AstralWorker
from astral_projection.scheduler import Scheduler
from astral_projection.storage.credentials import check_credentials
from astral_projection.utils import to_yaml

SECRET_FIELDS = ("accessKeyId", "secretAccessKey")

cli = typer.Typer(context_settings={"help_option_names": ["-h", "--help"]})


def version_callback(version: bool) -> None:
    if version:
        typer.echo(f"{PROJECT_NAME} Version: {__version__}")
        raise typer.Exit()


@cli.callback()
def main_options(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose output"
    ),
    version: bool = typer.Option(
        False,
        "--version",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    setup_logger(verbose, LOG_FORMAT)


def config_option() -> Any:
    return typer.Option(
        None,
        "--config",
        "-c",
        help="The configuration file. Defaults to $ASTRAL_CONFIG or astral.yaml.",
    )


def load_or_exit(config_path: Optional[str]) -> Config:
    try:
        config = load_config(config_path)
        check_credentials(config.storage)
    except ConfigurationError as e:
        logger.critical(f"Configuration is invalid: {e}")
        raise typer.Exit(1)
    return config


def create_worker(config: Config) -> AstralWorker:
    try:
        return AstralWorker(config)
    except ConfigurationError as e:
        logger.critical(f"Configuration is invalid for {AstralWorker.name}: {e}")
        raise typer.Exit(1)


def install_signal_handlers(stop_event: threading.Event) -> None:
    def handler(signum: int, frame: Any) -> None:
        logger.warning(f"Received signal {signum}, shutting down...")
        stop_event.set()

    signal.signal(signal.SIGINT, handler)
    signal.signal(signal.SIGTERM, handler)


@cli.command()
def run(config_path: Optional[str] = config_option()) -> None:
    """
    Mirror the tracked manifests on schedule until interrupted.
    """
    config = load_or_exit(config_path)
    worker = create_worker(config)

    stop_event = threading.Event()
    try:
        scheduler = Scheduler(
            worker.name, config.astral.schedule, worker.process, stop_event
        )
    except ConfigurationError as e:
        logger.critical(str(e))
        raise typer.Exit(1)

    install_signal_handlers(stop_event)
    scheduler.run_forever()


@cli.command()
def sync(config_path: Optional[str] = config_option()) -> None:
    """
    Run a single synchronization cycle and exit.
    """
    config = load_or_exit(config_path)
    worker = create_worker(config)

    stop_event = threading.Event()
    install_signal_handlers(stop_event)

    report = worker.process(stop_event)
    if not report.ok:
        logger.error(f"{len(report.failed)} manifest(s) failed to sync")
        raise typer.Exit(1)


@cli.command("mirror-path")
def mirror_path(
    url: str = typer.Argument(..., help="The origin manifest URL."),
    prefix: str = typer.Option(
        "", "--prefix", "-p", help="The public URL prefix of the mirror."
    ),
) -> None:
    """
    Show where a manifest and its archive are mirrored to.
    """
    try:
        target = mirror_target(url, prefix)
    except MirrorPathError as e:
        logger.error(str(e))
        raise typer.Exit(1)

    typer.echo(f"manifest: {target.manifest_key}")
    typer.echo(f"archive: {target.archive_key}")
    if prefix:
        typer.echo(f"manifest url: {target.manifest_url}")
        typer.echo(f"archive url: {target.archive_url}")


@cli.command()
def check(config_path: Optional[str] = config_option()) -> None:
    """
    Validate the configuration without mirroring anything.
    """
    config = load_or_exit(config_path)
    try:
        ensure_manifest_dir(config.astral.dir, create=False)
    except ConfigurationError as e:
        logger.critical(str(e))
        raise typer.Exit(1)

    data = config.model_dump(exclude_none=True)
    for key in SECRET_FIELDS:
        if key in data["storage"]:
            data["storage"][key] = "***"
    typer.echo(to_yaml(data), nl=False)

    scheduler = Scheduler(AstralWorker.name, config.astral.schedule, lambda _: None)
    typer.echo(f"Next run at: {scheduler.next_run}")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
