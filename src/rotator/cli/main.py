"""Command line entry point: `stream-rotator`."""

from __future__ import annotations

import sys
from typing import Any, Optional

import click

from rotator.config.config import NamingScheme, RunConfig, WriteErrorPolicy
from rotator.core.constants import EXIT_CONFIGURATION_ERROR
from rotator.core.errors import ConfigurationError
from rotator.engine.copy_loop import CopyEngine
from rotator.monitoring.metrics import start_http_server
from rotator.utils.logging import configure_logging, get_logger
from rotator.utils.signals import restore_signal_handlers, setup_signal_handlers


def _overrides(options: dict[str, Any]) -> dict[str, Any]:
    """Map CLI options onto the RunConfig layout (None = not given)."""
    return {
        "output_prefix": options["output_prefix"],
        "source_path": options["source_path"],
        "trigger": {
            "max_bytes": options["max_bytes"],
            "max_age": options["max_age"],
        },
        "daemon": options["daemon"],
        "continue_read": options["continue_read"],
        "retry_backoff": {
            "initial": options["backoff_initial"],
            "max": options["backoff_max"],
            "max_restarts": options["max_restarts"],
            "cooldown": options["cooldown"],
        },
        "shutdown_grace": options["shutdown_grace"],
        "chunk_size": options["chunk_size"],
        "naming": options["naming"],
        "seq_width": options["seq_width"],
        "extension": options["extension"],
        "active_suffix": options["active_suffix"],
        "keep_files": options["keep_files"],
        "on_write_error": options["on_write_error"],
        "create_fifo": options["create_fifo"],
        "pid_file": options["pid_file"],
        "metrics_port": options["metrics_port"],
        "log_level": options["log_level"],
        "log_json": options["log_json"],
    }


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.argument("output_prefix", required=False)
@click.option(
    "--source", "-s", "source_path", type=click.Path(dir_okay=False),
    help="Named pipe to read from (default: standard input).",
)
@click.option("--max-bytes", "-b", help="Rotate before a file would exceed SIZE (10M, 512K, 1G).")
@click.option("--max-age", "-t", help="Rotate files older than DURATION (30s, 5m, 1h).")
@click.option("--daemon/--no-daemon", default=None, help="Retry the source instead of failing.")
@click.option(
    "--continue-read/--no-continue-read", default=None,
    help="Daemon mode: reattach to the pipe after its writer exits.",
)
@click.option("--backoff-initial", help="First reattach delay (default 0.5s).")
@click.option("--backoff-max", help="Reattach delay cap (default 30s).")
@click.option("--max-restarts", type=int, help="Consecutive source failures tolerated.")
@click.option("--cooldown", help="Writer sessions shorter than this count as failures.")
@click.option("--shutdown-grace", help="Time spent draining buffered input on shutdown.")
@click.option("--chunk-size", help="Read buffer size (default 64K).")
@click.option(
    "--naming", type=click.Choice([s.value for s in NamingScheme]),
    help="File naming scheme (default: sequence).",
)
@click.option("--seq-width", type=int, help="Zero padding of sequence numbers.")
@click.option("--extension", help="Extension appended to file names (e.g. .log).")
@click.option("--active-suffix", help="Suffix of the file being written (e.g. .part).")
@click.option("--keep-files", type=int, help="Delete older files beyond this count.")
@click.option(
    "--on-write-error", type=click.Choice([p.value for p in WriteErrorPolicy]),
    help="abort (default) or keep reading and discard (daemon mode).",
)
@click.option("--mkfifo/--no-mkfifo", "create_fifo", default=None, help="Create the named pipe if missing.")
@click.option("--pid-file", type=click.Path(dir_okay=False), help="Write the process id here.")
@click.option("--metrics-port", type=int, help="Serve Prometheus metrics on this port.")
@click.option("--log-level", help="DEBUG, INFO, WARNING, ERROR.")
@click.option("--log-json/--log-console", "log_json", default=None, help="Log format.")
@click.option(
    "--config", "config_file", type=click.Path(exists=True, dir_okay=False),
    help="YAML configuration file.",
)
def cli(config_file: Optional[str], **options: Any) -> None:
    """Copy standard input or a named pipe into rotated files named OUTPUT_PREFIX.<seq>."""
    try:
        config = RunConfig.build(_overrides(options), config_file=config_file)
    except ConfigurationError as exc:
        configure_logging(level="INFO", json_output=False)
        get_logger(__name__).error("invalid_configuration", error=str(exc))
        sys.exit(EXIT_CONFIGURATION_ERROR)

    configure_logging(level=config.log_level, json_output=config.log_json)
    logger = get_logger(__name__)

    if config.metrics_port:
        try:
            start_http_server(config.metrics_port)
        except OSError as exc:
            logger.error(
                "metrics_server_failed", port=config.metrics_port, error=str(exc)
            )
            sys.exit(EXIT_CONFIGURATION_ERROR)

    engine = CopyEngine(config)
    previous = setup_signal_handlers(engine)
    logger.info("starting_rotator", config=config.model_dump(mode="json"))
    try:
        result = engine.run()
    finally:
        restore_signal_handlers(previous)

    if result.error is not None:
        logger.error(
            "rotator_failed",
            error=str(result.error),
            error_type=type(result.error).__name__,
            exit_code=result.exit_code,
        )
    sys.exit(result.exit_code)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
