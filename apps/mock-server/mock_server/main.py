"""CLI entrypoint for the local mock API."""

from __future__ import annotations

import os
import threading
from pathlib import Path
from typing import Optional

import typer

from k6_runner.logging_utils import configure_logging
from k6_runner.output_config import get_output_format, log_format_for

from .config import default_config, load_config
from .server import MockRuntime

app = typer.Typer(help="Serve mocked HTTP endpoints for local k6 runs.")

PORT_ENV_VAR = "MOCK_SERVER_PORT"


def _default_port() -> int:
    raw = os.environ.get(PORT_ENV_VAR, "3333")
    try:
        return int(raw)
    except ValueError as exc:
        raise typer.BadParameter(f"{PORT_ENV_VAR} must be an integer, got {raw!r}") from exc


@app.callback()
def main() -> None:
    """Local mock API used by the example k6 data sources."""


@app.command()
def serve(
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        exists=True,
        readable=True,
        help="Mock configuration YAML/JSON. Defaults to the built-in crocodile demo API.",
    ),
    host: str = typer.Option("127.0.0.1", help="Bind host for the built-in demo API."),
    port: Optional[int] = typer.Option(
        None,
        "--port",
        "-p",
        min=0,
        max=65535,
        help=f"Bind port for the built-in demo API (env: {PORT_ENV_VAR}, default 3333).",
    ),
    output_format: Optional[str] = typer.Option(
        None,
        "--output-format",
        help="Log format: auto, rich, plain or json.",
    ),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level."),
) -> None:
    """Start the mock servers and block until interrupted."""

    logger = configure_logging(log_level, log_format_for(get_output_format(output_format)), name="mock_server")
    if config is not None:
        try:
            mock_config = load_config(config)
        except ValueError as exc:
            raise typer.BadParameter(str(exc), param_hint="--config") from exc
    else:
        mock_config = default_config(host=host, port=port if port is not None else _default_port())

    runtime = MockRuntime(mock_config, logger=logger)
    try:
        runtime.start()
    except OSError as exc:
        typer.secho(f"Failed to start mock server: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2) from exc

    for url in runtime.base_urls:
        typer.secho(f"Mock API listening on {url}", fg=typer.colors.GREEN, err=True)
    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        logger.info("shutdown_requested")
    finally:
        runtime.stop()


def run() -> None:
    """Console_scripts hook."""

    app()


if __name__ == "__main__":  # pragma: no cover
    run()
