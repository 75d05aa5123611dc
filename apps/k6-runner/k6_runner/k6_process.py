"""Adapter around the external k6 process."""

from __future__ import annotations

from pathlib import Path
from typing import IO, Callable, Optional, TextIO
import os
import shlex
import subprocess
import sys
import threading

import structlog

from .errors import EngineNotFoundError, RunFailure
from .settings import DEFAULT_HTML_REPORTER, RunMode, SummaryFormat

# Signature shared by run_k6 and test doubles handed to the coordinator.
K6Runner = Callable[..., int]


def build_command(
    script_path: Path,
    *,
    binary: str = "k6",
    summary_path: Optional[Path] = None,
    summary_format: SummaryFormat = "json",
    metrics_path: Optional[Path] = None,
    mode: RunMode = "run",
) -> list[str]:
    command = [binary, mode, str(script_path)]
    if mode == "cloud":
        # Cloud runs keep their results in k6 Cloud; local exports do not apply.
        return command
    if summary_path is not None:
        if summary_format == "csv":
            command.extend(["--out", f"csv={summary_path}"])
        else:
            command.append(f"--summary-export={summary_path}")
    if metrics_path is not None:
        command.extend(["--out", f"json={metrics_path}"])
    return command


def run_k6(
    script_path: Path,
    *,
    summary_path: Optional[Path] = None,
    summary_format: SummaryFormat = "json",
    metrics_path: Optional[Path] = None,
    mode: RunMode = "run",
    cloud_token: Optional[str] = None,
    binary: str = "k6",
    kill_timeout: float = 5.0,
    logger: structlog.stdlib.BoundLogger,
) -> int:
    """Run ``k6 run|cloud <script>`` and stream its output; return 0 or raise RunFailure.

    ``metrics_path`` adds a raw JSON metrics output (input for HTML reports).
    ``cloud_token`` is handed to the child as ``K6_CLOUD_TOKEN`` and never logged.
    A KeyboardInterrupt while waiting terminates the child (kill after
    ``kill_timeout``) and is re-raised. Removing the script is the caller's job.
    """

    command = build_command(
        script_path,
        binary=binary,
        summary_path=summary_path,
        summary_format=summary_format,
        metrics_path=metrics_path,
        mode=mode,
    )
    log = logger.bind(script=str(script_path), mode=mode)
    if summary_path is not None and mode == "run":
        log.info("k6_summary_requested", summary=str(summary_path), format=summary_format)
    log.info("k6_executing", command=" ".join(command))

    env = None
    if cloud_token:
        env = {**os.environ, "K6_CLOUD_TOKEN": cloud_token}
    try:
        process = subprocess.Popen(command, stdout=subprocess.PIPE, stderr=subprocess.PIPE, env=env)
    except (FileNotFoundError, PermissionError) as exc:
        raise EngineNotFoundError(binary) from exc

    pumps = [
        _start_pump(process.stdout, sys.stdout),
        _start_pump(process.stderr, sys.stderr),
    ]
    try:
        exit_code = process.wait()
    except KeyboardInterrupt:
        log.warning("k6_interrupted", pid=process.pid)
        _terminate(process, kill_timeout)
        raise
    finally:
        for pump in pumps:
            pump.join(timeout=kill_timeout)

    if exit_code != 0:
        log.warning("k6_failed", exit_code=exit_code)
        raise RunFailure(exit_code)
    log.info("k6_finished", exit_code=exit_code)
    return exit_code


def _start_pump(source: Optional[IO[bytes]], target: TextIO) -> threading.Thread:
    thread = threading.Thread(target=_pump, args=(source, target), daemon=True)
    thread.start()
    return thread


def _pump(source: Optional[IO[bytes]], target: TextIO) -> None:
    if source is None:
        return
    with source:
        for line in iter(source.readline, b""):
            target.write(line.decode("utf-8", errors="replace"))
            target.flush()


def _terminate(process: subprocess.Popen, kill_timeout: float) -> None:
    if process.poll() is not None:
        return
    process.terminate()
    try:
        process.wait(timeout=kill_timeout)
    except subprocess.TimeoutExpired:
        process.kill()
        process.wait()


def render_html_report(
    metrics_path: Path,
    html_path: Path,
    *,
    command: str = DEFAULT_HTML_REPORTER,
    logger: structlog.stdlib.BoundLogger,
) -> bool:
    """Convert k6 JSON metrics into an HTML report; failures are logged, not raised."""

    log = logger.bind(metrics=str(metrics_path), report=str(html_path))
    if not metrics_path.exists():
        log.warning("html_report_skipped", reason="k6 wrote no metrics file")
        return False
    argv = [*shlex.split(command), str(metrics_path), "--output", str(html_path)]
    log.info("html_report_generating", command=" ".join(argv))
    try:
        html_path.parent.mkdir(parents=True, exist_ok=True)
        completed = subprocess.run(argv, capture_output=True, text=True, check=False)
    except OSError as exc:
        log.error("html_report_failed", error=str(exc))
        return False
    if completed.returncode != 0:
        log.error("html_report_failed", exit_code=completed.returncode, stderr=completed.stderr.strip()[-500:])
        return False
    log.info("html_report_written")
    return True
