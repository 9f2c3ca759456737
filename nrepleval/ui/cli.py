"""Main CLI entry point."""

import logging
import sys
from functools import partial
from pathlib import Path
from typing import Optional

import typer

from nrepleval.core.configs import CONFIG_PATH, LOG_LEVELS, EvalSettings, get_eval_settings, load_config
from nrepleval.core.evaluator import EvalOutcome, Evaluator
from nrepleval.core.paths import nrepl_session_dir
from nrepleval.core.session import SessionStore
from nrepleval.core.storage import FileSessionStorage
from nrepleval.core.target import Target
from nrepleval.discovery.service import discover_servers
from nrepleval.exceptions import ConfigError, StorageError
from nrepleval.tools.delimiter_repair import fix_delimiters
from nrepleval.ui.output import TerminalSink, UIManager, format_connected, format_discovered

logger = logging.getLogger(__name__)

app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    help="nrepl-eval - evaluate Clojure code on a running nREPL server.",
)

EXIT_CODES = {
    EvalOutcome.COMPLETED: 0,
    EvalOutcome.EVAL_ERROR: 1,
    EvalOutcome.CONNECTION_FAILED: 2,
    EvalOutcome.PROTOCOL_ERROR: 3,
    EvalOutcome.TIMED_OUT: 4,
}
# Bad invocation (no code, bad config); outside the outcome codes
USAGE_EXIT_CODE = 64

ui = UIManager()


def configure_logging(level: str, log_file: Optional[Path] = None) -> None:
    """Configure root logging once per invocation (stderr unless a file is given)."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        filename=str(log_file) if log_file else None,
        force=True,
    )


def _settings(ctx: typer.Context) -> EvalSettings:
    return ctx.obj if isinstance(ctx.obj, EvalSettings) else EvalSettings()


def _read_code(code: Optional[str]) -> Optional[str]:
    """Code from the argument, else from piped stdin."""
    if code is not None and code.strip():
        return code
    if code is None and not sys.stdin.isatty():
        piped = sys.stdin.read()
        if piped.strip():
            return piped
    return None


def _store(settings: EvalSettings) -> SessionStore:
    return SessionStore(FileSessionStorage(settings.session_dir or nrepl_session_dir()))


def _evaluate(settings: EvalSettings, target: Target, code: str, timeout_ms: Optional[int], repair: bool) -> None:
    """Run one evaluation, report it, and exit with its outcome code."""
    repair_fn = partial(fix_delimiters, command=settings.parinfer_command) if repair else None
    evaluator = Evaluator(
        _store(settings),
        connect_timeout=settings.connect_timeout,
        poll_interval=settings.poll_interval,
        interrupt_attempts=settings.interrupt_attempts,
        repair=repair_fn,
        sink=TerminalSink(),
    )

    timeout = timeout_ms / 1000.0 if timeout_ms is not None else settings.timeout_seconds
    try:
        result = evaluator.evaluate(target, code, timeout)
    except StorageError as e:
        ui.error(f"Error: {e}")
        ui.error("Check the session_dir setting (NREPL_EVAL_SESSION_DIR)")
        raise typer.Exit(USAGE_EXIT_CODE)

    for warning in result.warnings:
        ui.warning(f"WARNING: {warning}")
    if result.error is not None:
        ui.error(f"Error: {result.error}")

    raise typer.Exit(EXIT_CODES[result.outcome])


@app.callback()
def main(
    ctx: typer.Context,
    log_level: Optional[str] = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING, ERROR"),
    log_file: Optional[Path] = typer.Option(None, "--log-file", help="Write logs to this file instead of stderr"),
) -> None:
    """Load settings and configure logging for every command."""
    if log_level is not None and log_level.upper() not in LOG_LEVELS:
        raise typer.BadParameter(f"expected one of {', '.join(LOG_LEVELS)}", param_hint="--log-level")

    try:
        settings = get_eval_settings(load_config())
    except ConfigError as e:
        typer.echo(f"Error loading configuration: {e}", err=True)
        typer.echo("Fix it or run 'nrepl-eval settings init --force'", err=True)
        raise typer.Exit(USAGE_EXIT_CODE)

    configure_logging(log_level or settings.log_level, log_file)
    ctx.obj = settings


@app.command("eval")
def eval_command(
    ctx: typer.Context,
    code: Optional[str] = typer.Argument(None, help="Clojure code (read from stdin if omitted)"),
    port: int = typer.Option(..., "--port", "-p", help="nREPL port"),
    host: Optional[str] = typer.Option(None, "--host", "-H", help="nREPL host (default 127.0.0.1)"),
    timeout: Optional[int] = typer.Option(None, "--timeout", "-t", min=1, help="Timeout in milliseconds"),
    no_repair: bool = typer.Option(False, "--no-repair", help="Send code without delimiter repair"),
) -> None:
    """
    Evaluate code in the persistent session for a server.

    Example: nrepl-eval eval -p 7888 "(+ 1 2)"
    """
    settings = _settings(ctx)
    source = _read_code(code)
    if source is None:
        typer.echo("Error: No code provided", err=True)
        typer.echo("Provide code as an argument or via stdin (pipe/heredoc)", err=True)
        raise typer.Exit(USAGE_EXIT_CODE)

    target = Target(host or settings.host, port)
    _evaluate(settings, target, source, timeout, settings.repair_delimiters and not no_repair)


@app.command()
def reset(
    ctx: typer.Context,
    code: Optional[str] = typer.Argument(None, help="Optional code to evaluate in the new session"),
    port: int = typer.Option(..., "--port", "-p", help="nREPL port"),
    host: Optional[str] = typer.Option(None, "--host", "-H", help="nREPL host (default 127.0.0.1)"),
    timeout: Optional[int] = typer.Option(None, "--timeout", "-t", min=1, help="Timeout in milliseconds"),
) -> None:
    """
    Forget the persisted session for a server, then optionally evaluate code.

    Example: nrepl-eval reset -p 7888 "(def x 1)"
    """
    settings = _settings(ctx)
    target = Target(host or settings.host, port)
    try:
        _store(settings).reset(target)
    except StorageError as e:
        ui.error(f"Error: {e}")
        raise typer.Exit(USAGE_EXIT_CODE)
    typer.echo(f"Session reset for {target}")

    if code is not None and code.strip():
        _evaluate(settings, target, code, timeout, settings.repair_delimiters)


@app.command()
def connected(ctx: typer.Context) -> None:
    """List servers with a stored session that is still active."""
    store = _store(_settings(ctx))
    typer.echo(format_connected(store.active_sessions()))


@app.command()
def discover() -> None:
    """Find nREPL servers on this machine, grouped by working directory."""
    cwd = str(Path.cwd())
    typer.echo(format_discovered(discover_servers(cwd), cwd))


@app.command()
def settings(
    action: str = typer.Argument(..., help="Action: init, show, or path"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing config file (init)"),
) -> None:
    """
    Manage nrepl-eval configuration.

    Actions:
        init - Write a config file with default settings
        show - Display effective settings
        path - Print the config file location
    """
    from nrepleval.ui.config_commands import handle_config
    handle_config(action, CONFIG_PATH, force)


def run() -> None:
    """Entry point for console script mapping."""
    app()


if __name__ == "__main__":
    run()
