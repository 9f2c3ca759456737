"""
Configuration management commands.

Lazy-loaded only when `nrepl-eval settings` is used, so rich stays out of
the eval path.
"""

import configparser
from dataclasses import asdict
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from nrepleval.core.configs import CONFIG_PATH, EvalSettings, get_eval_settings, load_config
from nrepleval.core.paths import nrepl_session_dir

console = Console()


def handle_config(action: str, path: Path = CONFIG_PATH, force: bool = False) -> None:
    """
    Route to appropriate config action.

    Args:
        action: One of 'init', 'show', or 'path'
    """
    actions = {
        "init": lambda: init_config(path, force),
        "show": lambda: show_config(path),
        "path": lambda: console.print(str(path), soft_wrap=True),
    }

    if action not in actions:
        console.print(f"[red]Unknown action: {action}[/red]")
        console.print("Available actions: init, show, path")
        raise SystemExit(1)

    actions[action]()


def init_config(path: Path = CONFIG_PATH, force: bool = False) -> None:
    """Write a config file holding the default settings."""
    if path.exists() and not force:
        console.print(f"[yellow]Configuration already exists: {path}[/yellow]")
        console.print("Use --force to overwrite it")
        return

    save_config_file(EvalSettings(), path)
    console.print(
        Panel.fit(
            f"[green]✅ Configuration saved![/green]\nLocation: {path}",
            title="Success",
        )
    )


def show_config(path: Path = CONFIG_PATH, settings: Optional[EvalSettings] = None) -> None:
    """Display effective settings (file + .env + environment) in a table."""
    settings = settings or get_eval_settings(load_config(path))

    table = Table(title="nrepl-eval Configuration", show_header=True)
    table.add_column("Setting", style="cyan", width=22)
    table.add_column("Value", style="green")

    for key, value in asdict(settings).items():
        if key == "session_dir" and value is None:
            value = f"[dim]{nrepl_session_dir()} (default)[/dim]"
        table.add_row(key, str(value))

    console.print(table)
    source = str(path) if path.exists() else f"{path} (not created)"
    console.print(f"\n[dim]Config file: {source}[/dim]")


def save_config_file(settings: EvalSettings, path: Path = CONFIG_PATH) -> None:
    cfg = configparser.ConfigParser()
    cfg["DEFAULT"] = {
        key: "" if value is None else str(value).lower() if isinstance(value, bool) else str(value)
        for key, value in asdict(settings).items()
    }

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        cfg.write(f)
