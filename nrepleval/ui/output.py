"""
Terminal output for nrepl-eval.

Streamed evaluation output goes to stdout/stderr unchanged so it can be
piped; only status messages are colored.
"""

import sys
from typing import Dict, List, Optional, TextIO, Tuple

from nrepleval.core.evaluator import EvalResult, EvalValue
from nrepleval.core.session import SessionRecord
from nrepleval.core.target import Target
from nrepleval.discovery.service import DiscoveredServer
from nrepleval.nrepl.envtypes import EnvType


TEXT_COLOR_MAPPING = {
    "yellow": "33;1",
    "green": "32;1",
    "red": "31;1",
    "cyan": "96;1",
    "gray": "90",
}


def get_colored_text(text: str, color: str) -> str:
    """
    Get colored text.

    Raises:
        ValueError: If the specified color is not supported
    """
    if color not in TEXT_COLOR_MAPPING:
        raise ValueError(
            f"Unsupported color: {color}. Available colors: {', '.join(TEXT_COLOR_MAPPING.keys())}"
        )

    color_str = TEXT_COLOR_MAPPING[color]
    return f"\u001b[{color_str}m{text}\u001b[0m"


class UIManager:
    """Status messages for the CLI, colored only when writing to a terminal."""

    def __init__(self, stream: Optional[TextIO] = None, color: Optional[bool] = None):
        self.stream = stream
        self.color = color

    def _target(self) -> TextIO:
        return self.stream or sys.stderr

    def success(self, message: str) -> None:
        self._print_colored(message, "green")

    def error(self, message: str) -> None:
        self._print_colored(message, "red")

    def warning(self, message: str) -> None:
        self._print_colored(message, "yellow")

    def dim(self, text: str) -> None:
        self._print_colored(text, "gray")

    def _print_colored(self, text: str, color: str, end: str = "\n") -> None:
        stream = self._target()
        use_color = self.color if self.color is not None else stream.isatty()
        print(get_colored_text(text, color) if use_color else text, end=end, file=stream)
        stream.flush()


def format_divider(ns: Optional[str], env_type: EnvType, cljs_mode: Optional[bool] = None) -> str:
    """
    Divider printed after each value.

    Shows the namespace and env type; shadow-cljs also shows which mode
    the session is in.

    Example:
        >>> format_divider("user", EnvType.SHADOW, True)
        '*==== user | shadow | cljs-mode ====*'
    """
    parts = [ns or "unknown", env_type.value]
    if env_type == EnvType.SHADOW:
        parts.append("cljs-mode" if cljs_mode else "clj-mode")
    return f"*==== {' | '.join(parts)} ====*"


class TerminalSink:
    """Prints evaluation output as it arrives."""

    def __init__(self, out: Optional[TextIO] = None, err: Optional[TextIO] = None):
        self._out = out
        self._err = err

    @property
    def stdout(self) -> TextIO:
        return self._out or sys.stdout

    @property
    def stderr(self) -> TextIO:
        return self._err or sys.stderr

    def out(self, text: str) -> None:
        self.stdout.write(text)
        self.stdout.flush()

    def err(self, text: str) -> None:
        self.stderr.write(text)
        self.stderr.flush()

    def value(self, value: EvalValue, result: EvalResult) -> None:
        print(f"=> {value.value}", file=self.stdout)
        print(format_divider(value.ns, result.env_type, result.cljs_mode), file=self.stdout)
        self.stdout.flush()

    def notice(self, text: str) -> None:
        print(text, file=self.stdout)
        self.stdout.flush()


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"


def format_connected(sessions: List[Tuple[Target, SessionRecord]]) -> str:
    """Listing for `nrepl-eval connected`."""
    if not sessions:
        return "No active nREPL connections found."

    lines = ["Active nREPL connections:"]
    for target, record in sessions:
        lines.append(f"  {target} ({record.env_type.value}) (session: {record.session_id})")
    lines.append("")
    lines.append(f"Total: {_plural(len(sessions), 'active connection')}")
    return "\n".join(lines)


def format_discovered(servers: List[DiscoveredServer], cwd: str) -> str:
    """Listing for `nrepl-eval discover`, grouped by working directory."""
    valid = [s for s in servers if s.valid]
    if not valid:
        return "No nREPL servers found."

    here = [s for s in valid if s.matches_cwd]
    elsewhere = [s for s in valid if not s.matches_cwd]
    groups: Dict[str, List[str]] = {}

    if here:
        groups[f"In current directory ({cwd}):"] = [
            f"  {s.host}:{s.port} ({(s.env_type or EnvType.UNKNOWN).value})" for s in here
        ]
    if elsewhere:
        groups["In other directories:"] = [
            f"  {s.host}:{s.port} ({(s.env_type or EnvType.UNKNOWN).value}) - {s.project_dir or 'unknown'}"
            for s in elsewhere
        ]

    lines = ["Discovered nREPL servers:", ""]
    for header, rows in groups.items():
        lines.append(header)
        lines.extend(rows)
        lines.append("")

    summary = f"Total: {_plural(len(valid), 'server')}"
    if here and elsewhere:
        summary += f" ({len(here)} in current directory, {len(elsewhere)} in other directories)"
    lines.append(summary)
    return "\n".join(lines)
