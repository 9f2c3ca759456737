"""Candidate port collection for server discovery.

Two sources, in order:
1. The .nrepl-port hint file in the current directory
2. Listening TCP ports owned by processes that look like a Clojure-family
   runtime (java, clojure, babashka, basilisp, shadow-cljs)

Nothing here talks nREPL; candidates are validated by the discovery service.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional

import psutil

logger = logging.getLogger(__name__)

PORT_FILE_NAME = ".nrepl-port"

RUNTIME_PROCESS_PATTERN = re.compile(r"java|clojure|babashka|\bbb\b|nrepl|basilisp|shadow", re.IGNORECASE)


class PortSource(str, Enum):
    PORT_FILE = "nrepl-port-file"
    PROCESS_SCAN = "process-scan"


@dataclass(frozen=True)
class Candidate:
    port: int
    source: PortSource


def read_port_file(directory: Optional[Path] = None) -> Optional[int]:
    """
    Read the port number from .nrepl-port.

    Returns:
        The port, or None if the file is missing or does not hold a number
    """
    path = (directory or Path.cwd()) / PORT_FILE_NAME
    if not path.exists():
        return None
    try:
        port = int(path.read_text(encoding="utf-8").strip())
    except (OSError, ValueError) as e:
        logger.debug(f"Ignoring unreadable {path}: {e}")
        return None
    if not 0 < port < 65536:
        logger.debug(f"Ignoring out-of-range port {port} in {path}")
        return None
    return port


def looks_like_runtime(name: str, cmdline: Iterable[str]) -> bool:
    """Whether a process name/command line matches a Clojure-family runtime."""
    text = " ".join([name or "", *(cmdline or [])])
    return bool(RUNTIME_PROCESS_PATTERN.search(text))


def listening_runtime_ports() -> List[int]:
    """
    Listening TCP ports owned by runtime-looking processes.

    Processes that vanish mid-scan or that we may not inspect are skipped.
    Returns an empty list if the process table cannot be read at all.
    """
    ports: List[int] = []
    try:
        processes = list(psutil.process_iter(["pid", "name", "cmdline"]))
    except (psutil.Error, OSError) as e:
        logger.debug(f"Cannot enumerate processes: {e}")
        return ports

    for proc in processes:
        info = proc.info
        if not looks_like_runtime(info.get("name") or "", info.get("cmdline") or []):
            continue
        try:
            connections = proc.net_connections(kind="tcp")
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            continue

        for conn in connections:
            if conn.status == psutil.CONN_LISTEN and conn.laddr and conn.laddr.port not in ports:
                ports.append(conn.laddr.port)

    logger.debug(f"Process scan found listening ports {ports}")
    return ports


def collect_candidates(
    port_file_port: Optional[int],
    scanned_ports: Iterable[int],
) -> List[Candidate]:
    """Combine both sources, port file first, deduplicated by port."""
    candidates: List[Candidate] = []
    seen = set()

    if port_file_port is not None:
        candidates.append(Candidate(port_file_port, PortSource.PORT_FILE))
        seen.add(port_file_port)

    for port in scanned_ports:
        if port not in seen:
            candidates.append(Candidate(port, PortSource.PROCESS_SCAN))
            seen.add(port)

    return candidates


def candidate_ports(directory: Optional[Path] = None) -> List[Candidate]:
    return collect_candidates(read_port_file(directory), listening_runtime_ports())
