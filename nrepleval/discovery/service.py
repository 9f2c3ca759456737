"""Find and classify nREPL servers without knowing their port.

For every candidate port:
1. ls-sessions on a short-lived connection; any well-formed answer marks
   the port valid (zero sessions is fine)
2. describe + shadow-cljs probe pick the env type
3. the env type's working-directory expression is evaluated and compared
   with our own working directory

Candidates are probed one after another. A failure on one candidate is
recorded on its DiscoveredServer and never stops the others.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from nrepleval.discovery.ports import Candidate, PortSource, candidate_ports
from nrepleval.nrepl.client import (
    BOOKKEEPING_TIMEOUT,
    PROBE_CONNECT_TIMEOUT,
    describe_server,
    eval_once,
    get_active_sessions,
)
from nrepleval.nrepl.envtypes import EnvType, is_shadow_cljs, project_dir_expression, resolve_env_type, strip_quotes

logger = logging.getLogger(__name__)

DISCOVERY_HOST = "localhost"


@dataclass(frozen=True)
class DiscoveredServer:
    """Classification of one candidate. Recomputed on every run."""
    host: str
    port: int
    source: PortSource
    valid: bool
    env_type: Optional[EnvType] = None
    project_dir: Optional[str] = None
    matches_cwd: bool = False
    session_count: int = 0


def _same_directory(project_dir: str, cwd: str) -> bool:
    if project_dir == cwd:
        return True
    try:
        return Path(project_dir).resolve() == Path(cwd).resolve()
    except (OSError, RuntimeError):
        return False


def probe_server(
    candidate: Candidate,
    cwd: str,
    host: str = DISCOVERY_HOST,
    connect_timeout: float = PROBE_CONNECT_TIMEOUT,
    timeout: float = BOOKKEEPING_TIMEOUT,
) -> DiscoveredServer:
    """Validate and classify a single candidate."""
    sessions = get_active_sessions(host, candidate.port, connect_timeout, timeout)
    if sessions is None:
        logger.debug(f"{host}:{candidate.port} is not an nREPL server")
        return DiscoveredServer(host=host, port=candidate.port, source=candidate.source, valid=False)

    describe_response = describe_server(host, candidate.port, connect_timeout, timeout)
    shadow = is_shadow_cljs(host, candidate.port, connect_timeout, timeout)
    env_type = resolve_env_type(describe_response, shadow)

    project_dir = None
    expression = project_dir_expression(env_type)
    if expression:
        value = eval_once(host, candidate.port, expression, connect_timeout, timeout)
        if value is not None:
            project_dir = strip_quotes(value)

    return DiscoveredServer(
        host=host,
        port=candidate.port,
        source=candidate.source,
        valid=True,
        env_type=env_type,
        project_dir=project_dir,
        matches_cwd=bool(project_dir) and _same_directory(project_dir, cwd),
        session_count=len(sessions),
    )


def discover_servers(
    cwd: Optional[str] = None,
    host: str = DISCOVERY_HOST,
    candidates: Optional[List[Candidate]] = None,
    connect_timeout: float = PROBE_CONNECT_TIMEOUT,
    timeout: float = BOOKKEEPING_TIMEOUT,
    probe: Optional[Callable[..., DiscoveredServer]] = None,
) -> List[DiscoveredServer]:
    """
    Discover servers on this machine.

    Args:
        cwd: Directory to correlate against (default: current directory)
        host: Host used to reach candidate ports
        candidates: Ports to probe (default: .nrepl-port + process scan)
        connect_timeout: Socket connect timeout per probe, in seconds
        timeout: Reply timeout per probe op, in seconds
        probe: Per-candidate probe, injectable for tests

    Returns:
        One DiscoveredServer per candidate, valid or not, in candidate order
    """
    cwd = cwd or str(Path.cwd())
    if candidates is None:
        candidates = candidate_ports(Path(cwd))
    probe = probe or probe_server

    results = []
    for candidate in candidates:
        try:
            server = probe(candidate, cwd, host=host, connect_timeout=connect_timeout, timeout=timeout)
        except Exception as e:
            logger.warning(f"Probing {host}:{candidate.port} failed: {e}")
            server = DiscoveredServer(host=host, port=candidate.port, source=candidate.source, valid=False)
        results.append(server)

    logger.info(f"Discovered {sum(1 for s in results if s.valid)} of {len(results)} candidate ports")
    return results
