"""Bookkeeping operations against an nREPL server.

Two flavours of every operation:
- Connection-level (``ls_sessions(conn)``): runs on a connection the caller
  already owns, so it can be followed by more work on the same socket.
- Target-level (``get_active_sessions(host, port)``): opens its own
  short-lived connection, used by discovery probes.

Bookkeeping ops use short fixed timeouts; only eval deadlines are
configurable.
"""

import logging
from typing import List, Optional

from nrepleval.exceptions import NreplError, ProtocolError
from nrepleval.nrepl.connection import Connection
from nrepleval.nrepl.protocol import (
    Message,
    clone_request,
    describe_request,
    eval_request,
    ls_sessions_request,
    merge_responses,
)

logger = logging.getLogger(__name__)

BOOKKEEPING_TIMEOUT = 2.0
PROBE_CONNECT_TIMEOUT = 0.5


def ls_sessions(conn: Connection, timeout: float = BOOKKEEPING_TIMEOUT) -> List[str]:
    """Return the ids of every session the server currently knows about."""
    merged = merge_responses(conn.request(ls_sessions_request(), timeout))
    sessions = merged.get("sessions")
    if sessions is None:
        raise ProtocolError("ls-sessions reply has no 'sessions' field")
    return list(sessions)


def describe(conn: Connection, timeout: float = BOOKKEEPING_TIMEOUT) -> Message:
    """Return the merged describe reply (versions, ops, aux)."""
    return merge_responses(conn.request(describe_request(), timeout))


def clone_session(conn: Connection, timeout: float = BOOKKEEPING_TIMEOUT) -> str:
    """
    Ask the server for a new session.

    Returns:
        Server-assigned session id

    Raises:
        ProtocolError: If the reply carries no new-session field
    """
    merged = merge_responses(conn.request(clone_request(), timeout))
    session_id = merged.get("new-session")
    if not session_id:
        raise ProtocolError("clone reply has no 'new-session' field")
    logger.info(f"Cloned new session {session_id} on {conn.host}:{conn.port}")
    return session_id


def eval_code(
    conn: Connection,
    code: str,
    session: Optional[str] = None,
    timeout: float = BOOKKEEPING_TIMEOUT,
) -> Message:
    """
    Evaluate short introspection code and return the merged reply.

    Not meant for user code: there is no interrupt on timeout.
    """
    return merge_responses(conn.request(eval_request(code, session=session), timeout))


def get_active_sessions(
    host: str,
    port: int,
    connect_timeout: float = PROBE_CONNECT_TIMEOUT,
    timeout: float = BOOKKEEPING_TIMEOUT,
) -> Optional[List[str]]:
    """
    List active sessions on a fresh connection.

    Returns:
        Session ids (possibly empty), or None if the port does not answer
        like an nREPL server
    """
    try:
        with Connection.open(host, port, connect_timeout) as conn:
            return ls_sessions(conn, timeout)
    except NreplError as e:
        logger.debug(f"ls-sessions failed on {host}:{port}: {e}")
        return None


def describe_server(
    host: str,
    port: int,
    connect_timeout: float = PROBE_CONNECT_TIMEOUT,
    timeout: float = BOOKKEEPING_TIMEOUT,
) -> Optional[Message]:
    """Describe the server on a fresh connection, None on failure."""
    try:
        with Connection.open(host, port, connect_timeout) as conn:
            return describe(conn, timeout)
    except NreplError as e:
        logger.debug(f"describe failed on {host}:{port}: {e}")
        return None


def eval_once(
    host: str,
    port: int,
    code: str,
    connect_timeout: float = PROBE_CONNECT_TIMEOUT,
    timeout: float = BOOKKEEPING_TIMEOUT,
) -> Optional[str]:
    """
    Evaluate code without a session on a fresh connection.

    Returns:
        The last value produced, or None on failure / no value
    """
    try:
        with Connection.open(host, port, connect_timeout) as conn:
            merged = eval_code(conn, code, timeout=timeout)
    except NreplError as e:
        logger.debug(f"eval failed on {host}:{port}: {e}")
        return None

    values = merged.get("value")
    return values[-1] if values else None
