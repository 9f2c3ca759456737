"""Persistent nREPL session management.

nREPL state (defined vars, required namespaces) lives in a server-side
session. Each CLI invocation is a fresh process, so the session id is
persisted per target and handed back to the server on the next run.

A stored session is never trusted blindly: the server may have restarted
and forgotten it. Every acquire re-validates with ls-sessions on the same
connection that will run the eval, and silently replaces a dead session.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from nrepleval.core.storage import SessionStorage
from nrepleval.core.target import Target
from nrepleval.exceptions import NreplError, SessionInvalidError
from nrepleval.nrepl.client import clone_session, ls_sessions
from nrepleval.nrepl.connection import Connection
from nrepleval.nrepl.envtypes import EnvType, detect_env_type

logger = logging.getLogger(__name__)

EnvDetector = Callable[[Target], EnvType]


@dataclass
class SessionRecord:
    """Persisted session for one target."""
    session_id: str
    env_type: EnvType = EnvType.UNKNOWN
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "env_type": self.env_type.value,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Optional["SessionRecord"]:
        session_id = data.get("session_id")
        if not session_id or not isinstance(session_id, str):
            return None
        return cls(
            session_id=session_id,
            env_type=EnvType.parse(data.get("env_type")),
            created_at=str(data.get("created_at", "")),
        )


def _detect_env(target: Target) -> EnvType:
    return detect_env_type(target.host, target.port)


class SessionStore:
    """
    Loads, validates and creates sessions for targets.

    Storage is injected; the store never deals with paths itself.
    """

    def __init__(self, storage: SessionStorage, env_detector: Optional[EnvDetector] = None):
        """
        Args:
            storage: Backend holding one record per target
            env_detector: Classifies a target's runtime when a new session
                is created (default: describe + shadow-cljs probe)
        """
        self.storage = storage
        self.env_detector = env_detector or _detect_env

    def load(self, target: Target) -> Optional[SessionRecord]:
        """
        Load the persisted session for a target.

        Returns:
            SessionRecord, or None if absent or unreadable
        """
        data = self.storage.get(target)
        if data is None:
            return None
        return SessionRecord.from_dict(data)

    def save(self, target: Target, record: SessionRecord) -> None:
        self.storage.put(target, record.to_dict())

    def validate(self, connection: Connection, session_id: str) -> bool:
        """
        Check that the server still knows a session.

        Must run on the connection that will be used afterwards, so the
        session cannot disappear between the check and its use.
        """
        return session_id in ls_sessions(connection)

    def _ensure_valid(self, connection: Connection, record: SessionRecord) -> SessionRecord:
        if not self.validate(connection, record.session_id):
            raise SessionInvalidError(record.session_id)
        return record

    def acquire(self, connection: Connection, target: Target) -> SessionRecord:
        """
        Return a live session for the target, creating one if needed.

        A stored session that fails validation is deleted and replaced.
        The env type is detected once per new session; a previously
        stored env type is carried over.

        Raises:
            NreplConnectionError / ProtocolError: If validation or clone fails
        """
        stored = self.storage.get(target)
        existing = SessionRecord.from_dict(stored) if stored is not None else None

        if existing is not None:
            try:
                return self._ensure_valid(connection, existing)
            except SessionInvalidError as e:
                logger.info(f"{e}; creating a new session for {target}")

        if stored is not None:
            self.storage.delete(target)

        session_id = clone_session(connection)
        if existing is not None and existing.env_type != EnvType.UNKNOWN:
            env_type = existing.env_type
        else:
            env_type = self.env_detector(target)

        record = SessionRecord(session_id=session_id, env_type=env_type)
        self.save(target, record)
        return record

    def reset(self, target: Target) -> None:
        """Forget the persisted session. Does not contact the server."""
        self.storage.delete(target)
        logger.info(f"Session reset for {target}")

    def active_sessions(self, connect_timeout: float = 0.5) -> List[Tuple[Target, SessionRecord]]:
        """
        Stored sessions that are still alive on their servers.

        Unreachable servers and expired sessions are left out but their
        files are kept: a restarted server may come back, and cleanup is
        an explicit reset.
        """
        active = []
        for target in self.storage.targets():
            record = self.load(target)
            if record is None:
                continue
            try:
                with Connection.open(target.host, target.port, connect_timeout) as conn:
                    if self.validate(conn, record.session_id):
                        active.append((target, record))
                    else:
                        logger.debug(f"Session {record.session_id} expired on {target}")
            except NreplError as e:
                logger.debug(f"Skipping {target}: {e}")
        return active
