"""Runtime flavour detection for nREPL servers.

The env type decides which introspection expressions are safe to send:
a Basilisp server has no ``System/getProperty``, for example.

Detection order:
1. ``describe`` versions, first match in ENV_PRECEDENCE wins
2. shadow-cljs override: shadow reports itself as plain Clojure at the
   describe level, but a sessionless eval lands in ``shadow.user``
"""

import logging
from enum import Enum
from typing import Optional

from nrepleval.exceptions import NreplError
from nrepleval.nrepl.client import (
    BOOKKEEPING_TIMEOUT,
    PROBE_CONNECT_TIMEOUT,
    describe_server,
    eval_code,
)
from nrepleval.nrepl.connection import Connection
from nrepleval.nrepl.protocol import Message

logger = logging.getLogger(__name__)


class EnvType(str, Enum):
    CLJ = "clj"
    BB = "bb"
    BASILISP = "basilisp"
    SCITTLE = "scittle"
    SHADOW = "shadow"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "EnvType":
        """Parse a stored env type, falling back to UNKNOWN."""
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


# (versions key, env type); earlier entries win
ENV_PRECEDENCE = (
    ("clojure", EnvType.CLJ),
    ("babashka", EnvType.BB),
    ("basilisp", EnvType.BASILISP),
    ("sci-nrepl", EnvType.SCITTLE),
)

SHADOW_DEFAULT_NS = "shadow.user"

# Expression returning the server's working directory, per env type.
# Env types not listed have no safe expression and skip the lookup.
PROJECT_DIR_EXPRESSIONS = {
    EnvType.CLJ: '(System/getProperty "user.dir")',
    EnvType.BB: '(System/getProperty "user.dir")',
    EnvType.SHADOW: '(System/getProperty "user.dir")',
    EnvType.BASILISP: "(import os)\n(os/getcwd)",
}


def env_type_from_describe(describe_response: Optional[Message]) -> EnvType:
    """Pick the env type from a describe reply's versions map."""
    if not describe_response:
        return EnvType.UNKNOWN
    versions = describe_response.get("versions")
    if not isinstance(versions, dict):
        return EnvType.UNKNOWN
    for key, env_type in ENV_PRECEDENCE:
        if versions.get(key):
            return env_type
    return EnvType.UNKNOWN


def is_shadow_cljs(
    host: str,
    port: int,
    connect_timeout: float = PROBE_CONNECT_TIMEOUT,
    timeout: float = BOOKKEEPING_TIMEOUT,
) -> bool:
    """
    Probe for shadow-cljs.

    Evaluates ``1`` on a fresh connection without a session; shadow-cljs
    answers from its ``shadow.user`` namespace.
    """
    try:
        with Connection.open(host, port, connect_timeout) as conn:
            merged = eval_code(conn, "1", timeout=timeout)
    except NreplError as e:
        logger.debug(f"shadow-cljs probe failed on {host}:{port}: {e}")
        return False
    return merged.get("ns") == SHADOW_DEFAULT_NS


def resolve_env_type(describe_response: Optional[Message], shadow: bool) -> EnvType:
    """Combine describe-level detection with the shadow-cljs probe."""
    if shadow:
        return EnvType.SHADOW
    return env_type_from_describe(describe_response)


def detect_env_type(host: str, port: int) -> EnvType:
    """Classify the server behind ``host:port`` (describe + shadow probe)."""
    env_type = resolve_env_type(describe_server(host, port), is_shadow_cljs(host, port))
    logger.info(f"Detected env type '{env_type.value}' for {host}:{port}")
    return env_type


def project_dir_expression(env_type: EnvType) -> Optional[str]:
    return PROJECT_DIR_EXPRESSIONS.get(env_type)


def strip_quotes(value: str) -> str:
    """Strip one pair of surrounding double quotes from a printed string."""
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        return value[1:-1]
    return value


def detect_cljs_mode(conn: Connection, session: str, timeout: float = BOOKKEEPING_TIMEOUT) -> bool:
    """
    Check whether a shadow-cljs session is currently in CLJS mode.

    Must run on the session that will be used for eval: CLJS mode is a
    per-session switch. ``*clojurescript-version*`` only has a value there.
    """
    try:
        merged = eval_code(conn, "*clojurescript-version*", session=session, timeout=timeout)
    except NreplError as e:
        logger.debug(f"CLJS mode check failed: {e}")
        return False
    return bool(merged.get("value"))
