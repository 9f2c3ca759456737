"""nREPL message helpers.

Request format (client -> server):
    {
        "op": "clone" | "describe" | "ls-sessions" | "eval" | "interrupt",
        "id": str,              # Fresh per request, echoed on every reply
        "session": str,         # eval/interrupt only
        "code": str,            # eval only
        "interrupt-id": str,    # interrupt only: id of the eval to stop
    }

Response format (server -> client, possibly many per request):
    {
        "id": str,
        "session": str,
        "out" | "err": str,     # Printed output fragments
        "value": str,           # One per evaluated top-level form
        "ns": str,              # Namespace active when value was produced
        "status": [str, ...],   # "done" marks the last reply for an id
        "new-session": str,     # clone
        "sessions": [str, ...], # ls-sessions
        "versions": {...},      # describe
    }
"""

import uuid
from typing import Any, Dict, Iterable, Iterator, Optional, Set

Message = Dict[str, Any]

DONE = "done"
INTERRUPTED = "interrupted"
SESSION_IDLE = "session-idle"
EVAL_ERROR = "eval-error"
ERROR = "error"


def new_id() -> str:
    """Generate an unguessable request id (random 128-bit UUID)."""
    return str(uuid.uuid4())


def clone_request() -> Message:
    return {"op": "clone", "id": new_id()}


def describe_request() -> Message:
    return {"op": "describe", "id": new_id()}


def ls_sessions_request() -> Message:
    return {"op": "ls-sessions", "id": new_id()}


def eval_request(code: str, session: Optional[str] = None, ns: Optional[str] = None) -> Message:
    """
    Build an eval request.

    Args:
        code: Source text to evaluate
        session: Session id; omit for an ephemeral server-side session
        ns: Namespace to evaluate in (server default when omitted)
    """
    request = {"op": "eval", "code": code, "id": new_id()}
    if session:
        request["session"] = session
    if ns:
        request["ns"] = ns
    return request


def interrupt_request(session: str, interrupt_id: str) -> Message:
    return {
        "op": "interrupt",
        "id": new_id(),
        "session": session,
        "interrupt-id": interrupt_id,
    }


def status_of(message: Message) -> Set[str]:
    """Return the status field as a set (empty when absent)."""
    status = message.get("status")
    if status is None:
        return set()
    if isinstance(status, str):
        return {status}
    return {str(s) for s in status}


def has_status(message: Message, *names: str) -> bool:
    """True if the message status contains any of ``names``."""
    return bool(status_of(message).intersection(names))


def is_done(message: Message) -> bool:
    return has_status(message, DONE)


def matches(message: Message, msg_id: str, session: Optional[str] = None) -> bool:
    """
    Check whether a response belongs to a request.

    Responses are attributed by ``id``; when a session is given, a response
    that names a different session is rejected.
    """
    if message.get("id") != msg_id:
        return False
    if session is not None and message.get("session") not in (None, session):
        return False
    return True


def take_until_done(messages: Iterable[Message]) -> Iterator[Message]:
    """Yield messages up to and including the first one marked done."""
    for message in messages:
        yield message
        if is_done(message):
            return


def merge_responses(messages: Iterable[Message]) -> Message:
    """
    Collapse the replies to one request into a single message.

    - value: ordered list of every value
    - out/err: concatenated in arrival order
    - status: union of every status
    - ns: last namespace seen
    - anything else (versions, ops, new-session, sessions, ex, ...): last wins
    """
    merged: Message = {}
    values = []
    status: Set[str] = set()

    for message in messages:
        for key, val in message.items():
            if key == "value":
                values.append(val)
            elif key in ("out", "err"):
                merged[key] = merged.get(key, "") + val
            elif key == "status":
                status |= status_of(message)
            else:
                merged[key] = val

    if values:
        merged["value"] = values
    if status:
        merged["status"] = status
    return merged
