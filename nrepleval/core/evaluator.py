"""Evaluate code on an nREPL server with a wall-clock deadline.

State machine per evaluation:

    SENDING ──> STREAMING ──> DONE
       │            │
       │            └──> INTERRUPTING ──> INTERRUPTED
       │            │          │
       └────────────┴──────────┴──> FAILED

- SENDING: repair delimiters, open the connection, acquire the session,
  send the eval request
- STREAMING: short bounded reads (poll_interval) so the deadline is
  re-checked between reads; output is forwarded to the sink as it arrives
- INTERRUPTING: deadline hit; one interrupt is sent, then a bounded number
  of reads look for the server's confirmation
- FAILED: connection or protocol error; output already collected is kept

The connection is only closed after DONE, after the interrupt attempts, or
on failure. Closing the socket mid-eval would leave the server running
orphaned work with no way to stop it.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Protocol, Set

from nrepleval.core.session import SessionStore
from nrepleval.core.target import Target
from nrepleval.exceptions import NreplConnectionError, NreplError, ProtocolError
from nrepleval.nrepl.connection import Connection
from nrepleval.nrepl.envtypes import EnvType, detect_cljs_mode
from nrepleval.nrepl.protocol import (
    ERROR,
    EVAL_ERROR,
    INTERRUPTED,
    SESSION_IDLE,
    DONE,
    Message,
    eval_request,
    has_status,
    interrupt_request,
    is_done,
    matches,
    status_of,
)
from nrepleval.tools.delimiter_repair import fix_delimiters

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.25
DEFAULT_INTERRUPT_ATTEMPTS = 20

INTERRUPT_UNCONFIRMED = (
    "InterruptUnconfirmed: the server did not confirm the interrupt; "
    "the evaluation may still be running"
)


class EvalState(str, Enum):
    SENDING = "sending"
    STREAMING = "streaming"
    DONE = "done"
    INTERRUPTING = "interrupting"
    INTERRUPTED = "interrupted"
    FAILED = "failed"


TRANSITIONS = {
    EvalState.SENDING: {EvalState.STREAMING, EvalState.FAILED},
    EvalState.STREAMING: {EvalState.DONE, EvalState.INTERRUPTING, EvalState.FAILED},
    EvalState.INTERRUPTING: {EvalState.INTERRUPTED, EvalState.FAILED},
    EvalState.DONE: set(),
    EvalState.INTERRUPTED: set(),
    EvalState.FAILED: set(),
}


class EvalOutcome(str, Enum):
    """What the caller sees; each maps to a distinct CLI exit code."""
    COMPLETED = "completed"
    EVAL_ERROR = "eval-error"
    TIMED_OUT = "timed-out"
    CONNECTION_FAILED = "connection-failed"
    PROTOCOL_ERROR = "protocol-error"


@dataclass
class EvalValue:
    """One returned value and the namespace it was produced in."""
    value: str
    ns: Optional[str] = None


@dataclass
class EvalResult:
    """Everything collected for one evaluation, including partial results."""
    target: Target
    code: str
    state: EvalState = EvalState.SENDING
    eval_id: Optional[str] = None
    session_id: Optional[str] = None
    env_type: EnvType = EnvType.UNKNOWN
    cljs_mode: Optional[bool] = None
    out_chunks: List[str] = field(default_factory=list)
    err_chunks: List[str] = field(default_factory=list)
    values: List[EvalValue] = field(default_factory=list)
    status: Set[str] = field(default_factory=set)
    ex: Optional[str] = None
    root_ex: Optional[str] = None
    timed_out: bool = False
    interrupt_confirmed: Optional[bool] = None
    error: Optional[NreplError] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def out(self) -> str:
        return "".join(self.out_chunks)

    @property
    def err(self) -> str:
        return "".join(self.err_chunks)

    @property
    def value_strings(self) -> List[str]:
        return [v.value for v in self.values]

    @property
    def outcome(self) -> EvalOutcome:
        if self.state == EvalState.FAILED:
            if isinstance(self.error, ProtocolError):
                return EvalOutcome.PROTOCOL_ERROR
            return EvalOutcome.CONNECTION_FAILED
        if self.timed_out:
            return EvalOutcome.TIMED_OUT
        # "error" covers server-side refusals such as unknown-session
        if EVAL_ERROR in self.status or ERROR in self.status or self.ex:
            return EvalOutcome.EVAL_ERROR
        return EvalOutcome.COMPLETED

    def transition(self, new_state: EvalState) -> None:
        """Move to a new state, rejecting transitions the machine does not have."""
        if new_state not in TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid eval transition {self.state.value} -> {new_state.value}")
        logger.debug(f"eval {self.eval_id}: {self.state.value} -> {new_state.value}")
        self.state = new_state


class EvalSink(Protocol):
    """Receives evaluation output incrementally, as it arrives."""

    def out(self, text: str) -> None: ...

    def err(self, text: str) -> None: ...

    def value(self, value: EvalValue, result: EvalResult) -> None: ...

    def notice(self, text: str) -> None: ...


class NullSink:
    """Discards streamed output; results are still collected."""

    def out(self, text: str) -> None:
        pass

    def err(self, text: str) -> None:
        pass

    def value(self, value: EvalValue, result: EvalResult) -> None:
        pass

    def notice(self, text: str) -> None:
        pass


Repair = Callable[[str], Optional[str]]


class Evaluator:
    """
    Runs one expression per call against a target.

    Usage:
        store = SessionStore(FileSessionStorage(nrepl_session_dir()))
        evaluator = Evaluator(store, sink=TerminalSink())
        result = evaluator.evaluate(Target("127.0.0.1", 7888), "(+ 1 2)", timeout=120.0)
        result.outcome  # EvalOutcome.COMPLETED
    """

    def __init__(
        self,
        store: SessionStore,
        connect_timeout: float = 5.0,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        interrupt_attempts: int = DEFAULT_INTERRUPT_ATTEMPTS,
        repair: Optional[Repair] = fix_delimiters,
        sink: Optional[EvalSink] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            store: Session store used to acquire the target's session
            connect_timeout: Seconds allowed to open the socket
            poll_interval: Upper bound on each individual read, in seconds
            interrupt_attempts: Reads spent waiting for interrupt confirmation
            repair: Delimiter repair collaborator (None disables repair)
            sink: Receives output as it streams in
            clock: Monotonic clock, injectable for tests
        """
        self.store = store
        self.connect_timeout = connect_timeout
        self.poll_interval = poll_interval
        self.interrupt_attempts = interrupt_attempts
        self.repair = repair
        self.sink = sink or NullSink()
        self.clock = clock

    def evaluate(self, target: Target, code: str, timeout: float) -> EvalResult:
        """
        Evaluate code and wait for completion or the deadline.

        Args:
            target: Server to evaluate on
            code: Source text (one or more top-level forms)
            timeout: Seconds to wait for completion before interrupting

        Returns:
            EvalResult. Connection and protocol errors are reported on the
            result (state FAILED), never raised.
        """
        result = EvalResult(target=target, code=code)
        code_to_send = self._repair(code)

        try:
            with Connection.open(target.host, target.port, self.connect_timeout) as conn:
                self._send(conn, result, code_to_send)
                deadline = self.clock() + timeout
                result.transition(EvalState.STREAMING)

                if self._stream(conn, result, deadline):
                    result.transition(EvalState.DONE)
                else:
                    result.transition(EvalState.INTERRUPTING)
                    self._interrupt(conn, result)
                    result.transition(EvalState.INTERRUPTED)
        except (NreplConnectionError, ProtocolError) as e:
            logger.error(f"Evaluation on {target} failed: {e}")
            result.error = e
            result.transition(EvalState.FAILED)

        return result

    def _repair(self, code: str) -> str:
        if self.repair is None:
            return code
        try:
            fixed = self.repair(code)
        except (OSError, ValueError) as e:
            logger.warning(f"Delimiter repair failed, sending code unchanged: {e}")
            return code
        return fixed if fixed is not None else code

    def _send(self, conn: Connection, result: EvalResult, code: str) -> None:
        record = self.store.acquire(conn, result.target)
        result.session_id = record.session_id
        result.env_type = record.env_type

        # Only shadow-cljs sessions can switch between CLJ and CLJS
        if record.env_type == EnvType.SHADOW:
            result.cljs_mode = detect_cljs_mode(conn, record.session_id)

        request = eval_request(code, session=record.session_id)
        result.eval_id = request["id"]
        conn.send(request)

    def _stream(self, conn: Connection, result: EvalResult, deadline: float) -> bool:
        """Collect replies until done (True) or the deadline passes (False)."""
        while True:
            remaining = deadline - self.clock()
            if remaining <= 0:
                return False

            message = conn.receive(min(remaining, self.poll_interval))
            if message is None:
                continue
            if not matches(message, result.eval_id, result.session_id):
                logger.debug(f"Ignoring reply for id={message.get('id')}")
                continue

            self._absorb(message, result)
            if is_done(message):
                return True

    def _absorb(self, message: Message, result: EvalResult) -> None:
        out = message.get("out")
        if out:
            result.out_chunks.append(out)
            self.sink.out(out)

        err = message.get("err")
        if err:
            result.err_chunks.append(err)
            self.sink.err(err)

        if "value" in message:
            value = EvalValue(value=message["value"], ns=message.get("ns"))
            result.values.append(value)
            self.sink.value(value, result)

        if message.get("ex"):
            result.ex = message["ex"]
        if message.get("root-ex"):
            result.root_ex = message["root-ex"]
        status = status_of(message)
        if ERROR in status and EVAL_ERROR not in status:
            result.warnings.append(f"Server refused the request: {', '.join(sorted(status - {ERROR, DONE}))}")
        result.status |= status

    def _interrupt(self, conn: Connection, result: EvalResult) -> None:
        """Send one interrupt and wait a bounded time for confirmation."""
        result.timed_out = True
        self.sink.notice("\n⚠️  Timeout hit, sending nREPL :interrupt …")

        request = interrupt_request(result.session_id, result.eval_id)
        conn.send(request)
        interrupt_id = request["id"]

        confirmed = False
        for _ in range(self.interrupt_attempts):
            message = conn.receive(self.poll_interval)
            if message is None:
                continue

            msg_id = message.get("id")
            if msg_id == result.eval_id:
                self._absorb(message, result)
            elif msg_id != interrupt_id:
                continue

            if has_status(message, INTERRUPTED, DONE, SESSION_IDLE):
                confirmed = True
                break

        result.interrupt_confirmed = confirmed
        if confirmed:
            self.sink.notice("✋ Evaluation interrupted.")
        else:
            logger.warning(f"No interrupt confirmation for eval {result.eval_id} on {result.target}")
            result.warnings.append(INTERRUPT_UNCONFIRMED)
            self.sink.notice("✋ Evaluation interrupted (unconfirmed: the server may still be running it).")
