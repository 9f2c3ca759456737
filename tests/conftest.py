"""
Shared fixtures: an in-process nREPL server speaking real bencode over TCP.

The server understands just enough Clojure for the tests:
    numbers, "strings", (+ ...), (def x v), symbols, (println "s"),
    (Thread/sleep ms), (throw ...), *clojurescript-version*,
    (System/getProperty "user.dir"), (import os), (os/getcwd)
"""

import socket
import socketserver
import threading
import uuid
from typing import Any, Dict, List, Optional

import pytest

from nrepleval.exceptions import ProtocolError
from nrepleval.nrepl.bencode import encode, read_value


class Unresolved(Exception):
    pass


class Thrown(Exception):
    pass


def split_forms(code: str) -> List[str]:
    """Split source text into top-level forms."""
    forms = []
    depth = 0
    start = None
    in_str = False
    for i, ch in enumerate(code):
        if in_str:
            if ch == '"' and code[i - 1] != "\\":
                in_str = False
                if depth == 0:
                    forms.append(code[start:i + 1])
                    start = None
            continue
        if ch == '"':
            in_str = True
            if start is None:
                start = i
        elif ch in "([{":
            if start is None:
                start = i
            depth += 1
        elif ch in ")]}":
            depth -= 1
            if depth == 0:
                forms.append(code[start:i + 1])
                start = None
        elif ch.isspace() or ch == ",":
            if depth == 0 and start is not None:
                forms.append(code[start:i])
                start = None
        elif start is None:
            start = i
    if start is not None:
        forms.append(code[start:])
    return forms


def pr_str(value: Any) -> str:
    if value is None:
        return "nil"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return f'"{value}"'
    return str(value)


class FakeNreplServer:
    """Threaded nREPL server; one thread per connection and per eval."""

    def __init__(
        self,
        versions: Optional[Dict[str, Any]] = None,
        default_ns: str = "user",
        cwd: str = "/srv/project",
        ignore_interrupts: bool = False,
        eval_reply_bytes: Optional[bytes] = None,
        drop_after_value: bool = False,
        cljs_sessions: bool = False,
    ):
        self.versions = versions if versions is not None else {"clojure": {"version-string": "1.12.0"}, "nrepl": {}}
        self.default_ns = default_ns
        self.cwd = cwd
        self.ignore_interrupts = ignore_interrupts
        self.eval_reply_bytes = eval_reply_bytes
        self.drop_after_value = drop_after_value
        self.cljs_sessions = cljs_sessions

        self.sessions: Dict[str, Dict[str, Any]] = {}
        self.running: Dict[str, threading.Event] = {}
        self.ops: List[Dict[str, Any]] = []
        self.lock = threading.Lock()

        fake = self

        class Handler(socketserver.StreamRequestHandler):
            def handle(self):
                write_lock = threading.Lock()
                closed = threading.Event()

                def send(message: Dict[str, Any]) -> None:
                    with write_lock:
                        if closed.is_set():
                            return
                        try:
                            self.wfile.write(encode(message))
                        except OSError:
                            closed.set()

                def send_raw(data: bytes) -> None:
                    with write_lock:
                        self.wfile.write(data)

                def drop() -> None:
                    closed.set()
                    try:
                        self.connection.shutdown(socket.SHUT_RDWR)
                    except OSError:
                        pass

                while not closed.is_set():
                    try:
                        message = read_value(self.rfile)
                    except (ProtocolError, OSError, ValueError):
                        return
                    with fake.lock:
                        fake.ops.append(message)
                    fake.dispatch(message, send, send_raw, drop)

        self.server = socketserver.ThreadingTCPServer(("127.0.0.1", 0), Handler, bind_and_activate=False)
        self.server.daemon_threads = True
        self.server.allow_reuse_address = True
        self.server.server_bind()
        self.server.server_activate()
        self._thread = threading.Thread(target=self.server.serve_forever, daemon=True)

    @property
    def port(self) -> int:
        return self.server.server_address[1]

    def start(self) -> "FakeNreplServer":
        self._thread.start()
        return self

    def stop(self) -> None:
        with self.lock:
            for event in self.running.values():
                event.set()
        self.server.shutdown()
        self.server.server_close()

    def forget_sessions(self) -> None:
        """Simulate a server restart: every session id becomes unknown."""
        with self.lock:
            self.sessions.clear()

    def ops_named(self, op: str) -> List[Dict[str, Any]]:
        with self.lock:
            return [m for m in self.ops if m.get("op") == op]

    def new_session(self, cljs: bool = False) -> str:
        session_id = str(uuid.uuid4())
        with self.lock:
            self.sessions[session_id] = {"vars": {}, "cljs": cljs}
        return session_id

    def dispatch(self, message, send, send_raw, drop) -> None:
        op = message.get("op")
        msg_id = message.get("id")

        if op == "clone":
            send({"id": msg_id, "new-session": self.new_session(self.cljs_sessions), "status": ["done"]})
        elif op == "ls-sessions":
            with self.lock:
                sessions = list(self.sessions)
            send({"id": msg_id, "sessions": sessions, "status": ["done"]})
        elif op == "describe":
            send({
                "id": msg_id,
                "versions": self.versions,
                "ops": {"clone": {}, "describe": {}, "eval": {}, "interrupt": {}, "ls-sessions": {}},
                "status": ["done"],
            })
        elif op == "eval":
            threading.Thread(
                target=self._eval, args=(message, send, send_raw, drop), daemon=True
            ).start()
        elif op == "interrupt":
            self._interrupt(message, send)
        else:
            send({"id": msg_id, "status": ["unknown-op", "done"]})

    def _interrupt(self, message, send) -> None:
        if self.ignore_interrupts:
            return
        msg_id = message.get("id")
        with self.lock:
            event = self.running.get(message.get("interrupt-id"))
        if event is None:
            send({"id": msg_id, "session": message.get("session"), "status": ["session-idle", "done"]})
            return
        event.set()
        send({"id": msg_id, "session": message.get("session"), "status": ["done"]})

    def _eval(self, message, send, send_raw, drop) -> None:
        msg_id = message.get("id")
        session_id = message.get("session")

        if self.eval_reply_bytes is not None:
            send_raw(self.eval_reply_bytes)
            return

        with self.lock:
            session = self.sessions.get(session_id) if session_id else {"vars": {}, "cljs": False}
        base = {"id": msg_id}
        if session_id:
            base["session"] = session_id
        if session is None:
            send({**base, "status": ["error", "unknown-session", "done"]})
            return

        interrupted = threading.Event()
        with self.lock:
            self.running[msg_id] = interrupted

        try:
            for form in split_forms(message.get("code", "")):
                try:
                    value = self._eval_form(form, session, base, send, interrupted)
                except Unresolved as e:
                    send({**base, "err": f"Syntax error compiling at (REPL:1:1).\nUnable to resolve symbol: {e} in this context\n"})
                    send({**base, "ex": "class clojure.lang.Compiler$CompilerException", "root-ex": "class clojure.lang.Compiler$CompilerException", "status": ["eval-error"]})
                    break
                except Thrown as e:
                    send({**base, "err": f"Execution error (ExceptionInfo) at user/eval1 (REPL:1).\n{e}\n"})
                    send({**base, "ex": "class clojure.lang.ExceptionInfo", "root-ex": "class clojure.lang.ExceptionInfo", "status": ["eval-error"]})
                    break
                if interrupted.is_set():
                    send({**base, "status": ["interrupted"]})
                    break
                send({**base, "value": pr_str(value), "ns": self.default_ns})
                if self.drop_after_value:
                    drop()
                    return
            send({**base, "status": ["done"]})
        finally:
            with self.lock:
                self.running.pop(msg_id, None)

    def _eval_form(self, form, session, base, send, interrupted):
        form = form.strip()
        if form.startswith('"'):
            return form[1:-1]
        if not form.startswith("("):
            try:
                return int(form)
            except ValueError:
                pass
            if form == "*clojurescript-version*" and session["cljs"]:
                return "1.11.132"
            if form in session["vars"]:
                return session["vars"][form]
            raise Unresolved(form)

        parts = split_forms(form[1:-1])
        head, args = parts[0], parts[1:]
        if head == "+":
            return sum(self._eval_form(a, session, base, send, interrupted) for a in args)
        if head == "def":
            session["vars"][args[0]] = self._eval_form(args[1], session, base, send, interrupted)
            return f"#'user/{args[0]}"
        if head == "println":
            text = " ".join(str(self._eval_form(a, session, base, send, interrupted)) for a in args)
            send({**base, "out": text + "\n"})
            return None
        if head == "Thread/sleep":
            millis = int(args[0])
            interrupted.wait(millis / 1000.0)
            return None
        if head == "throw":
            raise Thrown("boom")
        if head == "System/getProperty" and args == ['"user.dir"']:
            return self.cwd
        if head == "import":
            return None
        if head == "os/getcwd":
            return self.cwd
        raise Unresolved(head)


class SilentServer:
    """Accepts connections and never answers."""

    def __init__(self):
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.listen(8)
        self.port = self.sock.getsockname()[1]
        self.clients = []
        self._thread = threading.Thread(target=self._accept, daemon=True)
        self._thread.start()

    def _accept(self):
        while True:
            try:
                client, _ = self.sock.accept()
            except OSError:
                return
            self.clients.append(client)

    def stop(self):
        self.sock.close()
        for client in self.clients:
            client.close()


@pytest.fixture
def make_server():
    """Factory for fake nREPL servers, all stopped after the test."""
    servers = []

    def factory(**kwargs) -> FakeNreplServer:
        server = FakeNreplServer(**kwargs).start()
        servers.append(server)
        return server

    yield factory
    for server in servers:
        server.stop()


@pytest.fixture
def nrepl_server(make_server):
    return make_server()


@pytest.fixture
def silent_server():
    server = SilentServer()
    yield server
    server.stop()


@pytest.fixture
def closed_port():
    """A local port with nothing listening on it."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port
