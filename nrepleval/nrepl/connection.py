"""Single TCP connection to an nREPL server.

A Connection owns one socket for one logical unit of work (one CLI
invocation or one discovery probe). It writes each message as soon as it
is sent and reads replies one decoded message at a time.

Usage:
    with Connection.open("127.0.0.1", 7888, connect_timeout=5.0) as conn:
        conn.send(eval_request("(+ 1 2)", session=session_id))
        while True:
            message = conn.receive(timeout=0.25)
            if message is None:
                continue  # Nothing yet, caller decides whether to keep waiting
            ...
"""

import logging
import socket
import time
from typing import List, Optional

from nrepleval.exceptions import NreplConnectionError, ProtocolError, TruncatedMessageError
from nrepleval.nrepl import bencode
from nrepleval.nrepl.protocol import Message, is_done, matches

logger = logging.getLogger(__name__)

RECV_CHUNK_SIZE = 65536


class Connection:
    """
    Framed bencode stream over one socket.

    Bytes received but not yet forming a complete message are kept in an
    internal buffer, so a read timeout never loses data.
    """

    def __init__(self, sock: socket.socket, host: str, port: int):
        self.sock = sock
        self.host = host
        self.port = port
        self._buffer = bytearray()
        self._closed = False

    @classmethod
    def open(cls, host: str, port: int, connect_timeout: float = 5.0) -> "Connection":
        """
        Connect to an nREPL server.

        Raises:
            NreplConnectionError: If the server refuses, cannot be resolved,
                or does not accept within ``connect_timeout`` seconds
        """
        try:
            sock = socket.create_connection((host, int(port)), timeout=connect_timeout)
        except socket.timeout as e:
            raise NreplConnectionError(
                f"Timed out connecting after {connect_timeout}s", host, port
            ) from e
        except OSError as e:
            raise NreplConnectionError(f"Could not connect: {e}", host, port) from e

        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        logger.debug(f"Connected to {host}:{port}")
        return cls(sock, host, port)

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, message: Message) -> None:
        """
        Encode and write one message immediately.

        Raises:
            NreplConnectionError: If the socket is closed or the write fails
        """
        if self._closed:
            raise NreplConnectionError("Connection is closed", self.host, self.port)

        data = bencode.encode(message)
        logger.debug(f"-> {message.get('op')} id={message.get('id')}")
        try:
            self.sock.settimeout(None)
            self.sock.sendall(data)
        except OSError as e:
            raise NreplConnectionError(f"Write failed: {e}", self.host, self.port) from e

    def receive(self, timeout: Optional[float]) -> Optional[Message]:
        """
        Read the next message.

        Args:
            timeout: Seconds to wait for a complete message (None blocks)

        Returns:
            Decoded message, or None if nothing complete arrived in time.
            The connection stays open after a timeout.

        Raises:
            NreplConnectionError: If the peer closed the connection or the
                read failed
            ProtocolError: If the bytes received are not valid bencode, or
                the peer closed the stream in the middle of a message
        """
        if self._closed:
            raise NreplConnectionError("Connection is closed", self.host, self.port)

        deadline = None if timeout is None else time.monotonic() + timeout

        while True:
            message = self._take_buffered()
            if message is not None:
                return message

            if deadline is None:
                wait = None
            else:
                wait = deadline - time.monotonic()
                if wait <= 0:
                    return None

            try:
                self.sock.settimeout(wait)
                chunk = self.sock.recv(RECV_CHUNK_SIZE)
            except socket.timeout:
                return None
            except OSError as e:
                raise NreplConnectionError(f"Read failed: {e}", self.host, self.port) from e

            if not chunk:
                if self._buffer:
                    raise TruncatedMessageError(
                        "Connection closed in the middle of a message", bytes(self._buffer)
                    )
                raise NreplConnectionError("Connection closed by server", self.host, self.port)

            self._buffer.extend(chunk)

    def _take_buffered(self) -> Optional[Message]:
        if not self._buffer:
            return None
        try:
            value, end = bencode.decode_partial(self._buffer)
        except TruncatedMessageError:
            return None
        del self._buffer[:end]

        if not isinstance(value, dict):
            raise ProtocolError(f"Expected a message dictionary, got {type(value).__name__}")
        logger.debug(f"<- id={value.get('id')} status={value.get('status')}")
        return value

    def request(self, message: Message, timeout: float) -> List[Message]:
        """
        Send a request and collect every reply carrying its id until done.

        Replies to other ids arriving meanwhile are discarded.

        Raises:
            NreplConnectionError: If no done reply arrives within ``timeout``
        """
        msg_id = message["id"]
        self.send(message)

        responses = []
        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise NreplConnectionError(
                    f"No reply to '{message.get('op')}' within {timeout}s", self.host, self.port
                )
            reply = self.receive(remaining)
            if reply is None:
                continue
            if not matches(reply, msg_id):
                logger.debug(f"Ignoring reply for id={reply.get('id')} while waiting for {msg_id}")
                continue
            responses.append(reply)
            if is_done(reply):
                return responses

    def close(self) -> None:
        """Close the socket. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        try:
            self.sock.close()
        except OSError:
            logger.debug("Error closing socket", exc_info=True)

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"Connection({self.host}:{self.port}, {state})"
