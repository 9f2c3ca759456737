"""Bencode codec for the nREPL wire protocol.

Every message exchanged with an nREPL server is a bencoded dictionary.
The format is self-delimiting, so messages can be read back-to-back from
a single stream without any framing:

    byte string:  <byte-length>:<raw bytes>      "4:eval"
    integer:      i<decimal>e                    "i42e"
    list:         l<elements>e                   "l4:done2:oke"
    dictionary:   d<key><value>...e              "d2:op5:clonee"

Dictionary keys are byte strings. Byte strings are decoded to ``str`` with
strict UTF-8, so every protocol field comes back as plain text.

Usage:
    data = encode({"op": "eval", "code": "(+ 1 2)"})
    message = decode(data)

    # Streams: one value per call, positioned at the next value boundary
    message = read_value(sock_file)

    # Buffers: decode a prefix and learn where the next value starts
    message, end = decode_partial(buffer)
"""

from typing import Any, BinaryIO, Mapping, Tuple, Union

from nrepleval.exceptions import ProtocolError, TruncatedMessageError

BencodeValue = Union[str, int, list, dict]

_DIGITS = b"0123456789"


def encode(value: Any) -> bytes:
    """
    Encode a value to bencode bytes.

    Args:
        value: str, bytes, int, list/tuple or mapping (nested freely)

    Returns:
        Encoded bytes

    Raises:
        TypeError: If the value (or a nested value) has no bencode form
    """
    chunks: list = []
    _encode_into(value, chunks)
    return b"".join(chunks)


def _encode_into(value: Any, chunks: list) -> None:
    if isinstance(value, str):
        raw = value.encode("utf-8")
        chunks.append(b"%d:" % len(raw))
        chunks.append(raw)
    elif isinstance(value, (bytes, bytearray)):
        chunks.append(b"%d:" % len(value))
        chunks.append(bytes(value))
    elif isinstance(value, int):
        chunks.append(b"i%de" % int(value))
    elif isinstance(value, (list, tuple)):
        chunks.append(b"l")
        for item in value:
            _encode_into(item, chunks)
        chunks.append(b"e")
    elif isinstance(value, Mapping):
        chunks.append(b"d")
        items = []
        for key, item in value.items():
            if isinstance(key, str):
                key = key.encode("utf-8")
            elif not isinstance(key, (bytes, bytearray)):
                raise TypeError(f"Dictionary keys must be str or bytes, got {type(key).__name__}")
            items.append((bytes(key), item))
        for key, item in sorted(items, key=lambda pair: pair[0]):
            _encode_into(key, chunks)
            _encode_into(item, chunks)
        chunks.append(b"e")
    else:
        raise TypeError(f"Cannot bencode value of type {type(value).__name__}")


class _BufferReader:
    """Reads from an in-memory buffer, raising on a premature end."""

    def __init__(self, data: bytes, pos: int = 0):
        self.data = data
        self.pos = pos

    def read(self, n: int) -> bytes:
        end = self.pos + n
        if end > len(self.data):
            raise TruncatedMessageError("Input ended inside a value", self.data)
        chunk = self.data[self.pos:end]
        self.pos = end
        return chunk

    def read_until(self, delimiter: bytes) -> bytes:
        index = self.data.find(delimiter, self.pos)
        if index < 0:
            raise TruncatedMessageError("Input ended inside a value", self.data)
        chunk = self.data[self.pos:index]
        self.pos = index + 1
        return chunk


class _StreamReader:
    """Reads from a binary stream, consuming no more than one value."""

    def __init__(self, stream: BinaryIO):
        self.stream = stream
        self.consumed = bytearray()

    def read(self, n: int) -> bytes:
        chunks = []
        remaining = n
        while remaining > 0:
            chunk = self.stream.read(remaining)
            if not chunk:
                raise TruncatedMessageError("Stream ended inside a value", bytes(self.consumed))
            chunks.append(chunk)
            self.consumed.extend(chunk)
            remaining -= len(chunk)
        return b"".join(chunks)

    def read_until(self, delimiter: bytes) -> bytes:
        collected = bytearray()
        while True:
            byte = self.read(1)
            if byte == delimiter:
                return bytes(collected)
            collected.extend(byte)


def _decode_value(reader, lead: bytes) -> BencodeValue:
    if lead == b"i":
        return _parse_int(reader.read_until(b"e"))
    if lead == b"l":
        items = []
        while True:
            lead = reader.read(1)
            if lead == b"e":
                return items
            items.append(_decode_value(reader, lead))
    if lead == b"d":
        result = {}
        while True:
            lead = reader.read(1)
            if lead == b"e":
                return result
            if lead not in _DIGITS:
                raise ProtocolError("Dictionary key is not a byte string", lead)
            key = _decode_string(reader, lead)
            result[key] = _decode_value(reader, reader.read(1))
    if lead and lead in _DIGITS:
        return _decode_string(reader, lead)
    raise ProtocolError("Unexpected byte at start of value", lead)


def _parse_int(digits: bytes) -> int:
    body = digits[1:] if digits.startswith(b"-") else digits
    if not body or not body.isdigit():
        raise ProtocolError("Invalid integer", b"i" + digits + b"e")
    return int(digits)


def _decode_string(reader, lead: bytes) -> str:
    length_digits = lead + reader.read_until(b":")
    if not length_digits.isdigit():
        raise ProtocolError("Invalid byte string length", length_digits)
    raw = reader.read(int(length_digits))
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ProtocolError(f"Byte string is not valid UTF-8: {e}", raw) from e


def decode_partial(data: bytes, start: int = 0) -> Tuple[BencodeValue, int]:
    """
    Decode one value from the start of a buffer.

    Args:
        data: Buffer holding zero or more encoded values
        start: Offset of the value to decode

    Returns:
        (value, end) where ``end`` is the offset of the next value boundary

    Raises:
        TruncatedMessageError: If the buffer ends before the value is complete
        ProtocolError: If the bytes are not valid bencode
    """
    data = bytes(data)
    reader = _BufferReader(data, start)
    value = _decode_value(reader, reader.read(1))
    return value, reader.pos


def decode(data: bytes) -> BencodeValue:
    """
    Decode exactly one value from bytes.

    Raises:
        TruncatedMessageError: If the data ends before the value is complete
        ProtocolError: If the data is malformed or has trailing bytes
    """
    value, end = decode_partial(data)
    if end != len(data):
        raise ProtocolError("Trailing bytes after value", bytes(data[end:]))
    return value


def read_value(stream: BinaryIO) -> BencodeValue:
    """
    Read exactly one value from a binary stream.

    The stream is left positioned at the next value boundary, so calling
    this repeatedly yields consecutive messages.

    Raises:
        TruncatedMessageError: If the stream ends inside the value
        ProtocolError: If the bytes are not valid bencode
    """
    reader = _StreamReader(stream)
    return _decode_value(reader, reader.read(1))
