"""nREPL protocol client.

- bencode: self-delimiting wire codec
- protocol: request builders and reply helpers
- Connection: one socket with framed send/receive
- client: bookkeeping ops (ls-sessions, describe, clone)
- envtypes: runtime flavour detection
"""

from nrepleval.nrepl.bencode import decode, decode_partial, encode, read_value
from nrepleval.nrepl.connection import Connection
from nrepleval.nrepl.envtypes import EnvType

__all__ = [
    "Connection",
    "EnvType",
    "decode",
    "decode_partial",
    "encode",
    "read_value",
]
