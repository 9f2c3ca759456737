"""Evaluation target: one running nREPL server."""

from dataclasses import dataclass

DEFAULT_HOST = "127.0.0.1"


@dataclass(frozen=True)
class Target:
    """
    A (host, port) pair.

    Targets are only ever compared by exact equality; "localhost" and
    "127.0.0.1" are different targets with independent sessions.
    """
    host: str
    port: int

    def __post_init__(self):
        object.__setattr__(self, "port", int(self.port))

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"
