"""nrepl-eval: evaluate code on a running nREPL server with persistent sessions."""

__version__ = "0.3.0"
