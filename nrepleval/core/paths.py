"""Filesystem locations for persisted nREPL sessions.

Layout:
    {runtime-dir}/nrepl-eval/{scope-id}-proj-{sha1(project)}/nrepl/target-{host}-{port}.json

- runtime-dir: $XDG_RUNTIME_DIR, else the system temp directory
- scope-id: identifies the calling editor/agent session, so two callers
  working on the same project do not share nREPL sessions
- project: absolute path of the current working directory
"""

import hashlib
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Optional

import psutil

logger = logging.getLogger(__name__)

APP_DIR_NAME = "nrepl-eval"
SCOPE_ENV_VAR = "NREPL_EVAL_SCOPE_ID"


def runtime_base_dir() -> Path:
    """Base directory for runtime files."""
    return Path(os.environ.get("XDG_RUNTIME_DIR") or tempfile.gettempdir())


def sanitize(value: str) -> str:
    """Make a string safe for use as a single path component."""
    value = re.sub(r"[^A-Za-z0-9._-]+", "_", value)
    return re.sub(r"_{2,}", "_", value)


def ppid_scope_id() -> Optional[str]:
    """
    Scope id derived from the parent process.

    Returns 'ppid-{pid}-{start time}' so a recycled pid does not inherit
    an old scope, or None if the parent cannot be inspected.
    """
    try:
        parent = psutil.Process(os.getppid())
        return f"ppid-{parent.pid}-{int(parent.create_time())}"
    except (psutil.NoSuchProcess, psutil.AccessDenied, OSError):
        return None


def scope_id() -> str:
    """
    Identify the calling scope.

    Tries in order:
    1. NREPL_EVAL_SCOPE_ID environment variable
    2. Parent process id and start time
    3. 'global'
    """
    return os.environ.get(SCOPE_ENV_VAR) or ppid_scope_id() or "global"


def project_root_path() -> str:
    return str(Path.cwd().resolve())


def session_root(scope: Optional[str] = None, project_root: Optional[str] = None) -> Path:
    """Root directory for this scope + project combination."""
    scope = scope or scope_id()
    project = project_root or project_root_path()
    project_hash = hashlib.sha1(project.encode("utf-8")).hexdigest()
    return runtime_base_dir() / APP_DIR_NAME / f"{sanitize(scope)}-proj-{project_hash}"


def nrepl_session_dir(scope: Optional[str] = None, project_root: Optional[str] = None) -> Path:
    """Directory holding one session file per target. Not created here."""
    return session_root(scope, project_root) / "nrepl"


def target_file_name(host: str, port: int) -> str:
    return f"target-{sanitize(host or '127.0.0.1')}-{int(port)}.json"
