"""Best-effort repair of unbalanced delimiters before code is sent.

Code written by an AI assistant regularly ends one paren short. Rather than
sending it and getting a reader error back, unbalanced code is piped
through parinfer-rust (indent mode), which rebuilds closing delimiters from
indentation.

Repair never blocks evaluation: if parinfer-rust is missing, fails, or
produces something still unbalanced, the caller sends the original text.
"""

import json
import logging
import subprocess
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

PARINFER_COMMAND = "parinfer-rust"
PARINFER_TIMEOUT = 5.0

CLOSERS = {"(": ")", "[": "]", "{": "}"}


def _skip_string(text: str, i: int) -> int:
    """Return the index just past the closing quote, or -1 if unterminated."""
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch == '"':
            return i + 1
        i += 1
    return -1


def delimiter_error(text: str) -> bool:
    """
    Detect unbalanced or mismatched (), [] and {}.

    Strings, regex literals (#"..."), ; comments and character literals
    (\\(, \\newline) are skipped. An unterminated string is a reader error
    but not a delimiter error, so it returns False.

    Example:
        >>> delimiter_error("(defn foo [x] (* x 2))")
        False
        >>> delimiter_error("(defn foo [x (* x 2))")
        True
    """
    stack = []
    i = 0
    n = len(text)

    while i < n:
        ch = text[i]
        if ch == ";":
            newline = text.find("\n", i)
            if newline < 0:
                break
            i = newline + 1
            continue
        if ch == '"':
            i = _skip_string(text, i + 1)
            if i < 0:
                return False
            continue
        if ch == "\\":
            # Character literal: one char, then any trailing name chars (\newline, é)
            i += 2
            while i < n and text[i].isalnum():
                i += 1
            continue
        if ch in CLOSERS:
            stack.append(CLOSERS[ch])
        elif ch in ")]}":
            if not stack or stack.pop() != ch:
                return True
        i += 1

    return bool(stack)


def parinfer_repair(text: str, command: str = PARINFER_COMMAND) -> Dict[str, Any]:
    """
    Run parinfer-rust in indent mode over the text.

    Returns:
        Parsed parinfer JSON ({"success": bool, "text": str, ...}), or
        {"success": False} when the tool is missing, fails or times out
    """
    try:
        result = subprocess.run(
            [command, "--mode", "indent", "--language", "clojure", "--output-format", "json"],
            input=text,
            capture_output=True,
            text=True,
            timeout=PARINFER_TIMEOUT,
        )
    except FileNotFoundError:
        logger.debug(f"{command} not found on PATH; skipping delimiter repair")
        return {"success": False}
    except subprocess.TimeoutExpired:
        logger.warning(f"{command} timed out after {PARINFER_TIMEOUT}s")
        return {"success": False}

    if result.returncode != 0:
        logger.debug(f"{command} exited with {result.returncode}: {result.stderr.strip()}")
        return {"success": False}

    try:
        parsed = json.loads(result.stdout)
    except json.JSONDecodeError:
        return {"success": False}
    return parsed if isinstance(parsed, dict) else {"success": False}


def fix_delimiters(text: str, command: str = PARINFER_COMMAND) -> Optional[str]:
    """
    Repair delimiter errors if there are any.

    Returns:
        The original text if it is balanced, the repaired text if repair
        worked, or None if the text could not be repaired
    """
    if not delimiter_error(text):
        return text

    repaired = parinfer_repair(text, command)
    fixed = repaired.get("text")
    if repaired.get("success") and isinstance(fixed, str) and not delimiter_error(fixed):
        logger.info("Repaired unbalanced delimiters before eval")
        return fixed

    logger.info("Could not repair delimiters; sending code unchanged")
    return None
