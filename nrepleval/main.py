#!/usr/bin/env python3
"""
Main entry point for the Typer-based nrepl-eval CLI.

Delegates to nrepleval.ui.cli so the console script mapping stays stable.
"""

from nrepleval.ui.cli import run as nrepl_eval


if __name__ == "__main__":
    nrepl_eval()
