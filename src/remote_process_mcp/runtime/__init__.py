"""Runtime module for local subprocess management.

Isolated process execution with line-level output pumping and reliable
termination, used by the local loopback session.
"""

from __future__ import annotations

from .process_runner import ProcessRunner, ProcessSpec, RunningProcess, shell_argv

__all__ = [
    "ProcessRunner",
    "ProcessSpec",
    "RunningProcess",
    "shell_argv",
]
