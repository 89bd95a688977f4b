"""opconsole: async job runner for operator-console account and funds operations."""

from __future__ import annotations

try:
    from importlib.metadata import version

    __version__ = version("opconsole")
except Exception:
    __version__ = "0.0.0"
