"""ROBO-X voice orchestrator package."""

from __future__ import annotations

from typing import Any

__all__ = ["run"]

__version__ = "0.1.0"


def run(*args: Any, **kwargs: Any) -> Any:
    """Entry point for the terminal client (lazy import)."""
    from .cli import cli

    return cli(*args, **kwargs)
