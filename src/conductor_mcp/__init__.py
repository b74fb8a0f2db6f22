"""Conductor MCP: supervised command sessions and tool-call orchestration."""

__version__ = "0.1.0"

__all__ = ["__version__"]
