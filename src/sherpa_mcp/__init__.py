"""Sherpa MCP: guided development workflows with adaptive, persistent state."""

__version__ = "0.1.0"

__all__ = ["__version__"]
