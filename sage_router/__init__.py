"""Canonical translation between LLM chat API wire formats, with SSE helpers."""

__version__ = "0.1.0"