# utils/__init__.py
"""General utility functions for the narrative generation pipeline."""

from .logging import bind_run_context, clear_run_context, setup_logging

__all__ = ["bind_run_context", "clear_run_context", "setup_logging"]
