"""Shared utilities."""

from visibility_engine.utils.async_utils import run_async
from visibility_engine.utils.clock import ensure_utc, utc_now

__all__ = ["ensure_utc", "run_async", "utc_now"]
