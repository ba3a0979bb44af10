"""Adapters for external services."""

from visibility_engine.adapters.citations.base import CitationVerifier
from visibility_engine.adapters.engines.base import AnswerEngineClient

__all__ = [
    "AnswerEngineClient",
    "CitationVerifier",
]
