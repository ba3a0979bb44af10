"""Answer engine client adapters."""

from visibility_engine.adapters.engines.base import AnswerEngineClient, EngineAnswer, EngineQuery
from visibility_engine.adapters.engines.http import HttpAnswerEngineClient
from visibility_engine.adapters.engines.stub import StubAnswerEngineClient
from visibility_engine.config import settings


def get_engine_client() -> AnswerEngineClient:
    """Get the configured answer engine client."""
    provider = settings.engine_client_provider.lower()

    if provider == "http":
        return HttpAnswerEngineClient()
    return StubAnswerEngineClient()


__all__ = [
    "AnswerEngineClient",
    "EngineAnswer",
    "EngineQuery",
    "HttpAnswerEngineClient",
    "StubAnswerEngineClient",
    "get_engine_client",
]
