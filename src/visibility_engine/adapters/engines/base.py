"""Base interface for answer engine clients."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass
class EngineQuery:
    """A prompt to put to one answer engine."""

    engine: str
    prompt: str
    persona: str | None = None
    location: str | None = None


@dataclass
class EngineAnswer:
    """Raw answer returned by an answer engine."""

    engine: str
    text: str
    citations: list[str] = field(default_factory=list)
    model: str | None = None
    raw_response: dict[str, Any] | None = None


class AnswerEngineClient(ABC):
    """Abstract base class for answer engine clients.

    Implementations:
    - HttpAnswerEngineClient: Queries engines through an HTTP gateway
    - StubAnswerEngineClient: Returns canned answers for testing

    ``query`` raises on failure. Failures are what the authority registry
    counts, so clients must not swallow them into an empty answer.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Client name identifier."""
        ...

    @abstractmethod
    async def query(self, request: EngineQuery) -> EngineAnswer:
        """Send a prompt to an answer engine.

        Args:
            request: Engine and prompt to query

        Returns:
            EngineAnswer with the answer text and cited URLs

        Raises:
            PermanentError: If the request itself is invalid
            Exception: Any other failure, treated as transient
        """
        ...

    async def health_check(self) -> bool:
        """Check if the client is available.

        Returns:
            True if the client is operational
        """
        return True
