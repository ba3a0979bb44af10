"""Stub answer engine client for testing."""

from visibility_engine.adapters.engines.base import AnswerEngineClient, EngineAnswer, EngineQuery
from visibility_engine.domain.errors import TransientError
from visibility_engine.logging import get_logger

logger = get_logger(__name__)


class StubAnswerEngineClient(AnswerEngineClient):
    """Stub client that returns canned answers.

    Engines listed in ``failing_engines`` raise a TransientError instead,
    which lets tests drive the authority registry through outages.
    """

    def __init__(
        self,
        answers: dict[str, str] | None = None,
        citations: list[str] | None = None,
        failing_engines: set[str] | None = None,
    ) -> None:
        self.answers = answers or {}
        self.citations = citations if citations is not None else ["https://example.com/review"]
        self.failing_engines = failing_engines or set()
        self.queries: list[EngineQuery] = []

    @property
    def name(self) -> str:
        return "stub"

    async def query(self, request: EngineQuery) -> EngineAnswer:
        """Return a canned answer for the engine."""
        self.queries.append(request)
        logger.info("stub_engine_query", engine=request.engine, prompt=request.prompt[:50])

        if request.engine in self.failing_engines:
            raise TransientError(f"Stub engine {request.engine} is failing")

        text = self.answers.get(
            request.engine,
            f"Here is an overview for: {request.prompt}. "
            "Several providers are popular options in this space.",
        )
        return EngineAnswer(
            engine=request.engine,
            text=text,
            citations=list(self.citations),
            model=f"stub-{request.engine}",
            raw_response={"stub": True, "engine": request.engine},
        )
