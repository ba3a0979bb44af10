"""Answer engine client that talks to an HTTP gateway."""

from typing import Any

import httpx

from visibility_engine.adapters.engines.base import AnswerEngineClient, EngineAnswer, EngineQuery
from visibility_engine.config import settings
from visibility_engine.domain.errors import ConfigurationError
from visibility_engine.logging import get_logger

logger = get_logger(__name__)

# 4xx codes that are still worth retrying; any other 4xx means the gateway
# rejected our request (credentials, payload), not that the engine is down
RETRYABLE_CLIENT_ERRORS = {408, 409, 425, 429}


class HttpAnswerEngineClient(AnswerEngineClient):
    """Queries answer engines through a single JSON gateway.

    The gateway accepts ``POST {base_url}/query`` with
    ``{"engine", "prompt", "persona", "location"}`` and answers with
    ``{"text", "citations", "model"}``.
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.base_url = (base_url or settings.engine_gateway_url or "").rstrip("/")
        self.api_key = api_key or settings.engine_gateway_api_key
        self.timeout = timeout or settings.engine_request_timeout

        if not self.base_url:
            logger.warning("Engine gateway URL not configured")

    @property
    def name(self) -> str:
        return "http"

    async def query(self, request: EngineQuery) -> EngineAnswer:
        """Query an engine through the gateway."""
        if not self.base_url:
            raise ConfigurationError("Engine gateway URL not configured")

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        payload: dict[str, Any] = {"engine": request.engine, "prompt": request.prompt}
        if request.persona:
            payload["persona"] = request.persona
        if request.location:
            payload["location"] = request.location

        logger.debug("engine_gateway_request", engine=request.engine)

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(f"{self.base_url}/query", headers=headers, json=payload)

        if 400 <= response.status_code < 500 and response.status_code not in RETRYABLE_CLIENT_ERRORS:
            raise ConfigurationError(
                f"Engine gateway rejected {request.engine} query: HTTP {response.status_code}"
            )
        response.raise_for_status()
        data = response.json()

        citations = [c["url"] if isinstance(c, dict) else str(c) for c in data.get("citations", [])]
        logger.info(
            "engine_gateway_response",
            engine=request.engine,
            citations=len(citations),
        )

        return EngineAnswer(
            engine=request.engine,
            text=data.get("text", ""),
            citations=citations,
            model=data.get("model"),
            raw_response=data,
        )

    async def health_check(self) -> bool:
        """Check if the gateway is reachable."""
        if not self.base_url:
            return False

        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.get(f"{self.base_url}/health")
                return response.status_code == 200
        except Exception as e:
            logger.error("engine_gateway_health_check_failed", error=str(e))
            return False
