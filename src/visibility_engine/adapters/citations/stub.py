"""Stub citation verifier for testing."""

from visibility_engine.adapters.citations.base import (
    CitationVerification,
    CitationVerifier,
    HallucinationRisk,
    VerificationStatus,
)
from visibility_engine.logging import get_logger

logger = get_logger(__name__)


class StubCitationVerifier(CitationVerifier):
    """Stub verifier that reports every source as fetched and supporting the claim."""

    @property
    def name(self) -> str:
        return "stub"

    async def verify(self, source_url: str, claim_text: str) -> CitationVerification:
        logger.info("stub_citation_verify", source_url=source_url)
        return CitationVerification(
            source_url=source_url,
            status=VerificationStatus.CONTENT_FETCHED,
            hallucination_risk=HallucinationRisk.LOW,
            content_length=1000,
            claim_found=True,
        )
