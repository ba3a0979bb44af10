"""Citation verifier adapters."""

from visibility_engine.adapters.citations.base import (
    CitationVerification,
    CitationVerifier,
    HallucinationRisk,
    VerificationStatus,
)
from visibility_engine.adapters.citations.http import HttpCitationVerifier
from visibility_engine.adapters.citations.stub import StubCitationVerifier
from visibility_engine.config import settings


def get_citation_verifier() -> CitationVerifier:
    """Get the configured citation verifier."""
    if settings.citation_verifier_provider.lower() == "http":
        return HttpCitationVerifier()
    return StubCitationVerifier()


__all__ = [
    "CitationVerification",
    "CitationVerifier",
    "HallucinationRisk",
    "HttpCitationVerifier",
    "StubCitationVerifier",
    "VerificationStatus",
    "get_citation_verifier",
]
