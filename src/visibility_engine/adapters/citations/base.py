"""Base interface for citation verifiers."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import StrEnum
from typing import Any


class VerificationStatus(StrEnum):
    CONTENT_FETCHED = "content_fetched"
    NOT_FOUND = "not_found"
    FETCH_ERROR = "fetch_error"
    INSUFFICIENT_CONTENT = "insufficient_content"


class HallucinationRisk(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    PENDING_ANALYSIS = "pending_analysis"


@dataclass
class CitationVerification:
    """Outcome of checking a cited source against a claim."""

    source_url: str
    status: VerificationStatus
    hallucination_risk: HallucinationRisk
    content_length: int = 0
    claim_found: bool | None = None
    fetch_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_url": self.source_url,
            "status": self.status.value,
            "hallucination_risk": self.hallucination_risk.value,
            "content_length": self.content_length,
            "claim_found": self.claim_found,
            "fetch_error": self.fetch_error,
        }


class CitationVerifier(ABC):
    """Abstract base class for citation verifiers.

    Implementations:
    - HttpCitationVerifier: Fetches the source page and checks it
    - StubCitationVerifier: Returns a fixed verdict for testing
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Verifier name identifier."""
        ...

    @abstractmethod
    async def verify(self, source_url: str, claim_text: str) -> CitationVerification:
        """Check whether a source supports a claim.

        Args:
            source_url: URL the answer engine cited
            claim_text: Statement attributed to that source

        Returns:
            CitationVerification describing what was found
        """
        ...
