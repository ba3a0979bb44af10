"""Citation verifier that fetches the cited page over HTTP."""

import re

import httpx
from bs4 import BeautifulSoup, Comment

from visibility_engine.adapters.citations.base import (
    CitationVerification,
    CitationVerifier,
    HallucinationRisk,
    VerificationStatus,
)
from visibility_engine.domain.errors import TransientError
from visibility_engine.logging import get_logger

logger = get_logger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; VisibilityEngine/1.0; Citation Verification Bot)"
MAX_CONTENT_CHARS = 10_000
MIN_CONTENT_CHARS = 100

_SPACE_RE = re.compile(r"\s+")
HIDDEN_TAGS = ["script", "style", "noscript", "template"]


def extract_text(html: str) -> str:
    """Visible text of a page: no scripts, styles or comments, entities decoded."""
    soup = BeautifulSoup(html, "html.parser")
    for element in soup.find_all(HIDDEN_TAGS):
        element.decompose()
    for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
        comment.extract()

    text = soup.get_text(separator=" ", strip=True)
    return _SPACE_RE.sub(" ", text).strip()[:MAX_CONTENT_CHARS]


class HttpCitationVerifier(CitationVerifier):
    """Fetches the source and looks for the claim in its visible text.

    HTTP error responses are verdicts (the source is broken), so they are
    returned. Network failures say nothing about the source and are
    raised as TransientError so the job is retried.
    """

    def __init__(self, timeout: float = 10.0) -> None:
        self.timeout = timeout

    @property
    def name(self) -> str:
        return "http"

    async def verify(self, source_url: str, claim_text: str) -> CitationVerification:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
                response = await client.get(source_url, headers={"User-Agent": USER_AGENT})
        except httpx.TransportError as e:
            raise TransientError(f"Failed to fetch {source_url}: {e}") from e

        if response.status_code == 404:
            return CitationVerification(
                source_url=source_url,
                status=VerificationStatus.NOT_FOUND,
                hallucination_risk=HallucinationRisk.HIGH,
                fetch_error="HTTP 404",
            )
        if response.status_code >= 400:
            return CitationVerification(
                source_url=source_url,
                status=VerificationStatus.FETCH_ERROR,
                hallucination_risk=HallucinationRisk.MEDIUM,
                fetch_error=f"HTTP {response.status_code}",
            )

        content = extract_text(response.text)
        if len(content) < MIN_CONTENT_CHARS:
            return CitationVerification(
                source_url=source_url,
                status=VerificationStatus.INSUFFICIENT_CONTENT,
                hallucination_risk=HallucinationRisk.MEDIUM,
                content_length=len(content),
            )

        claim_found = claim_text.strip().lower() in content.lower()
        logger.info(
            "citation_verified",
            source_url=source_url,
            content_length=len(content),
            claim_found=claim_found,
        )
        return CitationVerification(
            source_url=source_url,
            status=VerificationStatus.CONTENT_FETCHED,
            hallucination_risk=HallucinationRisk.LOW if claim_found else HallucinationRisk.PENDING_ANALYSIS,
            content_length=len(content),
            claim_found=claim_found,
        )
