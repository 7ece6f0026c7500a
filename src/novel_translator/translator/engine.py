"""Glossary-constrained document translation.

The glossary is passed to the translation capability as a mandatory mapping.
The returned text is not checked against the glossary afterwards: compliance
is best-effort on the capability side and a term may still come back
rendered differently. Callers that need guarantees must review the output.
"""

import asyncio
from enum import Enum
from typing import Iterable, Optional

import structlog
from pydantic import BaseModel

from novel_translator.config import BatchConfig, get_config
from novel_translator.models import Document, Term
from novel_translator.translator.capabilities import DocumentTranslationCapability
from novel_translator.translator.glossary import build_glossary_mapping

logger = structlog.get_logger()


class FailureKind(str, Enum):
    """Why a translation request produced no usable text."""

    COLLABORATOR_UNAVAILABLE = "collaborator_unavailable"
    MALFORMED_RESPONSE = "malformed_response"


class TranslationOutcome(BaseModel):
    """Tagged result of one document translation.

    ``ok`` is the only reliable success signal; ``text`` is None on failure.
    """

    ok: bool
    text: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[FailureKind] = None

    @classmethod
    def success(cls, text: str) -> "TranslationOutcome":
        return cls(ok=True, text=text)

    @classmethod
    def failure(cls, kind: FailureKind, error: str) -> "TranslationOutcome":
        return cls(ok=False, error=error, error_kind=kind)


class GlossaryTranslator:
    """Translate one document with the project glossary as mandatory mapping."""

    def __init__(
        self,
        capability: DocumentTranslationCapability,
        timeout_seconds: Optional[float] = None,
        config: Optional[BatchConfig] = None,
    ):
        """Initialize the translator.

        Args:
            capability: Document translation collaborator
            timeout_seconds: Upper bound for one request, overrides config
            config: Batch configuration (request timeout)
        """
        self.capability = capability
        if timeout_seconds is None:
            timeout_seconds = (config or get_config().batch).request_timeout_seconds
        self.timeout_seconds = timeout_seconds

    async def translate(self, document: Document, glossary: Iterable[Term]) -> TranslationOutcome:
        """Translate ``document.source_text``.

        Never raises for collaborator problems: exceptions and timeouts become
        ``COLLABORATOR_UNAVAILABLE`` failures, empty replies become
        ``MALFORMED_RESPONSE`` failures.
        """
        mapping = build_glossary_mapping(glossary)
        try:
            text = await asyncio.wait_for(
                self.capability.translate(document.source_text, mapping),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error(
                "document_translation_timeout",
                document=document.id,
                timeout=self.timeout_seconds,
            )
            return TranslationOutcome.failure(
                FailureKind.COLLABORATOR_UNAVAILABLE,
                f"Timed out after {self.timeout_seconds}s",
            )
        except Exception as e:
            logger.error("document_translation_failed", document=document.id, error=str(e))
            return TranslationOutcome.failure(FailureKind.COLLABORATOR_UNAVAILABLE, str(e))

        if not isinstance(text, str) or not text.strip():
            logger.warning("document_translation_empty", document=document.id)
            return TranslationOutcome.failure(
                FailureKind.MALFORMED_RESPONSE, "Empty translation returned"
            )

        return TranslationOutcome.success(text)
