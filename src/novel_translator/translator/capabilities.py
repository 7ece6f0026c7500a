"""Protocols for the external text-generation capabilities.

The pipelines depend only on these protocols. ``translator.llm`` provides
OpenAI-compatible implementations; tests substitute simple fakes.
"""

from typing import Protocol

from novel_translator.models import ExtractionCandidate
from novel_translator.translator.glossary import GlossaryMapping


class ExtractorCapability(Protocol):
    """Proposes candidate glossary terms from a text sample."""

    async def extract(self, text: str, max_chars: int) -> list[ExtractionCandidate]:
        """Return candidates found in ``text[:max_chars]``.

        Implementations fail closed: any error yields an empty list.
        """
        ...


class TermTranslationCapability(Protocol):
    """Renders a single term in the target language."""

    async def translate(self, term: str, context: str) -> str:
        """Return the target-language rendering of ``term``.

        May raise; callers fall back to the term itself.
        """
        ...


class DocumentTranslationCapability(Protocol):
    """Translates a full document under a mandatory glossary mapping."""

    async def translate(self, full_text: str, glossary_mapping: list[GlossaryMapping]) -> str:
        """Return the translated body.

        Failure is signalled by raising, never by returning error text.
        """
        ...
