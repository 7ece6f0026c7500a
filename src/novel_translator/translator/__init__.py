"""Glossary resolution and glossary-constrained translation."""

from novel_translator.translator.engine import FailureKind, GlossaryTranslator, TranslationOutcome
from novel_translator.translator.glossary import GlossaryMapping, format_glossary_mapping
from novel_translator.translator.llm import (
    LLMClient,
    LLMDocumentTranslator,
    LLMTermExtractor,
    LLMTermTranslator,
)
from novel_translator.translator.resolver import resolve_candidates

__all__ = [
    "FailureKind",
    "GlossaryMapping",
    "GlossaryTranslator",
    "LLMClient",
    "LLMDocumentTranslator",
    "LLMTermExtractor",
    "LLMTermTranslator",
    "TranslationOutcome",
    "format_glossary_mapping",
    "resolve_candidates",
]
