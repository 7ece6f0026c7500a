"""OpenAI-compatible LLM client and the capabilities built on it."""

import asyncio
import json
import re
from typing import Literal, Optional

import structlog

from novel_translator.config import (
    LLMConfig,
    TranslationConfig,
    get_config,
    get_effective_llm_config,
)
from novel_translator.models import ExtractionCandidate, TermCategory
from novel_translator.translator.glossary import GlossaryMapping, format_glossary_mapping

logger = structlog.get_logger()

# Task types for LLM client configuration
TaskType = Literal["extract", "term", "translate", "default"]


class LLMClient:
    """OpenAI-compatible LLM client with retry logic."""

    def __init__(
        self,
        config: Optional[LLMConfig] = None,
        task: Optional[TaskType] = None,
    ):
        """Initialize the LLM client.

        Args:
            config: LLM configuration, uses global config if None
            task: Task type for automatic config selection (extract, term, translate).
                  If both config and task are provided, config takes precedence.
        """
        if config:
            self.config = config
        else:
            self.config = self._get_config_for_task(task or "default")
        self._client = None

    def _get_config_for_task(self, task: TaskType) -> LLMConfig:
        """Get effective LLM config for a specific task."""
        app_config = get_config()
        fallback = app_config.llm

        if task == "extract":
            return get_effective_llm_config(app_config.extractor_llm, fallback)
        elif task == "term":
            return get_effective_llm_config(app_config.term_llm, fallback)
        elif task == "translate":
            return get_effective_llm_config(app_config.translator_llm, fallback)
        return fallback

    @property
    def client(self):
        """Lazy-load the OpenAI client."""
        if self._client is None:
            import openai

            self._client = openai.AsyncOpenAI(
                api_key=self.config.api_key,
                base_url=self.config.base_url,
                timeout=self.config.timeout_seconds,
            )
        return self._client

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_retries: int = 3,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Send a completion request with retry logic.

        Args:
            system_prompt: System message content
            user_prompt: User message content
            max_retries: Number of retry attempts
            temperature: Override temperature (uses config default if None)
            max_tokens: Override max tokens (uses config default if None)

        Returns:
            Generated text content (may be empty)
        """
        last_error = None

        for attempt in range(max_retries + 1):
            try:
                response = await self.client.chat.completions.create(
                    model=self.config.model,
                    messages=[
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": user_prompt},
                    ],
                    temperature=temperature if temperature is not None else self.config.temperature,
                    max_tokens=max_tokens or self.config.max_tokens,
                )
                return (response.choices[0].message.content or "").strip()

            except Exception as e:
                last_error = e
                if attempt < max_retries:
                    delay = 2**attempt  # 1, 2, 4 seconds
                    logger.warning("llm_retry", attempt=attempt + 1, error=str(e))
                    await asyncio.sleep(delay)

        raise last_error or RuntimeError("LLM request failed")


def _strip_code_fences(text: str) -> str:
    return re.sub(r"```(?:json)?", "", text).strip()


def parse_candidates(response: str) -> list[ExtractionCandidate]:
    """Parse an extractor response into candidates.

    Accepts a bare JSON array, optionally wrapped in markdown fences or
    surrounded by chatter. Items that are not objects with an ``original``
    string are skipped. Unparseable responses yield an empty list.
    """
    cleaned = _strip_code_fences(response)
    match = re.search(r"\[.*\]", cleaned, re.DOTALL)
    if not match:
        logger.warning("extraction_no_json")
        return []
    try:
        items = json.loads(match.group())
    except json.JSONDecodeError as e:
        logger.warning("extraction_parse_error", error=str(e))
        return []
    if not isinstance(items, list):
        return []

    candidates = []
    for item in items:
        if not isinstance(item, dict):
            continue
        original = item.get("original")
        if not isinstance(original, str) or not original.strip():
            continue
        candidates.append(
            ExtractionCandidate(
                original=original.strip(),
                category=TermCategory.parse(item.get("category")),
            )
        )
    return candidates


EXTRACTION_PROMPT = """Analyze the following {source_description} text.
Identify key proper nouns and recurring terminology that require consistent translation.
Categorize them into: Person, Location, Skill, Item, Organization, Other.

Return a JSON array where each object has:
- original: the term exactly as written in the source text
- category: one of the categories above

Ignore common words. Focus on unique entities.

Text:
\"\"\"{text}\"\"\""""


TERM_PROMPT = """Find the established or most accurate {target_language} translation or transliteration for the {source_description} term: "{term}".
Context of usage: "{context}".

If it is a well-known term with a community-accepted {target_language} rendering, use that.
If it is a generic name, transliterate it accurately into {target_language}.

Return ONLY the {target_language} translation string. Nothing else."""


DOCUMENT_SYSTEM_PROMPT = """You translate {source_description} chapters into {target_language}.

CRITICAL RULES:
1. You MUST strictly adhere to the provided glossary. If a glossary term appears in the text, use the exact {target_language} rendering given for it.
2. Maintain the tone and flow of the original (engaging, dramatic where necessary).
3. Keep the paragraph structure.
4. Output ONLY the translated {target_language} text, without notes or commentary."""


class LLMTermExtractor:
    """ExtractorCapability backed by an LLM returning a JSON array."""

    def __init__(self, llm: Optional[LLMClient] = None, config: Optional[TranslationConfig] = None):
        self.llm = llm or LLMClient(task="extract")
        self.config = config or get_config().translation

    async def extract(self, text: str, max_chars: int) -> list[ExtractionCandidate]:
        prompt = EXTRACTION_PROMPT.format(
            source_description=self.config.source_description,
            text=text[:max_chars],
        )
        try:
            response = await self.llm.complete(
                system_prompt="You are a terminology analyst. Return valid JSON only.",
                user_prompt=prompt,
                temperature=0.2,
            )
        except Exception as e:
            logger.error("extraction_failed", error=str(e))
            return []
        return parse_candidates(response)


class LLMTermTranslator:
    """TermTranslationCapability backed by an LLM."""

    def __init__(self, llm: Optional[LLMClient] = None, config: Optional[TranslationConfig] = None):
        self.llm = llm or LLMClient(task="term")
        self.config = config or get_config().translation

    async def translate(self, term: str, context: str) -> str:
        prompt = TERM_PROMPT.format(
            target_language=self.config.target_language,
            source_description=self.config.source_description,
            term=term,
            context=context,
        )
        response = await self.llm.complete(
            system_prompt="You are a professional literary translator.",
            user_prompt=prompt,
            temperature=0.3,
            max_tokens=100,
        )
        # Models are chatty even when told not to be
        return response.strip().strip("\"'“”«»").strip()


class LLMDocumentTranslator:
    """DocumentTranslationCapability backed by an LLM."""

    def __init__(self, llm: Optional[LLMClient] = None, config: Optional[TranslationConfig] = None):
        self.llm = llm or LLMClient(task="translate")
        self.config = config or get_config().translation

    def build_system_prompt(self) -> str:
        return DOCUMENT_SYSTEM_PROMPT.format(
            source_description=self.config.source_description,
            target_language=self.config.target_language,
        )

    def build_user_prompt(self, full_text: str, glossary_mapping: list[GlossaryMapping]) -> str:
        parts = []
        if glossary_mapping:
            parts.append(
                "## GLOSSARY (strict adherence required)\n"
                f"{format_glossary_mapping(glossary_mapping)}\n"
            )
        parts.append(f"## CHAPTER CONTENT\n{full_text}")
        return "\n".join(parts)

    async def translate(self, full_text: str, glossary_mapping: list[GlossaryMapping]) -> str:
        return await self.llm.complete(
            system_prompt=self.build_system_prompt(),
            user_prompt=self.build_user_prompt(full_text, glossary_mapping),
        )
