"""Pytest configuration and fixtures."""

import os
from typing import Optional

import pytest

import novel_translator.config as config_module
from novel_translator.config import BatchConfig, ScanConfig
from novel_translator.models import Document, ExtractionCandidate, TermCategory
from novel_translator.services.pipeline_service import Capabilities
from novel_translator.storage import JsonLibraryStore


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "integration: mark test as integration test")


@pytest.fixture(scope="session")
def openai_api_available():
    """Check if an OpenAI-compatible API key is configured."""
    api_key = os.getenv("OPENAI_API_KEY", "")
    return bool(api_key) and not api_key.startswith("sk-your")


@pytest.fixture(autouse=True)
def reset_global_config(monkeypatch):
    """Each test starts without a cached global config."""
    monkeypatch.setattr(config_module, "_config", None)


# ---------------------------------------------------------------------------
# Fake capabilities
# ---------------------------------------------------------------------------


class FakeExtractor:
    """Returns a fixed candidate list, or raises."""

    def __init__(self, candidates=None, error: Optional[Exception] = None):
        self.candidates = list(candidates or [])
        self.error = error
        self.calls: list[tuple[str, int]] = []

    async def extract(self, text, max_chars):
        self.calls.append((text, max_chars))
        if self.error:
            raise self.error
        return list(self.candidates)


class FakeTermTranslator:
    """Looks terms up in a dict; unknown terms raise."""

    def __init__(self, renderings=None):
        self.renderings = dict(renderings or {})
        self.calls: list[tuple[str, str]] = []

    async def translate(self, term, context):
        self.calls.append((term, context))
        if term not in self.renderings:
            raise RuntimeError(f"no rendering for {term}")
        return self.renderings[term]


class FakeDocumentTranslator:
    """Translates by applying the glossary mapping to the text.

    Texts listed in ``fail_on`` raise; ``on_call`` runs before each reply so
    tests can issue control commands mid-run.
    """

    def __init__(self, fail_on=(), on_call=None):
        self.fail_on = set(fail_on)
        self.on_call = on_call
        self.calls: list[tuple[str, list]] = []

    async def translate(self, full_text, glossary_mapping):
        self.calls.append((full_text, list(glossary_mapping)))
        if self.on_call is not None:
            self.on_call(len(self.calls))
        if full_text in self.fail_on:
            raise ConnectionError("service unavailable")
        text = full_text
        for rule in glossary_mapping:
            text = text.replace(rule.original, rule.translation)
        return f"[T] {text}"


@pytest.fixture
def fake_capabilities():
    return Capabilities(
        extractor=FakeExtractor([ExtractionCandidate(original="Zhang San", category=TermCategory.PERSON)]),
        term_translator=FakeTermTranslator({"Zhang San": "Zhang the Third"}),
        document_translator=FakeDocumentTranslator(),
    )


# ---------------------------------------------------------------------------
# Store and configs
# ---------------------------------------------------------------------------


@pytest.fixture
def fast_batch_config():
    """No cooldown and a short poll interval keep scheduler tests fast."""
    return BatchConfig(cooldown_ms=0, poll_interval_ms=5, request_timeout_seconds=5)


@pytest.fixture
def scan_config():
    return ScanConfig()


@pytest.fixture
def store(tmp_path):
    return JsonLibraryStore(tmp_path / "data")


@pytest.fixture
def project(store):
    """A project named 'novel' with no documents."""
    return store.create_project("novel", title="Test Novel", author="Anon")


def make_documents(store, project_id: str, texts: list[str]) -> list[Document]:
    """Add one document per text, ordered from 1."""
    return store.add_documents(
        [
            Document(project_id=project_id, order=i, title=f"Chapter {i}", source_text=text)
            for i, text in enumerate(texts, start=1)
        ]
    )
