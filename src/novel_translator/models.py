"""Domain records shared by the stores, the pipelines and the API."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class TermCategory(str, Enum):
    """Glossary term category."""

    PERSON = "Person"
    LOCATION = "Location"
    SKILL = "Skill"
    ITEM = "Item"
    ORGANIZATION = "Organization"
    OTHER = "Other"

    @classmethod
    def parse(cls, value: Optional[str]) -> "TermCategory":
        """Map free-form category text from an LLM or a CSV row to a member.

        Unknown or empty values become OTHER.
        """
        if isinstance(value, cls):
            return value
        if not value:
            return cls.OTHER
        key = str(value).strip().casefold()
        for member in cls:
            if member.value.casefold() == key:
                return member
        return _CATEGORY_ALIASES.get(key, cls.OTHER)


_CATEGORY_ALIASES: dict[str, TermCategory] = {
    "character": TermCategory.PERSON,
    "name": TermCategory.PERSON,
    "people": TermCategory.PERSON,
    "place": TermCategory.LOCATION,
    "martial art/skill": TermCategory.SKILL,
    "martial art": TermCategory.SKILL,
    "technique": TermCategory.SKILL,
    "realm": TermCategory.SKILL,
    "artifact": TermCategory.ITEM,
    "sect": TermCategory.ORGANIZATION,
    "faction": TermCategory.ORGANIZATION,
    "general": TermCategory.OTHER,
}


class Term(BaseModel):
    """A glossary entry: a source term with its fixed target rendering."""

    id: Optional[int] = Field(default=None, description="Store-assigned identifier")
    project_id: str = Field(description="Owning project")
    original: str = Field(description="Term in the source language")
    translation: str = Field(default="", description="Fixed target-language rendering")
    category: TermCategory = Field(default=TermCategory.OTHER)
    is_locked: bool = Field(
        default=False, description="Locked terms are never changed by automated passes"
    )


class Document(BaseModel):
    """One translatable unit (a chapter) with its cached translation."""

    id: Optional[int] = Field(default=None, description="Store-assigned identifier")
    project_id: str = Field(description="Owning project")
    order: int = Field(description="Ordering key, unique per project")
    title: str = Field(default="", description="Display title")
    source_text: str = Field(default="", description="Source-language text")
    translated_text: Optional[str] = Field(default=None, description="Cached translation")
    last_translated_at: Optional[datetime] = None

    @property
    def is_translated(self) -> bool:
        return bool(self.translated_text)

    @property
    def label(self) -> str:
        return self.title or f"Document {self.order}"


class ExtractionCandidate(BaseModel):
    """A term proposed by automated extraction, not yet in the glossary."""

    original: str = ""
    category: TermCategory = TermCategory.OTHER


class Project(BaseModel):
    """A translation project owning documents and glossary terms."""

    id: str = Field(description="Project identifier (slug)")
    title: str = Field(default="", description="Project title")
    author: str = Field(default="", description="Author name")
    description: str = Field(default="", description="Synopsis")
    created_at: datetime = Field(default_factory=datetime.now)
