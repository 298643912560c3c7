"""Pydantic records for questions, analyses, source catalogues and scores."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel

QuestionId = int | str


class Question(BaseModel):
    id: QuestionId
    question: str = ""
    category: str | None = None
    weight: float | None = None
    order: int | None = None
    score_instructions: str | None = None


class SourceRef(BaseModel):
    type: str | None = None
    name: str | None = None
    document: str | None = None
    section: str | None = None
    sections: list[str] | None = None
    page: int | None = None
    url: str | None = None


class AnalyzedQuestion(BaseModel):
    question_id: QuestionId
    question: str = ""
    answer: str = ""
    confidence: float = 0.0  # 0-1 after normalization
    score: float = 0.0  # 0-1
    source_refs: list[SourceRef] = []
    gap: str | None = None


class Analysis(BaseModel):
    entity_id: str = ""
    entity_name: str | None = None
    domain_id: str = ""
    domain_name: str | None = None
    questions: list[AnalyzedQuestion] = []
    overall_score: float | None = None
    normalized_score: float | None = None
    metadata: dict[str, Any] = {}
    timestamp: str | None = None


# ---------------------------------------------------------------------------
# Source catalogue
# ---------------------------------------------------------------------------


class MetadataSource(BaseModel):
    type: str
    source_url: str = ""
    title: str | None = None
    name: str | None = None
    downloaded_at: str | None = None
    content_length: int | None = None
    sections: list[str] | None = None


class Metadata(BaseModel):
    sources: list[MetadataSource] = []
    # Legacy single-source fields
    source_url: str | None = None
    policy_url: str | None = None
    statute_title: str | None = None
    policy_title: str | None = None
    title: str | None = None
    number: str | None = None
    downloaded_at: str | None = None
    section: str | None = None
    references_state_code: bool = False


# ---------------------------------------------------------------------------
# Directory records
# ---------------------------------------------------------------------------


class Entity(BaseModel):
    id: str
    name: str = ""
    display_name: str = ""


class Domain(BaseModel):
    id: str
    name: str = ""
    display_name: str = ""
    description: str | None = None


# ---------------------------------------------------------------------------
# Derived results (never persisted)
# ---------------------------------------------------------------------------


class QuestionScore(BaseModel):
    id: QuestionId
    question: str
    answer: str
    score: float
    weight: float
    weighted_score: float
    max_weighted_score: float
    confidence: float
    analyzed: bool
    gap: str | None = None
    source_refs: list[SourceRef] = []


class EntityScore(BaseModel):
    entity_id: str
    domain_id: str
    questions: list[QuestionScore]
    total_weighted_score: float
    total_possible_weight: float
    overall_score: float  # 0-10
    normalized_score: float  # 0-1


class EntitySummary(BaseModel):
    entity_id: str
    name: str
    available: bool
    state_code_applies: bool = False
    score: float | None = None
    color: str


class Diagnostic(BaseModel):
    entity_id: str
    domain_id: str
    reason: str


class DomainSummary(BaseModel):
    domain_id: str
    total_entities: int
    entities_with_data: int
    average_score: float | None = None
    entities: list[EntitySummary] = []
    diagnostics: list[Diagnostic] = []
