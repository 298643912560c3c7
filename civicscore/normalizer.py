"""Schema normalization for analysis records.

Analysis files were written by several generations of the ingestion
pipeline.  They differ in where the entity/domain live, what the answer list
is called, how questions are identified and which confidence scale is used:

====================  =========================================================
Concern               Accepted spellings
====================  =========================================================
entity                ``entityId`` / ``entity_id`` / ``municipalityId`` or a
                      nested ``municipality`` / ``entity`` ``{id, displayName}``
domain                ``domainId`` / ``domain_id`` or a nested ``domain``
answer list           ``questions`` or ``answers``
question id           ``id`` / ``questionId`` / ``question_id``
question text         ``question`` or ``text``
gap explanation       ``gap`` or ``gapAnalysis``
source references     ``sourceRefs`` / ``source_refs``; strings or objects
confidence            0-100 or 0-1 (see ``normalize_confidence``)
====================  =========================================================

``normalize`` returns a canonical :class:`Analysis` or a
:class:`NormalizationError`; it never raises for a bad record.  Normalizing
an already canonical record (or its ``model_dump()``) returns an equal record.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from civicscore.calculus import as_float, normalize_confidence, normalize_score
from civicscore.schemas import Analysis, AnalyzedQuestion, Question, SourceRef

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class NormalizationError:
    """A raw analysis record that matches none of the known shapes."""
    reason: str
    index: int | None = None  # offending item in the answer list, if any

    def __str__(self) -> str:
        if self.index is None:
            return self.reason
        return f"{self.reason} (item {self.index})"


_MISSING = object()


def _first(raw: Mapping[str, Any], *keys: str) -> Any:
    """Value of the first key that is present and not None."""
    for key in keys:
        val = raw.get(key, _MISSING)
        if val is not _MISSING and val is not None:
            return val
    return None


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def _identifier(value: Any) -> int | str | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else str(value)
    s = str(value).strip()
    return s or None


# ---------------------------------------------------------------------------
# Pieces
# ---------------------------------------------------------------------------


def _nested_ref(raw: Mapping[str, Any], *keys: str) -> tuple[str, str | None]:
    """(id, displayName) from the first nested object among *keys*."""
    for key in keys:
        obj = raw.get(key)
        if isinstance(obj, Mapping) and obj.get("id") is not None:
            name = _first(obj, "displayName", "display_name", "name")
            return str(obj["id"]), _optional_text(name)
    return "", None


def _entity(raw: Mapping[str, Any]) -> tuple[str, str | None]:
    nested_id, nested_name = _nested_ref(raw, "municipality", "entity")
    flat = _first(raw, "entity_id", "entityId", "municipalityId")
    name = _first(raw, "entity_name", "entityName") or nested_name
    return (str(flat) if flat is not None else nested_id), _optional_text(name)


def _domain(raw: Mapping[str, Any]) -> tuple[str, str | None]:
    nested_id, nested_name = _nested_ref(raw, "domain")
    flat = _first(raw, "domain_id", "domainId")
    if flat is None and isinstance(raw.get("domain"), str):
        flat = raw["domain"]
    name = _first(raw, "domain_name", "domainName") or nested_name
    return (str(flat) if flat is not None else nested_id), _optional_text(name)


def _source_ref(item: Any) -> SourceRef | None:
    if isinstance(item, SourceRef):
        return item
    if isinstance(item, (str, int)) and not isinstance(item, bool):
        return SourceRef(section=str(item))
    if not isinstance(item, Mapping):
        return None
    sections = item.get("sections")
    if isinstance(sections, list):
        sections = [str(s) for s in sections]
    else:
        sections = None
    page = as_float(item.get("page"))
    return SourceRef(
        type=_optional_text(item.get("type")),
        name=_optional_text(item.get("name")),
        document=_optional_text(item.get("document")),
        section=_optional_text(item.get("section")),
        sections=sections,
        page=int(page) if page is not None else None,
        url=_optional_text(_first(item, "url", "sourceUrl")),
    )


def _source_refs(value: Any) -> list[SourceRef]:
    if not isinstance(value, list):
        return []
    refs = (_source_ref(item) for item in value)
    return [r for r in refs if r is not None]


def _answer(item: Mapping[str, Any], index: int) -> AnalyzedQuestion | NormalizationError:
    qid = _identifier(_first(item, "question_id", "questionId", "id"))
    if qid is None:
        return NormalizationError("answer has no question identifier", index)
    return AnalyzedQuestion(
        question_id=qid,
        question=_text(_first(item, "question", "text")),
        answer=_text(item.get("answer")),
        confidence=normalize_confidence(item.get("confidence")),
        score=normalize_score(item.get("score")),
        source_refs=_source_refs(_first(item, "source_refs", "sourceRefs")),
        gap=_optional_text(_first(item, "gap", "gapAnalysis")),
    )


def stored_score(raw: Mapping[str, Any], *keys: str) -> float | None:
    """Score stored under *keys* at the top level or inside ``scores``."""
    value = as_float(_first(raw, *keys))
    if value is None:
        scores = raw.get("scores")
        if isinstance(scores, Mapping):
            value = as_float(_first(scores, *keys))
    return value


def _timestamp(raw: Mapping[str, Any], metadata: Mapping[str, Any]) -> str | None:
    value = _first(raw, "timestamp", "analyzedAt", "lastUpdated")
    if value is None:
        value = _first(metadata, "analysisDate", "analysis_date")
    return _optional_text(value)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def normalize(raw: Any) -> Analysis | NormalizationError:
    """Convert any known analysis shape into a canonical :class:`Analysis`."""
    if isinstance(raw, Analysis):
        return raw.model_copy(deep=True)
    if not isinstance(raw, Mapping):
        return NormalizationError(f"analysis record is not an object ({type(raw).__name__})")

    items = raw.get("questions")
    if not isinstance(items, list):
        items = raw.get("answers")
    if not isinstance(items, list):
        return NormalizationError("analysis record has no question list")

    answers: list[AnalyzedQuestion] = []
    for index, item in enumerate(items):
        if isinstance(item, AnalyzedQuestion):
            answers.append(item.model_copy(deep=True))
            continue
        if not isinstance(item, Mapping):
            return NormalizationError("answer is not an object", index)
        result = _answer(item, index)
        if isinstance(result, NormalizationError):
            return result
        answers.append(result)

    metadata = raw.get("metadata")
    metadata = dict(metadata) if isinstance(metadata, Mapping) else {}
    entity_id, entity_name = _entity(raw)
    domain_id, domain_name = _domain(raw)

    return Analysis(
        entity_id=entity_id,
        entity_name=entity_name,
        domain_id=domain_id,
        domain_name=domain_name,
        questions=answers,
        overall_score=stored_score(raw, "overall_score", "overallScore"),
        normalized_score=stored_score(raw, "normalized_score", "normalizedScore"),
        metadata=metadata,
        timestamp=_timestamp(raw, metadata),
    )


def parse_question(raw: Any) -> Question | None:
    """Parse one question definition; ``None`` if it has no identifier."""
    if isinstance(raw, Question):
        return raw
    if not isinstance(raw, Mapping):
        return None
    qid = _identifier(raw.get("id"))
    if qid is None:
        return None
    order = as_float(raw.get("order"))
    return Question(
        id=qid,
        question=_text(_first(raw, "question", "text")),
        category=_optional_text(raw.get("category")),
        weight=as_float(raw.get("weight")),
        order=int(order) if order is not None else None,
        score_instructions=_optional_text(_first(raw, "score_instructions", "scoreInstructions")),
    )


def parse_questions(raw: Any) -> list[Question]:
    """Parse a question file: a bare list or ``{"questions": [...]}``."""
    if isinstance(raw, Mapping):
        raw = raw.get("questions")
    if not isinstance(raw, list):
        return []
    questions: list[Question] = []
    seen: set[str] = set()
    for index, item in enumerate(raw):
        q = parse_question(item)
        if q is None:
            log.warning("Skipping question definition %d without an id", index)
            continue
        key = str(q.id)
        if key in seen:
            log.warning("Skipping duplicate question id %r", q.id)
            continue
        seen.add(key)
        questions.append(q)
    return questions


def to_legacy(
    analysis: Analysis,
    entity_name: str | None = None,
    domain_name: str | None = None,
) -> dict[str, Any]:
    """Render a canonical analysis in the nested shape older consumers read.

    Confidence goes back to the 0-100 scale and both gap spellings are set.
    The conversion is lossy for confidences at or below 0.01: they come out
    as 1 or less and ``normalize`` then reads them as already on the 0-1
    scale (0.01 -> 1 -> 1.0).
    """
    questions = []
    for q in analysis.questions:
        questions.append({
            "id": q.question_id,
            "question": q.question,
            "answer": q.answer,
            "confidence": q.confidence * 100,
            "score": q.score,
            "sourceRefs": [r.model_dump(exclude_none=True) for r in q.source_refs],
            "gap": q.gap,
            "gapAnalysis": q.gap,
        })
    result: dict[str, Any] = {
        "municipality": {
            "id": analysis.entity_id,
            "displayName": entity_name or analysis.entity_name or analysis.entity_id,
        },
        "domain": {
            "id": analysis.domain_id,
            "displayName": domain_name or analysis.domain_name or analysis.domain_id,
        },
        "questions": questions,
        "metadata": dict(analysis.metadata),
    }
    if analysis.overall_score is not None:
        result["overallScore"] = analysis.overall_score
    if analysis.normalized_score is not None:
        result["normalizedScore"] = analysis.normalized_score
    if analysis.timestamp is not None:
        result["timestamp"] = analysis.timestamp
    return result
