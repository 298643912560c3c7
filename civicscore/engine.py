"""Scoring engine: per-entity weighted scores and per-domain summaries.

Architecture
------------
For one (domain, entity) pair the engine:

1. loads the domain's question definitions and the entity's raw analysis
   from the document store,
2. normalizes the analysis into the canonical shape (``civicscore.normalizer``),
3. joins every question to its answer by string-coerced identifier; questions
   without an answer stay in the breakdown as "Not analyzed" with score 0,
4. aggregates weighted contributions into a 0-10 overall score
   (``civicscore.calculus``).

Absence (no questions, no analysis) yields ``None``.  A malformed analysis
also yields ``None`` and is logged; domain summaries additionally report it
as a :class:`Diagnostic`.  Store failures propagate.

Domain summaries fan out over the entity directory with at most
``concurrency`` lookups in flight and reassemble results in directory order.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import TypeVar

from civicscore.calculus import (
    Contribution,
    aggregate_overall_score,
    effective_weight,
    normalized_mean,
    weighted_contribution,
)
from civicscore.colors import NEUTRAL_COLOR, score_to_hex, threshold_color
from civicscore.config import RealmConfig, env_concurrency
from civicscore.normalizer import NormalizationError, normalize, stored_score
from civicscore.schemas import (
    Analysis,
    AnalyzedQuestion,
    Diagnostic,
    DomainSummary,
    Entity,
    EntityScore,
    EntitySummary,
    Question,
    QuestionScore,
)
from civicscore.sources import coerce_metadata
from civicscore.stores import DocumentNotFound, DocumentStore

log = logging.getLogger(__name__)

NOT_ANALYZED = "Not analyzed"

T = TypeVar("T")
R = TypeVar("R")


# ---------------------------------------------------------------------------
# Pure join + aggregation
# ---------------------------------------------------------------------------


def build_entity_score(
    domain_id: str,
    entity_id: str,
    questions: Sequence[Question],
    analysis: Analysis,
) -> EntityScore:
    """Join questions to answers and aggregate; every question is kept."""
    answers: dict[str, AnalyzedQuestion] = {}
    for a in analysis.questions:
        answers.setdefault(str(a.question_id), a)

    rows: list[QuestionScore] = []
    contributions: list[Contribution] = []
    for q in questions:
        answer = answers.get(str(q.id))
        weight = effective_weight(q.weight)
        score = answer.score if answer else 0.0
        weighted = weighted_contribution(score, weight)
        rows.append(QuestionScore(
            id=q.id,
            question=q.question or (answer.question if answer else ""),
            answer=answer.answer if answer else NOT_ANALYZED,
            score=score,
            weight=weight,
            weighted_score=weighted,
            max_weighted_score=weight,
            confidence=answer.confidence if answer else 0.0,
            analyzed=answer is not None,
            gap=answer.gap if answer else None,
            source_refs=list(answer.source_refs) if answer else [],
        ))
        contributions.append(Contribution(weighted, weight))

    orphans = set(answers) - {str(q.id) for q in questions}
    if orphans:
        log.debug("Answers without a question in %s/%s: %s", domain_id, entity_id, sorted(orphans))

    return EntityScore(
        entity_id=entity_id,
        domain_id=domain_id,
        questions=rows,
        total_weighted_score=sum(c.weighted_contribution for c in contributions),
        total_possible_weight=sum(c.weight for c in contributions),
        overall_score=aggregate_overall_score(contributions),
        normalized_score=normalized_mean(contributions),
    )


@dataclass
class EntityOutcome:
    """Result of evaluating one entity: a score, or why there is none."""
    score: EntityScore | None
    available: bool = False  # an analysis record exists
    error: NormalizationError | None = None


async def bounded_map(
    items: Sequence[T],
    fn: Callable[[T], Awaitable[R]],
    concurrency: int,
) -> list[R]:
    """Apply *fn* to every item with bounded concurrency, results in input order.

    If any call fails (or the caller is cancelled) the remaining calls are
    cancelled and nothing is returned.
    """
    semaphore = asyncio.Semaphore(max(1, concurrency))
    results: list[R | None] = [None] * len(items)

    async def run(index: int, item: T) -> None:
        async with semaphore:
            results[index] = await fn(item)

    tasks = [asyncio.create_task(run(i, item)) for i, item in enumerate(items)]
    try:
        await asyncio.gather(*tasks)
    except BaseException:
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
    return results  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class ScoringEngine:
    """Computes entity scores and domain summaries for one realm."""

    def __init__(self, store: DocumentStore, realm: RealmConfig, concurrency: int | None = None):
        self.store = store
        self.realm = realm
        self.concurrency = concurrency or env_concurrency()

    def score_color(self, score: float | None) -> str:
        if score is None:
            return NEUTRAL_COLOR.hex
        gradient = self.realm.scoring.color_gradient
        if gradient:
            return threshold_color(score / 10, gradient, self.realm.scoring.thresholds)
        return score_to_hex(score)

    async def _questions(self, domain_id: str) -> list[Question]:
        try:
            return await self.store.get_questions(domain_id)
        except DocumentNotFound:
            log.debug("No questions for domain %s", domain_id)
            return []

    async def _evaluate(self, domain_id: str, entity_id: str, questions: Sequence[Question]) -> EntityOutcome:
        raw = await self.store.get_analysis(domain_id, entity_id)
        if raw is None:
            log.debug("No analysis for %s/%s", domain_id, entity_id)
            return EntityOutcome(None)
        analysis = normalize(raw)
        if isinstance(analysis, NormalizationError):
            log.warning("Malformed analysis for %s/%s: %s", domain_id, entity_id, analysis)
            return EntityOutcome(None, available=True, error=analysis)
        if not questions or not analysis.questions:
            return EntityOutcome(None, available=True)
        return EntityOutcome(build_entity_score(domain_id, entity_id, questions, analysis), available=True)

    async def calculate_entity_score(self, domain_id: str, entity_id: str) -> EntityScore | None:
        """Weighted score breakdown for one entity, ``None`` without data."""
        questions = await self._questions(domain_id)
        if not questions:
            return None
        outcome = await self._evaluate(domain_id, entity_id, questions)
        return outcome.score

    # -- summaries ----------------------------------------------------------

    async def _state_code_applies(self, domain_id: str, entity_id: str) -> bool:
        if not self.realm.scoring.ignore_state_code:
            return False
        meta = coerce_metadata(await self.store.load_metadata(domain_id, entity_id))
        return bool(meta and meta.references_state_code)

    async def _summarize(
        self, domain_id: str, entity: Entity, questions: Sequence[Question],
    ) -> tuple[EntitySummary, Diagnostic | None]:
        name = entity.display_name or entity.name or entity.id
        if await self._state_code_applies(domain_id, entity.id):
            available = await self.store.get_analysis(domain_id, entity.id) is not None
            return EntitySummary(
                entity_id=entity.id, name=name, available=available,
                state_code_applies=True, score=None, color=self.score_color(None),
            ), None

        outcome = await self._evaluate(domain_id, entity.id, questions)
        score = outcome.score.overall_score if outcome.score else None
        summary = EntitySummary(
            entity_id=entity.id, name=name, available=outcome.available,
            score=score, color=self.score_color(score),
        )
        diagnostic = None
        if outcome.error is not None:
            diagnostic = Diagnostic(entity_id=entity.id, domain_id=domain_id, reason=str(outcome.error))
        return summary, diagnostic

    async def generate_entity_summary(self, domain_id: str, entity_id: str) -> EntitySummary:
        entities = await self.store.list_entities()
        entity = next((e for e in entities if e.id == entity_id), Entity(id=entity_id))
        summary, _ = await self._summarize(domain_id, entity, await self._questions(domain_id))
        return summary

    async def generate_domain_summary(self, domain_id: str) -> DomainSummary:
        """Summarize every entity in the directory for one domain."""
        entities = await self.store.list_entities()
        questions = await self._questions(domain_id)

        async def summarize(entity: Entity) -> tuple[EntitySummary, Diagnostic | None]:
            return await self._summarize(domain_id, entity, questions)

        results = await bounded_map(entities, summarize, self.concurrency)

        summaries = [s for s, _ in results]
        diagnostics = [d for _, d in results if d is not None]
        scores = [s.score for s in summaries if s.score is not None]
        return DomainSummary(
            domain_id=domain_id,
            total_entities=len(entities),
            entities_with_data=len(scores),
            average_score=sum(scores) / len(scores) if scores else None,
            entities=summaries,
            diagnostics=diagnostics,
        )

    # -- cross-domain / stored scores ---------------------------------------

    async def calculate_all_domain_scores(self, entity_id: str) -> dict[str, float | None]:
        """Overall score of one entity in every domain (``None`` without data)."""
        domains = await self.store.get_domains()

        async def score(domain_id: str) -> float | None:
            result = await self.calculate_entity_score(domain_id, entity_id)
            return result.overall_score if result else None

        ids = [d.id for d in domains]
        return dict(zip(ids, await bounded_map(ids, score, self.concurrency)))

    async def get_domain_scores(self, domain_id: str) -> dict[str, float]:
        """Overall scores already stored in the analysis records of a domain."""
        entities = await self.store.list_entities()

        async def stored(entity: Entity) -> float | None:
            raw = await self.store.get_analysis(domain_id, entity.id)
            if raw is None:
                return None
            if isinstance(raw, Mapping):
                # The answer list is not needed to read a stored score.
                return stored_score(raw, "overall_score", "overallScore")
            if isinstance(raw, Analysis):
                return raw.overall_score
            log.warning("Malformed analysis for %s/%s: not an object", domain_id, entity.id)
            return None

        values = await bounded_map(entities, stored, self.concurrency)
        return {e.id: v for e, v in zip(entities, values) if v is not None}
