"""Tests for analysis-record normalization across the historical shapes."""
from __future__ import annotations

import pytest

from civicscore.normalizer import NormalizationError, normalize, parse_questions, to_legacy
from civicscore.schemas import Analysis, SourceRef

# ---------------------------------------------------------------------------
# Fixtures: one record per historical shape
# ---------------------------------------------------------------------------


@pytest.fixture()
def nested_shape() -> dict:
    """Oldest pipeline: nested municipality/domain, 0-100 confidence, gapAnalysis."""
    return {
        "municipality": {"id": "NY-Ardsley-Village", "displayName": "Ardsley"},
        "domain": {"id": "trees", "displayName": "Tree Preservation"},
        "questions": [
            {
                "id": 1, "question": "Is a permit required?", "answer": "Yes, for trees over 6in DBH.",
                "confidence": 85, "score": 1.0, "sourceRefs": ["§ 12-3", "§ 12-4"],
                "gapAnalysis": None,
            },
            {
                "id": 2, "question": "Are replacement trees required?", "answer": "No.",
                "confidence": 40, "score": 0.0, "gapAnalysis": "No replacement requirement.",
            },
        ],
        "overallScore": 5.0,
        "metadata": {"analysisDate": "2024-05-01T10:00:00Z", "method": "vector"},
    }


@pytest.fixture()
def flat_shape() -> dict:
    """Library format: bare ids, ``answers`` list, questionId, 0-1 confidence."""
    return {
        "entityId": "NY-Ardsley-Village",
        "domainId": "trees",
        "answers": [
            {
                "questionId": "1", "text": "Is a permit required?", "answer": "Yes.",
                "confidence": 0.9, "score": 0.75,
                "sourceRefs": [{"type": "statute", "section": "12-3", "page": 4}],
                "gap": "Penalties unclear.",
            },
        ],
        "scores": {"overallScore": 7.5, "normalizedScore": 0.75},
        "analyzedAt": "2024-06-01",
    }


# ---------------------------------------------------------------------------
# Shape recognition
# ---------------------------------------------------------------------------


class TestShapes:
    def test_nested_entity_and_domain(self, nested_shape):
        a = normalize(nested_shape)
        assert isinstance(a, Analysis)
        assert a.entity_id == "NY-Ardsley-Village"
        assert a.entity_name == "Ardsley"
        assert a.domain_id == "trees"
        assert a.domain_name == "Tree Preservation"

    def test_flat_entity_and_domain(self, flat_shape):
        a = normalize(flat_shape)
        assert a.entity_id == "NY-Ardsley-Village"
        assert a.domain_id == "trees"
        assert a.entity_name is None

    def test_answers_key_and_question_id(self, flat_shape):
        a = normalize(flat_shape)
        assert len(a.questions) == 1
        assert a.questions[0].question_id == "1"
        assert a.questions[0].question == "Is a permit required?"

    def test_gap_synonyms(self, nested_shape, flat_shape):
        assert normalize(nested_shape).questions[1].gap == "No replacement requirement."
        assert normalize(flat_shape).questions[0].gap == "Penalties unclear."

    def test_confidence_scales(self, nested_shape, flat_shape):
        assert normalize(nested_shape).questions[0].confidence == pytest.approx(0.85)
        assert normalize(flat_shape).questions[0].confidence == pytest.approx(0.9)

    def test_confidence_of_exactly_one_is_not_divided(self):
        a = normalize({"questions": [{"id": 1, "confidence": 1, "score": 1}]})
        assert a.questions[0].confidence == 1.0

    def test_string_source_refs_become_sections(self, nested_shape):
        refs = normalize(nested_shape).questions[0].source_refs
        assert refs == [SourceRef(section="§ 12-3"), SourceRef(section="§ 12-4")]

    def test_structured_source_refs_survive(self, flat_shape):
        ref = normalize(flat_shape).questions[0].source_refs[0]
        assert ref.type == "statute"
        assert ref.section == "12-3"
        assert ref.page == 4

    def test_stored_scores_top_level_and_nested(self, nested_shape, flat_shape):
        assert normalize(nested_shape).overall_score == 5.0
        flat = normalize(flat_shape)
        assert flat.overall_score == 7.5
        assert flat.normalized_score == 0.75

    def test_timestamp_sources(self, nested_shape, flat_shape):
        assert normalize(nested_shape).timestamp == "2024-05-01T10:00:00Z"
        assert normalize(flat_shape).timestamp == "2024-06-01"

    def test_metadata_block_kept(self, nested_shape):
        assert normalize(nested_shape).metadata["method"] == "vector"

    def test_score_clamped(self):
        a = normalize({"questions": [{"id": 1, "score": 1.7}, {"id": 2, "score": -0.2}]})
        assert [q.score for q in a.questions] == [1.0, 0.0]

    def test_missing_confidence_and_score_default_to_zero(self):
        q = normalize({"questions": [{"id": 3}]}).questions[0]
        assert q.confidence == 0.0
        assert q.score == 0.0
        assert q.answer == ""

    def test_empty_question_list_is_recognized(self):
        a = normalize({"entityId": "X", "questions": []})
        assert isinstance(a, Analysis)
        assert a.questions == []


# ---------------------------------------------------------------------------
# Malformed records
# ---------------------------------------------------------------------------


class TestMalformed:
    def test_not_an_object(self):
        result = normalize(["not", "a", "record"])
        assert isinstance(result, NormalizationError)

    def test_no_question_list(self):
        result = normalize({"entityId": "X", "questions": "oops"})
        assert isinstance(result, NormalizationError)
        assert "question list" in result.reason

    def test_item_without_identifier(self):
        result = normalize({"questions": [{"id": 1}, {"answer": "orphan"}]})
        assert isinstance(result, NormalizationError)
        assert result.index == 1
        assert "item 1" in str(result)

    def test_item_not_an_object(self):
        result = normalize({"answers": [{"id": 1}, 42]})
        assert isinstance(result, NormalizationError)
        assert result.index == 1

    def test_none_is_malformed_not_absent(self):
        # Absence is decided by the store; the normalizer only sees records.
        assert isinstance(normalize(None), NormalizationError)


# ---------------------------------------------------------------------------
# Idempotence
# ---------------------------------------------------------------------------


class TestIdempotence:
    @pytest.mark.parametrize("shape", ["nested_shape", "flat_shape"])
    def test_normalize_twice_is_fixed_point(self, shape, request):
        once = normalize(request.getfixturevalue(shape))
        assert normalize(once) == once

    @pytest.mark.parametrize("shape", ["nested_shape", "flat_shape"])
    def test_dumped_canonical_record_is_fixed_point(self, shape, request):
        once = normalize(request.getfixturevalue(shape))
        assert normalize(once.model_dump()) == once

    def test_normalize_returns_copy(self, flat_shape):
        once = normalize(flat_shape)
        again = normalize(once)
        again.questions[0].score = 0.0
        assert once.questions[0].score == 0.75


# ---------------------------------------------------------------------------
# Question definitions and legacy rendering
# ---------------------------------------------------------------------------


class TestQuestions:
    def test_wrapped_and_bare_lists(self):
        bare = [{"id": 1, "question": "A?"}, {"id": "2", "text": "B?", "weight": 2}]
        assert parse_questions(bare) == parse_questions({"questions": bare})
        qs = parse_questions(bare)
        assert [q.question for q in qs] == ["A?", "B?"]
        assert qs[1].weight == 2.0

    def test_skips_entries_without_id_and_duplicates(self):
        qs = parse_questions([{"question": "no id"}, {"id": 1}, {"id": "1"}, "junk"])
        assert [q.id for q in qs] == [1]

    def test_not_a_list(self):
        assert parse_questions({"domain": "trees"}) == []


class TestLegacy:
    def test_renders_nested_shape(self, flat_shape):
        legacy = to_legacy(normalize(flat_shape), entity_name="Ardsley")
        assert legacy["municipality"] == {"id": "NY-Ardsley-Village", "displayName": "Ardsley"}
        assert legacy["domain"] == {"id": "trees", "displayName": "trees"}
        q = legacy["questions"][0]
        assert q["id"] == "1"
        assert q["confidence"] == pytest.approx(90)
        assert q["gap"] == q["gapAnalysis"] == "Penalties unclear."

    def test_legacy_output_normalizes_back(self, nested_shape):
        a = normalize(nested_shape)
        back = normalize(to_legacy(a))
        assert back.entity_id == a.entity_id
        assert [q.question_id for q in back.questions] == [q.question_id for q in a.questions]
        assert [q.confidence for q in back.questions] == pytest.approx([q.confidence for q in a.questions])

    def test_tiny_confidences_do_not_survive_legacy_round_trip(self, flat_shape):
        a = normalize(flat_shape)
        a.questions[0].confidence = 0.01
        legacy = to_legacy(a)
        assert legacy["questions"][0]["confidence"] == pytest.approx(1.0)
        # 1 on the legacy scale reads back as already normalized
        assert normalize(legacy).questions[0].confidence == pytest.approx(1.0)

        a.questions[0].confidence = 0.005
        assert normalize(to_legacy(a)).questions[0].confidence == pytest.approx(0.5)
