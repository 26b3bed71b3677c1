"""
Tests for JSON extraction and normalisation of provider output.

Covers:
- extract_json() across fences, prose and bare lists
- The acceptance filter for generated questions
- Validation normalisation (multiple-correct rule, suggestions, confidence)
- Edit sanitisation and correct-option remapping
"""

from __future__ import annotations

import copy
import logging
from datetime import datetime, timezone

import pytest

from quizcore.exceptions import ProviderParseError
from quizcore.providers.freshness import FreshnessPolicy
from quizcore.providers.models import GenerationRequest
from quizcore.providers.parsing import (
    MULTIPLE_CORRECT_ISSUE,
    accept_items,
    extract_json,
    is_option_index,
    normalize_ambiguity,
    normalize_edit_proposal,
    normalize_validation,
    rejection_reason,
    sanitize_edits,
)

NOW = datetime(2025, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def request_():
    return GenerationRequest(category="Geografi", quantity=3)


# ─── extract_json ─────────────────────────────────────────────────────


class TestExtractJson:

    def test_plain_object(self):
        assert extract_json('{"a": 1}', provider_id="openai") == {"a": 1}

    def test_code_fence(self):
        text = '```json\n{"questions": []}\n```'
        assert extract_json(text, provider_id="anthropic") == {"questions": []}

    def test_prose_around_json(self):
        text = 'Here you go:\n{"isValid": true}\nHope that helps!'
        assert extract_json(text, provider_id="gemini") == {"isValid": True}

    def test_bare_list_wrapped(self):
        assert extract_json('[{"q": 1}]', provider_id="groq") == {"questions": [{"q": 1}]}

    def test_not_json_raises(self):
        with pytest.raises(ProviderParseError) as exc_info:
            extract_json("I cannot help with that.", provider_id="mistral", purpose="generation")
        assert exc_info.value.provider_id == "mistral"
        assert exc_info.value.purpose == "generation"

    def test_scalar_json_raises(self):
        with pytest.raises(ProviderParseError):
            extract_json("42", provider_id="openai")


# ─── Acceptance Filter ────────────────────────────────────────────────


class TestIsOptionIndex:

    @pytest.mark.parametrize("value", [0, 1, 2, 3])
    def test_valid(self, value):
        assert is_option_index(value)

    @pytest.mark.parametrize("value", [-1, 4, "0", 1.0, True, None])
    def test_invalid(self, value):
        assert not is_option_index(value)


class TestRejectionReason:

    def test_valid_item(self, raw_question):
        assert rejection_reason(raw_question) is None

    def test_missing_question(self, raw_question):
        raw_question["question_en"] = "   "
        assert rejection_reason(raw_question) == "missing_question"

    def test_three_options(self, raw_question):
        raw_question["options_sv"] = raw_question["options_sv"][:3]
        assert rejection_reason(raw_question) == "invalid_options"

    def test_empty_option(self, raw_question):
        raw_question["options_en"][2] = ""
        assert rejection_reason(raw_question) == "invalid_options"

    @pytest.mark.parametrize("bad", [None, 3, ["Stockholm"]])
    def test_non_string_option(self, raw_question, bad):
        raw_question["options_sv"][0] = bad
        assert rejection_reason(raw_question) == "invalid_options"

    def test_correct_option_out_of_range(self, raw_question):
        raw_question["correctOption"] = 4
        assert rejection_reason(raw_question) == "invalid_correct_option"

    def test_correct_option_as_string(self, raw_question):
        raw_question["correctOption"] = "1"
        assert rejection_reason(raw_question) == "invalid_correct_option"

    def test_missing_background(self, raw_question):
        del raw_question["background_sv"]
        assert rejection_reason(raw_question) == "missing_background"


class TestAcceptItems:

    def test_filters_and_stamps(self, raw_question, request_, caplog):
        broken = copy.deepcopy(raw_question)
        broken["options_en"] = ["only", "two"]
        payload = {"questions": [raw_question, broken, "not an object"]}

        with caplog.at_level(logging.WARNING):
            items = accept_items(payload, request_, provider_id="openai", model="gpt-4o-mini", now=NOW)

        assert len(items) == 1
        item = items[0]
        assert item.provider == "openai"
        assert item.model == "gpt-4o-mini"
        assert item.category == "Geografi"
        assert item.difficulty == "medium"
        assert len(item.options_sv) == 4 and len(item.options_en) == 4
        assert 0 <= item.correct_option <= 3
        assert item.background_sv and item.background_en
        rejected = [r for r in caplog.records if r.getMessage() == "generated_item_rejected"]
        assert [r.reason for r in rejected] == ["invalid_options", "not_an_object"]

    def test_every_accepted_item_satisfies_contract(self, raw_question, request_):
        variants = []
        for index in range(4):
            variant = copy.deepcopy(raw_question)
            variant["correctOption"] = index
            variants.append(variant)
        variants.append({"question_sv": "Bara svenska?"})

        items = accept_items({"questions": variants}, request_, provider_id="p", model="m", now=NOW)

        assert len(items) == 4
        for item in items:
            assert item.question_sv and item.question_en
            assert len(item.options_sv) == len(item.options_en) == 4
            assert item.correct_option in range(4)
            assert item.background_sv and item.background_en

    def test_missing_questions_list_raises(self, request_):
        with pytest.raises(ProviderParseError):
            accept_items({"items": []}, request_, provider_id="p", model="m")

    def test_empty_list_gives_no_items(self, request_):
        assert accept_items({"questions": []}, request_, provider_id="p", model="m") == []

    def test_age_groups_default_to_request(self, raw_question, request_):
        items = accept_items({"questions": [raw_question]}, request_, provider_id="p", model="m", now=NOW)
        assert items[0].age_groups == ["adults"]

    def test_audience_defaults_to_first_requested(self, raw_question):
        raw_question.pop("targetAudience", None)
        request = GenerationRequest(category="Mat", target_audiences=["german", "danish"])
        items = accept_items({"questions": [raw_question]}, request, provider_id="p", model="m", now=NOW)
        assert items[0].target_audience == "german"

    def test_freshness_resolved(self, raw_question, request_):
        raw_question["timeSensitive"] = True
        raw_question["bestBeforeDate"] = "2025-09-01"
        items = accept_items({"questions": [raw_question]}, request_, provider_id="p", model="m", now=NOW)
        assert items[0].time_sensitive is True
        assert items[0].best_before_date == "2025-09-01"

    def test_freshness_disabled(self, raw_question):
        raw_question["timeSensitive"] = True
        request = GenerationRequest(category="x", freshness=FreshnessPolicy(enabled=False))
        items = accept_items({"questions": [raw_question]}, request, provider_id="p", model="m", now=NOW)
        assert items[0].time_sensitive is False
        assert items[0].best_before_date is None


# ─── Validation ───────────────────────────────────────────────────────


class TestNormalizeValidation:

    def test_valid_answer(self, raw_question):
        result = normalize_validation(
            {"isValid": True, "confidence": 92, "feedback": " Bra fråga "},
            raw_question, provider_id="gemini", model="gemini-2.0-flash",
        )
        assert result.is_valid is True
        assert result.confidence == 92
        assert result.feedback == "Bra fråga"
        assert result.issues == []
        assert result.proposed_edits is None

    def test_multiple_correct_forces_invalid(self, raw_question):
        result = normalize_validation(
            {"isValid": True, "multipleCorrectOptions": True, "alternativeCorrectOptions": [2, 0, 9]},
            raw_question, provider_id="mistral", model="m",
        )
        assert result.is_valid is False
        assert result.rejected is True
        assert MULTIPLE_CORRECT_ISSUE in result.issues
        assert result.alternative_correct_options == [2]
        assert result.suggestions  # derived from issues

    def test_rejection_gets_suggestions_from_issues(self, raw_question):
        result = normalize_validation(
            {"isValid": False, "issues": ["Wrong year"]},
            raw_question, provider_id="p", model="m",
        )
        assert result.suggestions == ["Address: Wrong year"]

    def test_provided_suggestions_kept(self, raw_question):
        result = normalize_validation(
            {"isValid": "false", "issues": ["x"], "suggestions": ["Use 1523"]},
            raw_question, provider_id="p", model="m",
        )
        assert result.is_valid is False
        assert result.suggestions == ["Use 1523"]

    @pytest.mark.parametrize("raw, expected", [
        (150, 100), (-5, 0), ("87.6", 88), ("high", 0), (None, 0), (float("nan"), 0),
    ])
    def test_confidence_clamped(self, raw_question, raw, expected):
        result = normalize_validation(
            {"isValid": True, "confidence": raw}, raw_question, provider_id="p", model="m",
        )
        assert result.confidence == expected

    def test_proposed_edits_sanitized(self, raw_question):
        result = normalize_validation(
            {"isValid": False, "proposedEdits": {"question_sv": "Ny fråga?", "provider": "evil"}},
            raw_question, provider_id="p", model="m",
        )
        assert result.proposed_edits == {"question_sv": "Ny fråga?"}

    def test_time_sensitivity_reported(self, raw_question):
        result = normalize_validation(
            {"isValid": True, "bestBeforeDate": "2025-06-01"},
            raw_question, provider_id="p", model="m", policy=FreshnessPolicy(), now=NOW,
        )
        assert result.time_sensitive is True
        assert result.best_before_date == "2025-06-01"


class TestNormalizeAmbiguity:

    def test_ambiguous(self, raw_question):
        result = normalize_ambiguity(
            {"multipleCorrectOptions": True, "alternativeCorrectOptions": [1, 0], "reason": "Both"},
            raw_question, provider_id="p", model="m",
        )
        assert result.multiple_correct_options is True
        assert result.alternative_correct_options == [1]
        assert result.to_dict()["multipleCorrectOptions"] is True

    def test_clear(self, raw_question):
        result = normalize_ambiguity({}, raw_question, provider_id="p", model="m")
        assert result.multiple_correct_options is False
        assert result.alternative_correct_options == []


# ─── Edit Sanitisation ────────────────────────────────────────────────


class TestSanitizeEdits:

    def test_whitelist(self, raw_question):
        edits = sanitize_edits(
            {"question_en": "Better?", "provider": "x", "correctOption": 0}, raw_question
        )
        assert edits == {"question_en": "Better?", "correctOption": 0}

    def test_nothing_usable(self, raw_question):
        assert sanitize_edits({"provider": "x", "question_sv": "  "}, raw_question) is None

    def test_wrong_option_count_rejects_all(self, raw_question):
        assert sanitize_edits(
            {"question_sv": "Ny?", "options_sv": ["a", "b", "c"]}, raw_question
        ) is None

    def test_non_string_option_rejects_all(self, raw_question):
        assert sanitize_edits(
            {"options_en": [None, "Gothenburg", "Malmö", "Uppsala"]}, raw_question
        ) is None

    def test_invalid_explicit_index_rejects_all(self, raw_question):
        assert sanitize_edits({"correctOption": 7}, raw_question) is None

    def test_reorder_remaps_correct_option(self, raw_question):
        # Correct answer "Stockholm" moves from index 0 to index 2.
        edits = sanitize_edits(
            {
                "options_sv": ["Göteborg", "Malmö", "Stockholm", "Uppsala"],
                "options_en": ["Gothenburg", "Malmö", "STOCKHOLM", "Uppsala"],
            },
            raw_question,
        )
        assert edits["correctOption"] == 2

    def test_reorder_in_one_language_rejects_all(self, raw_question):
        # English is untouched, so index 2 would still mean "Malmö" there.
        assert sanitize_edits(
            {"options_sv": ["Göteborg", "Malmö", "Stockholm", "Uppsala"]}, raw_question
        ) is None

    def test_explicit_index_must_match_both_languages(self, raw_question):
        reordered_sv = ["Göteborg", "Malmö", "Stockholm", "Uppsala"]
        for index in (1, 2):
            assert sanitize_edits(
                {"options_sv": reordered_sv, "correctOption": index}, raw_question
            ) is None

    def test_explicit_index_after_matching_reorder_kept(self, raw_question):
        edits = sanitize_edits(
            {
                "options_sv": ["Göteborg", "Malmö", "Stockholm", "Uppsala"],
                "options_en": ["Gothenburg", "Malmö", "Stockholm", "Uppsala"],
                "correctOption": 2,
            },
            raw_question,
        )
        assert edits["correctOption"] == 2

    def test_merged_item_has_same_answer_in_both_languages(self, raw_question):
        edits = sanitize_edits(
            {
                "options_sv": ["Uppsala", "Göteborg", "Stockholm", "Malmö"],
                "options_en": ["Uppsala", "Gothenburg", "Stockholm", "Malmö"],
            },
            raw_question,
        )
        merged = {**raw_question, **edits}
        index = merged["correctOption"]
        assert merged["options_sv"][index] == merged["options_en"][index] == "Stockholm"

    def test_correct_answer_removed_rejects_all(self, raw_question):
        assert sanitize_edits(
            {"options_sv": ["Göteborg", "Malmö", "Lund", "Uppsala"]}, raw_question
        ) is None

    def test_inconsistent_languages_rejects_all(self, raw_question):
        assert sanitize_edits(
            {
                "options_sv": ["Göteborg", "Stockholm", "Malmö", "Uppsala"],
                "options_en": ["Gothenburg", "Malmö", "Stockholm", "Uppsala"],
            },
            raw_question,
        ) is None

    def test_same_position_needs_no_index(self, raw_question):
        edits = sanitize_edits(
            {"options_en": ["Stockholm", "Gothenburg", "Malmo", "Uppsala"]}, raw_question
        )
        assert edits == {"options_en": ["Stockholm", "Gothenburg", "Malmo", "Uppsala"]}

    def test_unchanged_options_need_no_remap(self, raw_question):
        edits = sanitize_edits(
            {"options_sv": list(raw_question["options_sv"]), "emoji": "🏙️"}, raw_question
        )
        assert "correctOption" not in edits
        assert edits["emoji"] == "🏙️"


class TestNormalizeEditProposal:

    def test_nested_edits(self, raw_question):
        proposal = normalize_edit_proposal(
            {"proposedEdits": {"explanation_sv": "Bättre"}, "reason": "Clarity"},
            raw_question, provider_id="anthropic", model="claude",
        )
        assert proposal.proposed_edits == {"explanation_sv": "Bättre"}
        assert proposal.reason == "Clarity"

    def test_flat_edits(self, raw_question):
        proposal = normalize_edit_proposal(
            {"question_en": "Flat?"}, raw_question, provider_id="p", model="m",
        )
        assert proposal.proposed_edits == {"question_en": "Flat?"}

    def test_no_edits(self, raw_question):
        proposal = normalize_edit_proposal(
            {"suggestions": ["Nothing to do"]}, raw_question, provider_id="p", model="m",
        )
        assert proposal.proposed_edits is None
        assert proposal.to_dict()["suggestions"] == ["Nothing to do"]
