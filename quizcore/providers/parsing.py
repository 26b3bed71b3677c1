"""
JSON extraction and normalisation of provider output.

Backends answer in slightly different dialects (code fences, prose around
the JSON, strings where numbers are expected). Everything here turns that
into the normalized result types and enforces the acceptance filter for
generated questions.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional

from quizcore.exceptions import ProviderParseError
from quizcore.providers.freshness import FreshnessPolicy, resolve_freshness
from quizcore.providers.models import (
    OPTION_COUNT,
    AmbiguityResult,
    EditProposal,
    GeneratedItem,
    GenerationRequest,
    ValidationResult,
)

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)

EDITABLE_FIELDS: tuple[str, ...] = (
    "question_sv",
    "question_en",
    "options_sv",
    "options_en",
    "correctOption",
    "explanation_sv",
    "explanation_en",
    "background_sv",
    "background_en",
    "emoji",
)

MULTIPLE_CORRECT_ISSUE = "More than one option can be considered correct"


# ---------------------------------------------------------------------------
# JSON extraction
# ---------------------------------------------------------------------------

def extract_json(
    text: str,
    *,
    provider_id: str,
    purpose: Optional[str] = None,
) -> dict[str, Any]:
    """
    Pull the first JSON object out of a model answer.

    Raises:
        ProviderParseError: If no JSON object can be decoded.
    """
    cleaned = _FENCE.sub("", (text or "").strip()).strip()
    candidates = [cleaned]
    start, end = cleaned.find("{"), cleaned.rfind("}")
    if start != -1 and end > start:
        candidates.append(cleaned[start:end + 1])

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except (json.JSONDecodeError, ValueError):
            continue
        if isinstance(data, dict):
            return data
        if isinstance(data, list):
            return {"questions": data}

    raise ProviderParseError(
        f"{provider_id} returned a response that is not a JSON object",
        provider_id=provider_id,
        purpose=purpose,
        details={"preview": cleaned[:200]},
    )


# ---------------------------------------------------------------------------
# Coercion helpers
# ---------------------------------------------------------------------------

def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return bool(value)


def _string_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if isinstance(value, Iterable):
        return [str(v).strip() for v in value if v is not None and str(v).strip()]
    return []


def is_option_index(value: Any) -> bool:
    """True for an int in [0, 3]. Booleans are not indices."""
    return (
        isinstance(value, int)
        and not isinstance(value, bool)
        and 0 <= value < OPTION_COUNT
    )


def _options(value: Any) -> Optional[list[str]]:
    if not isinstance(value, list) or len(value) != OPTION_COUNT:
        return None
    options = [_text(v) for v in value]
    return options if all(options) else None


def _clamp_confidence(value: Any) -> int:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if number != number:  # NaN
        return 0
    return int(round(min(100.0, max(0.0, number))))


def _alternatives(value: Any, correct_option: Any) -> list[int]:
    result: list[int] = []
    for v in value if isinstance(value, list) else []:
        if is_option_index(v) and v != correct_option and v not in result:
            result.append(v)
    return result


def suggestions_from_issues(issues: Iterable[str]) -> list[str]:
    """Turn reported issues into actionable suggestions."""
    return [f"Address: {issue}" for issue in issues if issue]


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------

def rejection_reason(raw: Mapping[str, Any]) -> Optional[str]:
    """Why a generated question fails the acceptance filter, or None."""
    if not _text(raw.get("question_sv")) or not _text(raw.get("question_en")):
        return "missing_question"
    if _options(raw.get("options_sv")) is None or _options(raw.get("options_en")) is None:
        return "invalid_options"
    if not is_option_index(raw.get("correctOption")):
        return "invalid_correct_option"
    if not _text(raw.get("background_sv")) or not _text(raw.get("background_en")):
        return "missing_background"
    return None


def accept_items(
    payload: Mapping[str, Any],
    request: GenerationRequest,
    *,
    provider_id: str,
    model: str,
    now: Optional[datetime] = None,
) -> list[GeneratedItem]:
    """
    Apply the acceptance filter to a generation payload.

    Accepted items are stamped with provider and model and get their
    freshness fields resolved against the request's policy.
    """
    raw_items = payload.get("questions")
    if not isinstance(raw_items, list):
        raise ProviderParseError(
            f"{provider_id} response has no questions list",
            provider_id=provider_id,
            purpose="generation",
            details={"keys": sorted(payload)[:10]},
        )

    accepted: list[GeneratedItem] = []
    for index, raw in enumerate(raw_items):
        reason = rejection_reason(raw) if isinstance(raw, Mapping) else "not_an_object"
        if reason is not None:
            logger.warning(
                "generated_item_rejected",
                extra={"provider_id": provider_id, "index": index, "reason": reason},
            )
            continue

        age_groups = _string_list(raw.get("ageGroups")) or [request.age_group]
        freshness = resolve_freshness(
            raw.get("timeSensitive"),
            raw.get("bestBeforeDate"),
            age_groups=age_groups,
            policy=request.freshness,
            now=now,
        )
        audience = _text(raw.get("targetAudience"))
        if not audience and request.target_audiences:
            audience = str(request.target_audiences[0])

        accepted.append(GeneratedItem(
            question_sv=_text(raw["question_sv"]),
            question_en=_text(raw["question_en"]),
            options_sv=_options(raw["options_sv"]) or [],
            options_en=_options(raw["options_en"]) or [],
            correct_option=raw["correctOption"],
            background_sv=_text(raw["background_sv"]),
            background_en=_text(raw["background_en"]),
            explanation_sv=_text(raw.get("explanation_sv")),
            explanation_en=_text(raw.get("explanation_en")),
            emoji=_text(raw.get("emoji")),
            category=request.category,
            difficulty=request.difficulty,
            target_audience=audience,
            age_groups=age_groups,
            time_sensitive=freshness.time_sensitive,
            best_before_date=freshness.best_before_date,
            provider=provider_id,
            model=model,
        ))
    return accepted


# ---------------------------------------------------------------------------
# Validation & ambiguity
# ---------------------------------------------------------------------------

def normalize_validation(
    data: Mapping[str, Any],
    item: Mapping[str, Any],
    *,
    provider_id: str,
    model: str,
    policy: Optional[FreshnessPolicy] = None,
    now: Optional[datetime] = None,
) -> ValidationResult:
    """Build a ValidationResult from a validator's JSON answer."""
    correct_option = item.get("correctOption")
    issues = _string_list(data.get("issues"))
    suggestions = _string_list(data.get("suggestions"))
    alternatives = _alternatives(data.get("alternativeCorrectOptions"), correct_option)
    multiple = _flag(data.get("multipleCorrectOptions"))
    is_valid = _flag(data.get("isValid"))

    if multiple:
        is_valid = False
        if MULTIPLE_CORRECT_ISSUE not in issues:
            issues.append(MULTIPLE_CORRECT_ISSUE)

    if not is_valid and not suggestions:
        suggestions = suggestions_from_issues(issues)

    age_groups = _string_list(item.get("ageGroups"))
    freshness = resolve_freshness(
        data.get("timeSensitive", item.get("timeSensitive")),
        data.get("bestBeforeDate", item.get("bestBeforeDate")),
        age_groups=age_groups,
        policy=policy,
        now=now,
    )

    proposed = data.get("proposedEdits")
    return ValidationResult(
        provider=provider_id,
        model=model,
        is_valid=is_valid,
        confidence=_clamp_confidence(data.get("confidence")),
        issues=issues,
        suggestions=suggestions,
        feedback=_text(data.get("feedback")),
        multiple_correct_options=multiple,
        alternative_correct_options=alternatives,
        time_sensitive=freshness.time_sensitive,
        best_before_date=freshness.best_before_date,
        proposed_edits=sanitize_edits(proposed, item) if isinstance(proposed, Mapping) else None,
    )


def normalize_ambiguity(
    data: Mapping[str, Any],
    item: Mapping[str, Any],
    *,
    provider_id: str,
    model: str,
) -> AmbiguityResult:
    alternatives = _alternatives(data.get("alternativeCorrectOptions"), item.get("correctOption"))
    return AmbiguityResult(
        provider=provider_id,
        model=model,
        multiple_correct_options=_flag(data.get("multipleCorrectOptions")),
        alternative_correct_options=alternatives,
        reason=_text(data.get("reason")),
        suggestions=_string_list(data.get("suggestions")),
    )


# ---------------------------------------------------------------------------
# Edit proposals
# ---------------------------------------------------------------------------

def _origin(option: str, original: list[Any]) -> Optional[int]:
    """Original position of `option`, or None when it is new or repeated."""
    target = option.casefold()
    matches = [i for i, opt in enumerate(original) if str(opt).strip().casefold() == target]
    return matches[0] if len(matches) == 1 else None


def _option_lists(
    edits: Mapping[str, Any],
    item: Mapping[str, Any],
) -> Optional[dict[str, tuple[list[Any], list[Any]]]]:
    """(original, merged) option lists per language, or None if the item has none."""
    lists = {}
    for lang in ("sv", "en"):
        key = f"options_{lang}"
        original = item.get(key)
        if not isinstance(original, list) or len(original) != OPTION_COUNT:
            return None
        lists[lang] = (original, edits.get(key, original))
    return lists


def _remap_correct_option(
    edits: Mapping[str, Any],
    item: Mapping[str, Any],
) -> Optional[int]:
    """
    New index of the originally correct option after a reorder, or None.

    Every language must agree on the new position, including a language
    whose options were left untouched.
    """
    original_index = item.get("correctOption")
    lists = _option_lists(edits, item)
    if not is_option_index(original_index) or lists is None:
        return None
    found: set[int] = set()
    for original, merged in lists.values():
        target = str(original[original_index]).strip().casefold()
        matches = [i for i, opt in enumerate(merged) if str(opt).strip().casefold() == target]
        if len(matches) != 1:
            return None
        found.add(matches[0])
    return found.pop() if len(found) == 1 else None


def _index_consistent(
    index: int,
    edits: Mapping[str, Any],
    item: Mapping[str, Any],
) -> bool:
    """
    True when `index` names the same underlying option in both languages.

    A reworded option has no original position and is not checked.
    """
    lists = _option_lists(edits, item)
    if lists is None:
        return False
    origins = {
        _origin(str(merged[index]).strip(), original)
        for original, merged in lists.values()
    }
    origins.discard(None)
    return len(origins) <= 1


def sanitize_edits(
    proposed: Mapping[str, Any],
    item: Mapping[str, Any],
) -> Optional[dict[str, Any]]:
    """
    Keep only whitelisted, well-formed edits.

    Returns None when nothing usable remains or the correct option cannot
    be placed after an option change.
    """
    edits: dict[str, Any] = {}
    for field_name in EDITABLE_FIELDS:
        if field_name not in proposed:
            continue
        value = proposed[field_name]
        if field_name.startswith("options_"):
            options = _options(value)
            if options is None:
                return None
            edits[field_name] = options
        elif field_name == "correctOption":
            if not is_option_index(value):
                return None
            edits[field_name] = value
        elif _text(value):
            edits[field_name] = _text(value)

    options_changed = any(
        key in edits and edits[key] != item.get(key)
        for key in ("options_sv", "options_en")
    )
    if options_changed and "correctOption" in edits:
        if not _index_consistent(edits["correctOption"], edits, item):
            return None
    elif options_changed:
        remapped = _remap_correct_option(edits, item)
        if remapped is None:
            return None
        if remapped != item.get("correctOption"):
            edits["correctOption"] = remapped

    return edits or None


def normalize_edit_proposal(
    data: Mapping[str, Any],
    item: Mapping[str, Any],
    *,
    provider_id: str,
    model: str,
) -> EditProposal:
    proposed = data.get("proposedEdits")
    if proposed is None and any(k in data for k in EDITABLE_FIELDS):
        proposed = data
    return EditProposal(
        provider=provider_id,
        model=model,
        proposed_edits=sanitize_edits(proposed, item) if isinstance(proposed, Mapping) else None,
        suggestions=_string_list(data.get("suggestions")),
        reason=_text(data.get("reason")),
    )
