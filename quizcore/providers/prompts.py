"""
Prompt builders shared by every provider family.

Families differ only in how a (system, user) pair travels over the wire;
the text itself is identical so validators judge against the same
contract the generator was given.
"""

from __future__ import annotations

import json
from typing import Any, Iterable, Optional

from quizcore.providers.audiences import (
    CHILDREN_GUARDRAIL,
    age_group_prompt,
    audience_instruction,
    describe_age_group,
    is_children_group,
)
from quizcore.providers.models import GenerationRequest

GENERATION_SYSTEM_PROMPT = (
    "You are an expert at writing educational quiz questions. You write every "
    "question in both Swedish and English with high quality and real "
    "educational value."
)

VALIDATION_SYSTEM_PROMPT = (
    "You are an expert at validating quiz questions for quality, factual "
    "correctness and educational value."
)

AMBIGUITY_SYSTEM_PROMPT = (
    "You check quiz questions for ambiguity. You answer only whether more than "
    "one option could reasonably be considered correct."
)

EDIT_SYSTEM_PROMPT = (
    "You repair quiz questions. You propose the smallest edits that resolve the "
    "reported issues and keep both languages in sync."
)

JSON_ONLY_INSTRUCTION = (
    "Respond with a single valid JSON object only. No markdown, no code "
    "fences, no commentary before or after the JSON."
)

LIVENESS_PROMPT = 'Reply with the JSON object {"ok": true}.'

DIFFICULTY_LABELS = {"easy": "easy", "medium": "medium", "hard": "hard"}

DEFAULT_VALIDATION_CRITERIA: tuple[str, ...] = (
    "The marked answer is factually correct",
    "Exactly one option is correct",
    "Swedish and English versions say the same thing",
    "Difficulty suits the age group",
)

OUTPUT_CONTRACT = """Every question MUST have BOTH a Swedish AND an English version:
- question_sv / question_en: the question
- options_sv / options_en: exactly 4 answer options each, in the same order
- correctOption: index (0-3) of the single correct option
- explanation_sv / explanation_en: short educational explanation
- background_sv / background_en: 1-3 sentences of background facts
- emoji: one fitting emoji as visual illustration
- targetAudience: the audience the question was written for
- timeSensitive: true if the question will go stale
- bestBeforeDate: YYYY-MM-DD when timeSensitive is true, otherwise null

Return JSON in exactly this format:
{
  "questions": [
    {
      "question_sv": "Frågan på svenska?",
      "question_en": "The question in English?",
      "options_sv": ["Alt 1", "Alt 2", "Alt 3", "Alt 4"],
      "options_en": ["Option 1", "Option 2", "Option 3", "Option 4"],
      "correctOption": 0,
      "explanation_sv": "Förklaring på svenska",
      "explanation_en": "Explanation in English",
      "background_sv": "Bakgrund på svenska",
      "background_en": "Background in English",
      "emoji": "🎯",
      "targetAudience": "swedish",
      "timeSensitive": false,
      "bestBeforeDate": null
    }
  ]
}"""


def _bullets(lines: Iterable[str]) -> str:
    return "\n".join(f"- {line}" for line in lines)


def build_generation_prompt(request: GenerationRequest, quantity: int) -> str:
    """User prompt for one generation batch of `quantity` questions."""
    difficulty = DIFFICULTY_LABELS.get(request.difficulty, request.difficulty)
    sections = [
        f"Write {quantity} quiz questions about {request.category} for the age "
        f"group {describe_age_group(request.age_group)} with difficulty {difficulty}.",
    ]

    tone = age_group_prompt(request.age_group)
    if tone:
        sections.append(tone)
    if is_children_group(request.age_group):
        sections.append(CHILDREN_GUARDRAIL)

    audience = audience_instruction(request.target_audiences)
    if audience:
        sections.append(audience)

    if request.freshness is not None and request.freshness.enabled:
        sections.append(request.freshness.guidance)

    avoid = [t.strip() for t in request.avoid_topics if t and t.strip()]
    if avoid:
        sections.append(
            "Do not repeat or closely paraphrase these existing questions or topics:\n"
            + _bullets(avoid)
        )

    sections.append(OUTPUT_CONTRACT)
    return "\n\n".join(sections)


def build_validation_prompt(item: dict[str, Any], criteria: Iterable[str]) -> str:
    criteria = list(criteria) or list(DEFAULT_VALIDATION_CRITERIA)
    return f"""Validate the following quiz question against these criteria:

QUESTION:
{json.dumps(item, ensure_ascii=False, indent=2)}

CRITERIA:
{_bullets(criteria)}

Check:
1. Is the question factually correct?
2. Are the options plausible and not misleading?
3. Is the marked answer really correct, and is it the ONLY correct option?
4. Is the explanation educational and correct?
5. Do both the Swedish and English versions exist?
6. Are the translations equivalent?
7. Does the difficulty suit the target group?

Return JSON:
{{
  "isValid": true/false,
  "confidence": 0-100,
  "issues": ["problems found, if any"],
  "suggestions": ["improvements, if any"],
  "feedback": "short overall assessment",
  "multipleCorrectOptions": true/false,
  "alternativeCorrectOptions": [indices of other options that are also correct],
  "timeSensitive": true/false,
  "bestBeforeDate": "YYYY-MM-DD" or null
}}"""


def build_ambiguity_prompt(item: dict[str, Any]) -> str:
    return f"""Can more than one of the options below reasonably be considered correct?

QUESTION:
{json.dumps(item, ensure_ascii=False, indent=2)}

The marked answer is option index {item.get("correctOption")}.

Return JSON:
{{
  "multipleCorrectOptions": true/false,
  "alternativeCorrectOptions": [indices 0-3 of other correct options],
  "reason": "why, in one or two sentences",
  "suggestions": ["how to make exactly one option correct"]
}}"""


def build_edit_prompt(
    item: dict[str, Any],
    issues: Iterable[str],
    analysis: Optional[str] = None,
) -> str:
    sections = [
        "Propose edits to this quiz question so that the issues below are resolved.",
        "QUESTION:\n" + json.dumps(item, ensure_ascii=False, indent=2),
        "ISSUES:\n" + (_bullets(issues) or "- (none reported)"),
    ]
    if analysis:
        sections.append("ANALYSIS:\n" + analysis.strip())
    sections.append(
        """Only change what is needed. Keep exactly 4 options per language and the
same option order in both languages. If you reorder options, set correctOption
to the new index of the correct answer.

Return JSON:
{
  "proposedEdits": {
    "question_sv": "...", "question_en": "...",
    "options_sv": [...], "options_en": [...],
    "correctOption": 0,
    "explanation_sv": "...", "explanation_en": "...",
    "background_sv": "...", "background_en": "..."
  },
  "suggestions": ["what was changed"],
  "reason": "why"
}
Leave out any field you do not change."""
    )
    return "\n\n".join(sections)


def with_json_instruction(system_prompt: str) -> str:
    """System prompt for backends without a structured-output parameter."""
    return f"{system_prompt}\n\n{JSON_ONLY_INSTRUCTION}"


ILLUSTRATION_SYSTEM_PROMPT = (
    "You pick a single emoji that best illustrates a quiz question."
)


def build_illustration_prompt(item: dict[str, Any]) -> str:
    question = item.get("question_sv") or item.get("question_en") or ""
    return f"""Choose ONE emoji that visually illustrates this quiz question.

QUESTION: {question}
CATEGORY: {item.get("category") or "-"}

Return JSON: {{"emoji": "🎯"}}"""
