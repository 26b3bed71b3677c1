"""
Age groups and target audiences used when prompting for questions.

Age groups decide tone and whether the children guardrail applies;
target audiences steer cultural context. Unknown ids pass through as
free text so operators can add groups without a code change.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Optional


@dataclass(frozen=True)
class AgeGroup:
    id: str
    label: str
    description: str
    prompt: str
    min_age: Optional[int] = None
    max_age: Optional[int] = None


@dataclass(frozen=True)
class TargetAudience:
    id: str
    label: str
    prompt: str


AGE_GROUPS: dict[str, AgeGroup] = {
    g.id: g
    for g in (
        AgeGroup(
            id="children",
            label="Children",
            description="6-12 years",
            prompt=(
                "Short questions with clear clues and everyday examples. "
                "Current children's programmes and well-known characters "
                "for children are welcome. Keep questions concrete and simple."
            ),
            min_age=6,
            max_age=12,
        ),
        AgeGroup(
            id="youth",
            label="Youth",
            description="13-17 years",
            prompt="Somewhat more challenging questions, but avoid overly niche facts.",
            min_age=13,
            max_age=17,
        ),
        AgeGroup(
            id="adults",
            label="Adults",
            description="18+ years",
            prompt="Deeper reasoning and more variation in difficulty.",
            min_age=18,
        ),
    )
}

TARGET_AUDIENCES: dict[str, TargetAudience] = {
    a.id: a
    for a in (
        TargetAudience("swedish", "Swedish", "Focus on Swedish culture, history and geography where relevant."),
        TargetAudience("english", "English", "Keep questions neutral and internationally understandable."),
        TargetAudience("international", "International", "Focus on global knowledge and international perspectives."),
        TargetAudience("global", "Global", "Focus on global knowledge and international perspectives."),
        TargetAudience("german", "German", "Adapt examples to a German context when relevant."),
        TargetAudience("norwegian", "Norwegian", "Adapt examples to a Norwegian context when relevant."),
        TargetAudience("danish", "Danish", "Adapt examples to a Danish context when relevant."),
    )
}

CHILDREN_ALIASES = frozenset({"children", "child", "kid", "kids", "barn"})
CHILDREN_MAX_AGE = 12

CHILDREN_GUARDRAIL = (
    "The audience is children. Do NOT write questions about art history, "
    "named artists or paintings, politics, war, economics or advanced "
    "science. Keep every question concrete, simple and age-appropriate."
)

_AGE_RANGE = re.compile(r"(\d+)\s*-\s*(\d+)")


def age_upper_bound(age_group: str) -> Optional[int]:
    """Upper age for a known group id or a free-text range like "6-12"."""
    known = AGE_GROUPS.get(age_group.strip().lower())
    if known is not None:
        return known.max_age
    match = _AGE_RANGE.search(age_group)
    return int(match.group(2)) if match else None


def is_children_group(age_group: str) -> bool:
    """True for children aliases or any group topping out at age 12 or below."""
    normalized = (age_group or "").strip().lower()
    if normalized in CHILDREN_ALIASES:
        return True
    upper = age_upper_bound(normalized) if normalized else None
    return upper is not None and upper <= CHILDREN_MAX_AGE


def describe_age_group(age_group: str) -> str:
    group = AGE_GROUPS.get(age_group.strip().lower())
    if group is None:
        return age_group
    return f"{group.label} ({group.description})"


def age_group_prompt(age_group: str) -> str:
    group = AGE_GROUPS.get(age_group.strip().lower())
    return group.prompt if group else ""


def unique_audiences(audiences: Iterable[str]) -> list[str]:
    """Trim, lowercase and de-duplicate, keeping first-seen order."""
    seen: list[str] = []
    for audience in audiences:
        value = str(audience).strip().lower()
        if value and value not in seen:
            seen.append(value)
    return seen


def audience_instruction(audiences: Iterable[str]) -> str:
    """
    Prompt line steering cultural context.

    One audience gives a direct hint; several become an instruction to
    vary between them across the batch.
    """
    ids = unique_audiences(audiences)
    if not ids:
        return ""
    if len(ids) == 1:
        audience = TARGET_AUDIENCES.get(ids[0])
        hint = audience.prompt if audience else f"Adapt the questions to a {ids[0]} audience."
        return f'Target audience: "{ids[0]}". {hint}'
    listed = ", ".join(f'"{a}"' for a in ids)
    return (
        f"Vary the target audience between {listed} across the questions, "
        "and set targetAudience on each question to the audience it was written for."
    )
