"""
Normalized request and result shapes shared by every adapter.

Whatever schema a vendor answers with, adapters hand back these types.
`to_dict()` renders the camelCase JSON surface consumed by the content
pipeline and the admin UI.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence, Union

from quizcore.providers.freshness import FreshnessPolicy

LANGUAGES: tuple[str, str] = ("sv", "en")
OPTION_COUNT = 4


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

@dataclass
class GenerationRequest:
    """Parameters for one generation call."""

    category: str
    age_group: str = "adults"
    difficulty: str = "medium"
    target_audiences: Sequence[str] = ("swedish",)
    language: str = "sv"
    quantity: int = 3
    avoid_topics: Sequence[str] = ()
    freshness: Optional[FreshnessPolicy] = field(default_factory=FreshnessPolicy)

    def __post_init__(self) -> None:
        if isinstance(self.target_audiences, str):
            self.target_audiences = (self.target_audiences,)
        if self.quantity < 1:
            raise ValueError("quantity must be at least 1")


@dataclass
class ValidationRequest:
    """An item plus the criteria a validator should check it against."""

    item: Union["GeneratedItem", Mapping[str, Any]]
    criteria: Sequence[str] = ()


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass
class GeneratedItem:
    """One accepted bilingual question."""

    question_sv: str
    question_en: str
    options_sv: list[str]
    options_en: list[str]
    correct_option: int
    background_sv: str
    background_en: str
    explanation_sv: str = ""
    explanation_en: str = ""
    emoji: str = ""
    category: str = ""
    difficulty: str = ""
    target_audience: str = ""
    age_groups: list[str] = field(default_factory=list)
    time_sensitive: bool = False
    best_before_date: Optional[str] = None
    provider: str = ""
    model: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "question_sv": self.question_sv,
            "question_en": self.question_en,
            "options_sv": list(self.options_sv),
            "options_en": list(self.options_en),
            "correctOption": self.correct_option,
            "explanation_sv": self.explanation_sv,
            "explanation_en": self.explanation_en,
            "background_sv": self.background_sv,
            "background_en": self.background_en,
            "emoji": self.emoji,
            "category": self.category,
            "difficulty": self.difficulty,
            "targetAudience": self.target_audience,
            "ageGroups": list(self.age_groups),
            "timeSensitive": self.time_sensitive,
            "bestBeforeDate": self.best_before_date,
            "provider": self.provider,
            "model": self.model,
        }


def item_to_dict(item: Union[GeneratedItem, Mapping[str, Any]]) -> dict[str, Any]:
    """Accept either a GeneratedItem or an already-serialized question."""
    if isinstance(item, GeneratedItem):
        return item.to_dict()
    return dict(item)


@dataclass
class ValidationResult:
    provider: str
    model: str
    is_valid: bool
    confidence: int = 0
    issues: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    feedback: str = ""
    multiple_correct_options: bool = False
    alternative_correct_options: list[int] = field(default_factory=list)
    time_sensitive: bool = False
    best_before_date: Optional[str] = None
    proposed_edits: Optional[dict[str, Any]] = None

    @property
    def rejected(self) -> bool:
        return not self.is_valid

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "model": self.model,
            "isValid": self.is_valid,
            "confidence": self.confidence,
            "issues": list(self.issues),
            "suggestions": list(self.suggestions),
            "feedback": self.feedback,
            "multipleCorrectOptions": self.multiple_correct_options,
            "alternativeCorrectOptions": list(self.alternative_correct_options),
            "timeSensitive": self.time_sensitive,
            "bestBeforeDate": self.best_before_date,
            "proposedEdits": self.proposed_edits,
        }


@dataclass
class AmbiguityResult:
    provider: str
    model: str
    multiple_correct_options: bool
    alternative_correct_options: list[int] = field(default_factory=list)
    reason: str = ""
    suggestions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "model": self.model,
            "multipleCorrectOptions": self.multiple_correct_options,
            "alternativeCorrectOptions": list(self.alternative_correct_options),
            "reason": self.reason,
            "suggestions": list(self.suggestions),
        }


@dataclass
class EditProposal:
    provider: str
    model: str
    proposed_edits: Optional[dict[str, Any]]
    suggestions: list[str] = field(default_factory=list)
    reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "model": self.model,
            "proposedEdits": self.proposed_edits,
            "suggestions": list(self.suggestions),
            "reason": self.reason,
        }


@dataclass
class LivenessResult:
    """Outcome of a minimal-cost probe call. Never raised, always returned."""

    provider: str
    model: str
    available: bool
    status: str = "active"          # active | no_credits | rate_limited | auth_error | error
    error: Optional[str] = None     # insufficient_credits | rate_limit | auth_error | connection_error | api_error
    message: str = ""
    latency_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.provider,
            "model": self.model,
            "available": self.available,
            "status": self.status,
            "message": self.message,
            "latencyMs": round(self.latency_ms, 1),
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class ProviderInfo:
    id: str
    label: str
    model: str
    capabilities: list[str]
    supported_languages: list[str]
    max_batch_size: int
    structured_output: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "model": self.model,
            "capabilities": list(self.capabilities),
            "supportedLanguages": list(self.supported_languages),
            "maxBatchSize": self.max_batch_size,
            "structuredOutput": self.structured_output,
        }


@dataclass
class IllustrationResult:
    provider: str
    model: str
    emoji: str

    def to_dict(self) -> dict[str, Any]:
        return {"provider": self.provider, "model": self.model, "emoji": self.emoji}
