"""Helpers shared by the workflow definition builders."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from layer_bridge.models import Complexity, FileReference
from layer_bridge.workflow.models import ResourceEstimate, WorkflowDefinition
from layer_bridge.workflow.planning import estimate_resources

MB = 1024 * 1024
HIGH_COMPLEXITY_SCORE = 6
MEDIUM_COMPLEXITY_SCORE = 3

COST_FACTORS: dict[Complexity, float] = {
    Complexity.LOW: 1.0,
    Complexity.MEDIUM: 1.5,
    Complexity.HIGH: 2.5,
}

_CATEGORY_EXTENSIONS: dict[str, frozenset[str]] = {
    "documents": frozenset({".pdf", ".doc", ".docx", ".txt", ".md", ".rtf"}),
    "images": frozenset({".png", ".jpg", ".jpeg", ".gif", ".bmp", ".webp"}),
    "audio": frozenset({".mp3", ".wav", ".m4a", ".flac"}),
    "video": frozenset({".mp4", ".mov", ".avi", ".webm"}),
    "structured": frozenset({".csv", ".xlsx", ".json", ".xml"}),
}


@dataclass(slots=True)
class FileCategories:
    """Input files split by how they need to be processed."""

    documents: list[FileReference] = field(default_factory=list)
    images: list[FileReference] = field(default_factory=list)
    audio: list[FileReference] = field(default_factory=list)
    video: list[FileReference] = field(default_factory=list)
    structured: list[FileReference] = field(default_factory=list)
    text: list[FileReference] = field(default_factory=list)

    @property
    def multimodal(self) -> list[FileReference]:
        return [*self.images, *self.audio, *self.video]

    @property
    def non_empty_count(self) -> int:
        groups = (self.documents, self.images, self.audio, self.video, self.structured, self.text)
        return sum(1 for group in groups if group)


def categorize_files(files: Iterable[FileReference]) -> FileCategories:
    categories = FileCategories()
    for file in files:
        suffix = Path(file.path).suffix.lower()
        for name, extensions in _CATEGORY_EXTENSIONS.items():
            if suffix in extensions:
                getattr(categories, name).append(file)
                break
        else:
            categories.text.append(file)
    return categories


def total_size(files: Iterable[FileReference]) -> int:
    return sum(file.size or 0 for file in files)


def tiered_points(value: float, thresholds: Sequence[float]) -> int:
    """One point per threshold that `value` strictly exceeds."""

    return sum(1 for threshold in thresholds if value > threshold)


def complexity_from_score(score: int) -> Complexity:
    if score >= HIGH_COMPLEXITY_SCORE:
        return Complexity.HIGH
    if score >= MEDIUM_COMPLEXITY_SCORE:
        return Complexity.MEDIUM
    return Complexity.LOW


def scaled_estimate(
    definition: WorkflowDefinition,
    complexity: Complexity,
    *,
    duration_factors: Mapping[Complexity, float],
) -> ResourceEstimate:
    """Per-step baseline estimate scaled by the builder's complexity factors."""

    estimate = estimate_resources(definition, complexity=complexity)
    estimate.estimated_duration *= duration_factors[complexity]
    estimate.estimated_cost *= COST_FACTORS[complexity]
    return estimate


def normalize_extension(value: str) -> str:
    value = value.strip().lower()
    return value if value.startswith(".") else f".{value}"
