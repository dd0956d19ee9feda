"""File format conversion workflows."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from layer_bridge.errors import ValidationError
from layer_bridge.models import Complexity, FileReference, LayerType, TaskKind
from layer_bridge.workflow.builders.common import (
    MB,
    complexity_from_score,
    normalize_extension,
    scaled_estimate,
    tiered_points,
    total_size,
)
from layer_bridge.workflow.models import WorkflowDefinition, WorkflowPlan, WorkflowStep
from layer_bridge.workflow.templates import new_workflow_id

# category -> (source extensions, target extensions)
SUPPORTED_CONVERSIONS: dict[str, tuple[frozenset[str], frozenset[str]]] = {
    "document": (
        frozenset({".pdf", ".doc", ".docx", ".txt", ".md", ".rtf", ".odt"}),
        frozenset({".pdf", ".docx", ".txt", ".md", ".html"}),
    ),
    "image": (
        frozenset({".png", ".jpg", ".jpeg", ".gif", ".bmp", ".webp", ".tiff"}),
        frozenset({".png", ".jpg", ".jpeg", ".gif", ".bmp", ".webp", ".svg"}),
    ),
    "audio": (
        frozenset({".mp3", ".wav", ".m4a", ".flac", ".aac", ".ogg"}),
        frozenset({".mp3", ".wav", ".m4a", ".flac"}),
    ),
    "data": (
        frozenset({".csv", ".xlsx", ".json", ".xml", ".yaml"}),
        frozenset({".csv", ".xlsx", ".json", ".xml", ".yaml"}),
    ),
    "presentation": (
        frozenset({".ppt", ".pptx", ".odp"}),
        frozenset({".pptx", ".pdf", ".html"}),
    ),
}

DURATION_FACTORS: dict[Complexity, float] = {
    Complexity.LOW: 1.0,
    Complexity.MEDIUM: 2.0,
    Complexity.HIGH: 4.0,
}

_ANALYSIS_ACTIONS: dict[str, tuple[TaskKind, str]] = {
    "document": (
        TaskKind.DOCUMENT_ANALYSIS,
        "Analyze document structure and content for conversion.",
    ),
    "image": (TaskKind.IMAGE_ANALYSIS, "Analyze image properties for optimal conversion."),
    "audio": (TaskKind.AUDIO_ANALYSIS, "Analyze audio properties and quality."),
    "data": (TaskKind.DOCUMENT_ANALYSIS, "Analyze data structure and schema for conversion."),
    "presentation": (
        TaskKind.DOCUMENT_ANALYSIS,
        "Analyze slide structure and content for conversion.",
    ),
}


@dataclass(frozen=True, slots=True)
class ConversionOptions:
    quality: str | None = None
    preserve_formatting: bool = False
    extract_images: bool = False
    resize: tuple[int, int] | None = None


def detect_category(files: Sequence[FileReference]) -> str:
    """Conversion category of the first file whose extension is known."""

    for file in files:
        suffix = Path(file.path).suffix.lower()
        for category, (sources, _) in SUPPORTED_CONVERSIONS.items():
            if suffix in sources:
                return category
    raise ValidationError("No supported source format among the input files.")


def validate_conversion(category: str, files: Sequence[FileReference], target_format: str) -> None:
    if category not in SUPPORTED_CONVERSIONS:
        raise ValidationError(f"Unknown conversion category: {category}")
    if not files:
        raise ValidationError("Conversion requires at least one input file.")
    sources, targets = SUPPORTED_CONVERSIONS[category]
    if normalize_extension(target_format) not in targets:
        raise ValidationError(f"Unsupported target format for {category}: {target_format}")
    for file in files:
        if Path(file.path).suffix.lower() not in sources:
            raise ValidationError(f"Unsupported source format for {category}: {file.path}")


def assess_complexity(files: Sequence[FileReference], options: ConversionOptions) -> Complexity:
    score = tiered_points(len(files), (5, 10, 20))
    score += tiered_points(total_size(files), (10 * MB, 100 * MB, 500 * MB))
    score += sum(
        (
            options.quality == "high",
            options.preserve_formatting,
            options.extract_images,
            options.resize is not None,
        ),
    )
    return complexity_from_score(score)


def build_conversion(
    files: Sequence[FileReference],
    target_format: str,
    *,
    category: str | None = None,
    options: ConversionOptions | None = None,
    workflow_id: str | None = None,
) -> WorkflowPlan:
    """prepare -> convert -> verify, rejected up front for unsupported pairs."""

    options = options or ConversionOptions()
    category = category or detect_category(files)
    validate_conversion(category, files, target_format)
    target = normalize_extension(target_format).lstrip(".")
    analysis_action, analysis_prompt = _ANALYSIS_ACTIONS[category]

    if category == "data":
        verify = WorkflowStep(
            id="verify_conversion",
            layer=LayerType.CLAUDE,
            action=TaskKind.COMPLEX_REASONING,
            input={
                "prompt": "Validate data integrity and structure preservation after conversion.",
                "context": "Original: {{prepare_files}}\nConverted: {{convert_files}}",
            },
            depends_on=("prepare_files", "convert_files"),
        )
    else:
        verify = WorkflowStep(
            id="verify_conversion",
            layer=LayerType.CLAUDE,
            action=TaskKind.SYNTHESIZE,
            input={
                "prompt": "Verify conversion quality and write a short conversion report.",
                "inputs": {
                    "original_analysis": "{{prepare_files}}",
                    "conversion_result": "{{convert_files}}",
                },
            },
            depends_on=("prepare_files", "convert_files"),
        )

    definition = WorkflowDefinition(
        id=workflow_id or new_workflow_id(f"{category}_conversion"),
        name=f"{category}_conversion",
        steps=(
            WorkflowStep(
                id="prepare_files",
                layer=LayerType.AISTUDIO,
                action=analysis_action,
                input={"files": list(files), "prompt": analysis_prompt},
            ),
            WorkflowStep(
                id="convert_files",
                layer=LayerType.AISTUDIO,
                action=TaskKind.CONVERT_FILE,
                input={
                    "files": list(files),
                    "prompt": _conversion_instructions(target, options),
                    "target_format": target,
                },
                depends_on=("prepare_files",),
            ),
            verify,
        ),
        continue_on_error=category in {"image", "audio"},
        timeout=600.0,
    )
    complexity = assess_complexity(files, options)
    return WorkflowPlan(
        definition=definition,
        estimate=scaled_estimate(definition, complexity, duration_factors=DURATION_FACTORS),
    )


def _conversion_instructions(target: str, options: ConversionOptions) -> str:
    parts = [f"Convert the files to {target}."]
    if options.quality:
        parts.append(f"Target quality: {options.quality}.")
    if options.preserve_formatting:
        parts.append("Preserve the original formatting.")
    if options.extract_images:
        parts.append("Extract embedded images.")
    if options.resize is not None:
        width, height = options.resize
        parts.append(f"Resize to {width}x{height}.")
    return " ".join(parts)
