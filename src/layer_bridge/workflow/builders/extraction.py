"""Content extraction workflows: pull text, data, entities or metadata out of files."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from layer_bridge.errors import ValidationError
from layer_bridge.models import Complexity, FileReference, LayerType, TaskKind
from layer_bridge.workflow.builders.common import (
    MB,
    complexity_from_score,
    scaled_estimate,
    tiered_points,
    total_size,
)
from layer_bridge.workflow.models import WorkflowDefinition, WorkflowPlan, WorkflowStep
from layer_bridge.workflow.templates import new_workflow_id

logger = logging.getLogger(__name__)

DURATION_FACTORS: dict[Complexity, float] = {
    Complexity.LOW: 1.0,
    Complexity.MEDIUM: 1.8,
    Complexity.HIGH: 3.0,
}


class ExtractionType(str, Enum):
    TEXT = "text"
    METADATA = "metadata"
    STRUCTURE = "structure"
    DATA = "data"
    IMAGES = "images"
    ENTITIES = "entities"
    AUDIO = "audio"
    FORMS = "forms"


class ExtractionMode(str, Enum):
    """Focused single-purpose extraction pipelines."""

    TEXT = "text"
    STRUCTURED_DATA = "structured_data"
    ENTITIES = "entities"
    MULTIMODAL = "multimodal"
    FORM_DATA = "form_data"
    METADATA = "metadata"


EXTRACTION_DESCRIPTIONS: dict[ExtractionType, str] = {
    ExtractionType.TEXT: "all textual content",
    ExtractionType.METADATA: "file metadata and properties",
    ExtractionType.STRUCTURE: "document structure and hierarchy",
    ExtractionType.DATA: "structured data such as tables and lists",
    ExtractionType.IMAGES: "embedded images",
    ExtractionType.ENTITIES: "named entities and key information",
    ExtractionType.AUDIO: "audio content and transcriptions",
    ExtractionType.FORMS: "form fields and their values",
}
SUPPORTED_FORMATS: dict[ExtractionType, frozenset[str]] = {
    ExtractionType.TEXT: frozenset({".pdf", ".doc", ".docx", ".txt", ".md", ".rtf", ".html"}),
    ExtractionType.METADATA: frozenset(
        {".pdf", ".doc", ".docx", ".jpg", ".jpeg", ".png", ".mp3", ".mp4"},
    ),
    ExtractionType.STRUCTURE: frozenset({".pdf", ".doc", ".docx", ".html", ".xml"}),
    ExtractionType.DATA: frozenset({".pdf", ".doc", ".docx", ".xlsx", ".csv", ".html"}),
    ExtractionType.IMAGES: frozenset({".pdf", ".doc", ".docx", ".html"}),
    ExtractionType.ENTITIES: frozenset({".pdf", ".doc", ".docx", ".txt", ".md"}),
    ExtractionType.AUDIO: frozenset({".mp3", ".wav", ".m4a", ".mp4", ".mov"}),
    ExtractionType.FORMS: frozenset({".pdf", ".jpg", ".jpeg", ".png"}),
}
_TYPE_ACTIONS: dict[ExtractionType, TaskKind] = {
    ExtractionType.IMAGES: TaskKind.MULTIMODAL,
    ExtractionType.AUDIO: TaskKind.AUDIO_ANALYSIS,
}
_COMPLEX_TYPES = frozenset(
    {ExtractionType.ENTITIES, ExtractionType.FORMS, ExtractionType.DATA, ExtractionType.AUDIO},
)

# Allowed targets per mode; None means free-form targets such as form field names.
MODE_TARGETS: dict[ExtractionMode, tuple[str, ...] | None] = {
    ExtractionMode.TEXT: (),
    ExtractionMode.STRUCTURED_DATA: ("tables", "lists", "forms", "charts", "key_value_pairs"),
    ExtractionMode.ENTITIES: (
        "persons",
        "organizations",
        "locations",
        "dates",
        "numbers",
        "emails",
        "urls",
    ),
    ExtractionMode.MULTIMODAL: ("text", "images", "audio", "video", "metadata"),
    ExtractionMode.FORM_DATA: None,
    ExtractionMode.METADATA: ("technical", "descriptive", "administrative", "structural"),
}


@dataclass(frozen=True, slots=True)
class ExtractionOptions:
    output_format: str = "json"
    preserve_formatting: bool = True
    include_confidence: bool = False
    structured_output: bool = False
    validate_data: bool = False


@dataclass(frozen=True, slots=True)
class _Stage:
    id: str
    layer: LayerType
    action: TaskKind
    prompt: str


_MODE_STAGES: dict[ExtractionMode, tuple[_Stage, ...]] = {
    ExtractionMode.TEXT: (
        _Stage(
            "extract_text_content",
            LayerType.AISTUDIO,
            TaskKind.DOCUMENT_ANALYSIS,
            "Extract all textual content, including footnotes.",
        ),
        _Stage(
            "clean_and_structure_text",
            LayerType.CLAUDE,
            TaskKind.SYNTHESIZE,
            "Clean and structure the extracted text for readability.",
        ),
    ),
    ExtractionMode.STRUCTURED_DATA: (
        _Stage(
            "identify_structured_content",
            LayerType.AISTUDIO,
            TaskKind.DOCUMENT_ANALYSIS,
            "Identify and extract structured content: {targets}.",
        ),
        _Stage(
            "structure_extracted_data",
            LayerType.CLAUDE,
            TaskKind.COMPLEX_REASONING,
            "Structure the extracted data into a normalized, usable format.",
        ),
        _Stage(
            "format_output",
            LayerType.CLAUDE,
            TaskKind.SYNTHESIZE,
            "Format the structured data as {format}.",
        ),
    ),
    ExtractionMode.ENTITIES: (
        _Stage(
            "extract_text_for_entities",
            LayerType.AISTUDIO,
            TaskKind.DOCUMENT_ANALYSIS,
            "Extract the text content for entity recognition.",
        ),
        _Stage(
            "identify_entities",
            LayerType.CLAUDE,
            TaskKind.COMPLEX_REASONING,
            "Identify and extract entities of types: {targets}.",
        ),
        _Stage(
            "organize_entities",
            LayerType.CLAUDE,
            TaskKind.SYNTHESIZE,
            "Organize the entities with their surrounding context.",
        ),
    ),
    ExtractionMode.MULTIMODAL: (
        _Stage(
            "process_multimodal_content",
            LayerType.AISTUDIO,
            TaskKind.MULTIMODAL,
            "Extract multimodal content: {targets}. Transcribe audio and describe images.",
        ),
        _Stage(
            "organize_multimodal_results",
            LayerType.CLAUDE,
            TaskKind.SYNTHESIZE,
            "Organize the extraction results by content type.",
        ),
    ),
    ExtractionMode.FORM_DATA: (
        _Stage(
            "identify_form_structure",
            LayerType.AISTUDIO,
            TaskKind.DOCUMENT_ANALYSIS,
            "Identify the form structure and its fields.{fields}",
        ),
        _Stage(
            "extract_form_data",
            LayerType.CLAUDE,
            TaskKind.COMPLEX_REASONING,
            "Extract the form data and values with a field mapping.",
        ),
        _Stage(
            "validate_and_format",
            LayerType.CLAUDE,
            TaskKind.SYNTHESIZE,
            "Validate the form data and format it as {format}.",
        ),
    ),
    ExtractionMode.METADATA: (
        _Stage(
            "extract_file_metadata",
            LayerType.AISTUDIO,
            TaskKind.DOCUMENT_ANALYSIS,
            "Extract metadata of types: {targets}. Include EXIF data where present.",
        ),
        _Stage(
            "organize_metadata",
            LayerType.CLAUDE,
            TaskKind.SYNTHESIZE,
            "Organize the metadata into structured categories.",
        ),
    ),
}


def unsupported_files(
    files: Sequence[FileReference],
    extraction_type: ExtractionType,
) -> list[FileReference]:
    supported = SUPPORTED_FORMATS[extraction_type]
    return [file for file in files if Path(file.path).suffix.lower() not in supported]


def assess_complexity(
    files: Sequence[FileReference],
    extraction_types: Sequence[ExtractionType],
    options: ExtractionOptions,
) -> Complexity:
    score = tiered_points(len(files), (3, 8, 15))
    score += tiered_points(total_size(files), (10 * MB, 50 * MB, 200 * MB))
    if any(extraction_type in _COMPLEX_TYPES for extraction_type in extraction_types):
        score += 2
    score += int(options.structured_output)
    score += int(options.include_confidence)
    score += int(options.validate_data)
    return complexity_from_score(score)


def build_extraction(
    files: Sequence[FileReference],
    extraction_types: Sequence[ExtractionType],
    *,
    options: ExtractionOptions | None = None,
    workflow_id: str | None = None,
) -> WorkflowPlan:
    """Survey the files, extract every requested type in parallel, then organize.

    File formats outside a type's supported set are logged, not rejected:
    the backend may still manage a best-effort extraction.
    """

    options = options or ExtractionOptions()
    _require_files(files)
    if not extraction_types:
        raise ValidationError("Extraction requires at least one extraction type.")
    types = list(dict.fromkeys(extraction_types))
    for extraction_type in types:
        for file in unsupported_files(files, extraction_type):
            logger.warning(
                "Extraction type %s may not support file %s",
                extraction_type.value,
                file.path,
            )

    steps = [
        WorkflowStep(
            id="analyze_files",
            layer=LayerType.AISTUDIO,
            action=TaskKind.DOCUMENT_ANALYSIS,
            input={
                "files": list(files),
                "prompt": "Analyze the files to determine the best extraction strategy.",
            },
        ),
    ]
    notes = _option_notes(options)
    for extraction_type in types:
        steps.append(
            WorkflowStep(
                id=f"extract_{extraction_type.value}",
                layer=LayerType.AISTUDIO,
                action=_TYPE_ACTIONS.get(extraction_type, TaskKind.DOCUMENT_ANALYSIS),
                input={
                    "files": list(files),
                    "prompt": f"Extract {EXTRACTION_DESCRIPTIONS[extraction_type]}.{notes}",
                    "context": "{{analyze_files}}",
                },
                depends_on=("analyze_files",),
            ),
        )
    steps.append(
        WorkflowStep(
            id="organize_extractions",
            layer=LayerType.CLAUDE,
            action=TaskKind.SYNTHESIZE,
            input={
                "prompt": "Organize all extraction results into one structured "
                f"{options.output_format} document.",
                "inputs": {
                    extraction_type.value: f"{{{{extract_{extraction_type.value}}}}}"
                    for extraction_type in types
                },
            },
            depends_on=tuple(f"extract_{extraction_type.value}" for extraction_type in types),
        ),
    )

    definition = WorkflowDefinition(
        id=workflow_id or new_workflow_id("comprehensive_extraction"),
        name="comprehensive_extraction",
        steps=tuple(steps),
        parallel=True,
        continue_on_error=True,
        timeout=900.0,
    )
    complexity = assess_complexity(files, types, options)
    return WorkflowPlan(
        definition=definition,
        estimate=scaled_estimate(definition, complexity, duration_factors=DURATION_FACTORS),
    )


def build_focused_extraction(
    mode: ExtractionMode,
    files: Sequence[FileReference],
    *,
    targets: Sequence[str] = (),
    options: ExtractionOptions | None = None,
    workflow_id: str | None = None,
) -> WorkflowPlan:
    """A short extract-then-organize chain for one kind of content."""

    options = options or ExtractionOptions()
    _require_files(files)
    targets = _check_targets(mode, targets)

    fields = f" Target fields: {', '.join(targets)}." if targets else ""
    notes = _option_notes(options)
    steps: list[WorkflowStep] = []
    for stage in _MODE_STAGES[mode]:
        prompt = stage.prompt.format(
            targets=", ".join(targets),
            format=options.output_format,
            fields=fields,
        )
        step_input: dict[str, object] = {"prompt": f"{prompt}{notes}"}
        if not steps:
            step_input["files"] = list(files)
        elif stage.action is TaskKind.SYNTHESIZE:
            step_input["inputs"] = {"content": f"{{{{{steps[-1].id}}}}}"}
        else:
            step_input["context"] = f"{{{{{steps[-1].id}}}}}"
        steps.append(
            WorkflowStep(
                id=stage.id,
                layer=stage.layer,
                action=stage.action,
                input=step_input,
                depends_on=(steps[-1].id,) if steps else (),
            ),
        )

    definition = WorkflowDefinition(
        id=workflow_id or new_workflow_id(f"{mode.value}_extraction"),
        name=f"{mode.value}_extraction",
        steps=tuple(steps),
        timeout=900.0,
    )
    complexity = assess_complexity(files, _mode_types(mode), options)
    return WorkflowPlan(
        definition=definition,
        estimate=scaled_estimate(definition, complexity, duration_factors=DURATION_FACTORS),
    )


def _require_files(files: Sequence[FileReference]) -> None:
    if not files:
        raise ValidationError("Extraction requires at least one input file.")


def _check_targets(mode: ExtractionMode, targets: Sequence[str]) -> list[str]:
    allowed = MODE_TARGETS[mode]
    if allowed is None:
        return [target.strip() for target in targets if target.strip()]
    if not allowed:
        return []
    cleaned = [target.strip().lower() for target in targets if target.strip()]
    if not cleaned:
        raise ValidationError(
            f"{mode.value} extraction requires at least one of: {', '.join(allowed)}.",
        )
    unknown = [target for target in cleaned if target not in allowed]
    if unknown:
        raise ValidationError(
            f"Unsupported {mode.value} extraction target: {', '.join(unknown)}.",
        )
    return cleaned


def _mode_types(mode: ExtractionMode) -> list[ExtractionType]:
    match mode:
        case ExtractionMode.STRUCTURED_DATA:
            return [ExtractionType.DATA]
        case ExtractionMode.ENTITIES:
            return [ExtractionType.ENTITIES]
        case ExtractionMode.FORM_DATA:
            return [ExtractionType.FORMS]
        case ExtractionMode.METADATA:
            return [ExtractionType.METADATA]
        case _:
            return [ExtractionType.TEXT]


def _option_notes(options: ExtractionOptions) -> str:
    notes = []
    if options.preserve_formatting:
        notes.append("Preserve the original formatting.")
    if options.include_confidence:
        notes.append("Include a confidence score for each item.")
    if options.structured_output:
        notes.append("Return structured output.")
    if options.validate_data:
        notes.append("Validate the extracted values.")
    return "".join(f" {note}" for note in notes)
