"""Content generation workflows: plan, write, review."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from layer_bridge.errors import ValidationError
from layer_bridge.models import Complexity, FileReference, LayerType, TaskKind
from layer_bridge.workflow.builders.common import (
    complexity_from_score,
    scaled_estimate,
    tiered_points,
)
from layer_bridge.workflow.models import WorkflowDefinition, WorkflowPlan, WorkflowStep
from layer_bridge.workflow.templates import new_workflow_id

MIN_REQUIREMENTS_CHARS = 10
_LENGTH_WORDS = {"short": 500, "medium": 1_500, "long": 3_000}
_DEFAULT_LENGTH_WORDS = 1_000
_GROUNDING_KEYWORDS = ("current", "latest", "recent", "trends", "market", "industry")


class GenerationType(str, Enum):
    SUMMARY = "summary"
    REPORT = "report"
    DOCUMENTATION = "documentation"
    PRESENTATION = "presentation"
    ARTICLE = "article"
    ANALYSIS = "analysis"
    CREATIVE = "creative"
    TECHNICAL = "technical"


OUTPUT_FORMATS: dict[GenerationType, tuple[str, ...]] = {
    GenerationType.SUMMARY: ("markdown", "html", "pdf", "docx"),
    GenerationType.REPORT: ("markdown", "html", "pdf", "docx"),
    GenerationType.DOCUMENTATION: ("markdown", "html", "confluence", "docx"),
    GenerationType.PRESENTATION: ("markdown", "pptx", "html"),
    GenerationType.ARTICLE: ("markdown", "html", "docx"),
    GenerationType.ANALYSIS: ("markdown", "html", "pdf", "docx"),
    GenerationType.CREATIVE: ("markdown", "html", "txt"),
    GenerationType.TECHNICAL: ("markdown", "html", "pdf", "docx"),
}
_GROUNDED_TYPES = frozenset(
    {GenerationType.REPORT, GenerationType.ANALYSIS, GenerationType.TECHNICAL},
)

DURATION_FACTORS: dict[Complexity, float] = {
    Complexity.LOW: 1.0,
    Complexity.MEDIUM: 1.8,
    Complexity.HIGH: 3.0,
}


@dataclass(frozen=True, slots=True)
class GenerationOptions:
    output_format: str | None = None
    length: str | int | None = None
    tone: str | None = None
    audience: str | None = None
    include_visuals: bool = False
    include_recommendations: bool = False


def validate_requirements(
    generation_type: GenerationType,
    requirements: str,
    options: GenerationOptions,
) -> None:
    if not requirements.strip():
        raise ValidationError("Generation requirements cannot be empty.")
    if len(requirements.strip()) < MIN_REQUIREMENTS_CHARS:
        raise ValidationError(
            f"Generation requirements must be at least {MIN_REQUIREMENTS_CHARS} characters.",
        )
    supported = OUTPUT_FORMATS[generation_type]
    if options.output_format and options.output_format not in supported:
        raise ValidationError(
            f"Unsupported output format {options.output_format} for {generation_type.value}; "
            f"expected one of: {', '.join(supported)}.",
        )


def needs_grounding(generation_type: GenerationType, requirements: str) -> bool:
    lowered = requirements.lower()
    return generation_type in _GROUNDED_TYPES or any(
        keyword in lowered for keyword in _GROUNDING_KEYWORDS
    )


def estimate_content_length(requirements: str, options: GenerationOptions) -> int:
    """Expected output size in words."""

    match options.length:
        case int(words):
            length: float = words
        case str(label) if label in _LENGTH_WORDS:
            length = _LENGTH_WORDS[label]
        case _:
            length = _DEFAULT_LENGTH_WORDS
    if len(requirements) > 500:
        length *= 1.5
    return int(length)


def assess_complexity(
    source_files: Sequence[FileReference],
    requirements: str,
    options: GenerationOptions,
) -> Complexity:
    score = tiered_points(len(source_files), (0, 5, 10))
    score += tiered_points(len(requirements), (500, 1_000))
    score += tiered_points(estimate_content_length(requirements, options), (1_000, 2_000, 5_000))
    score += sum(
        (
            options.include_visuals,
            options.tone == "technical",
            options.include_recommendations,
        ),
    )
    return complexity_from_score(score)


def build_generation(
    generation_type: GenerationType,
    requirements: str,
    *,
    source_files: Sequence[FileReference] = (),
    options: GenerationOptions | None = None,
    workflow_id: str | None = None,
) -> WorkflowPlan:
    options = options or GenerationOptions()
    validate_requirements(generation_type, requirements, options)

    steps: list[WorkflowStep] = []
    context: list[str] = []
    if source_files:
        steps.append(
            WorkflowStep(
                id="analyze_sources",
                layer=LayerType.AISTUDIO,
                action=TaskKind.DOCUMENT_ANALYSIS,
                input={
                    "files": list(source_files),
                    "prompt": "Analyze the source content for generation insights.",
                },
            ),
        )
        context.append("Source analysis: {{analyze_sources}}")
    if needs_grounding(generation_type, requirements):
        steps.append(
            WorkflowStep(
                id="research_context",
                layer=LayerType.GEMINI,
                action=TaskKind.GROUNDED_SEARCH,
                input={
                    "prompt": f"Research current information relevant to: {requirements}",
                    "options": {"use_search": True},
                },
            ),
        )
        context.append("Research context: {{research_context}}")

    gathered = tuple(step.id for step in steps)
    plan_input: dict[str, object] = {
        "prompt": _planning_prompt(generation_type, requirements, options),
    }
    if context:
        plan_input["context"] = "\n".join(context)
    steps.append(
        WorkflowStep(
            id="plan_content",
            layer=LayerType.CLAUDE,
            action=TaskKind.COMPLEX_REASONING,
            input=plan_input,
            depends_on=gathered,
        ),
    )
    inputs = {"plan": "{{plan_content}}"}
    inputs.update({step_id: f"{{{{{step_id}}}}}" for step_id in gathered})
    steps.append(
        WorkflowStep(
            id="generate_content",
            layer=LayerType.CLAUDE,
            action=TaskKind.SYNTHESIZE,
            input={
                "prompt": _generation_prompt(generation_type, requirements, options),
                "inputs": inputs,
            },
            depends_on=("plan_content", *gathered),
        ),
    )
    steps.append(
        WorkflowStep(
            id="review_and_refine",
            layer=LayerType.CLAUDE,
            action=TaskKind.COMPLEX_REASONING,
            input={
                "prompt": "Review the generated content for quality, accuracy and adherence "
                f"to the requirements, then return the refined version.\n\n"
                f"Requirements: {requirements}",
                "context": "{{generate_content}}",
            },
            depends_on=("generate_content",),
        ),
    )

    definition = WorkflowDefinition(
        id=workflow_id or new_workflow_id(f"{generation_type.value}_generation"),
        name=f"{generation_type.value}_generation",
        steps=tuple(steps),
        parallel=len(gathered) > 1,
        timeout=1_200.0,
    )
    complexity = assess_complexity(source_files, requirements, options)
    return WorkflowPlan(
        definition=definition,
        estimate=scaled_estimate(definition, complexity, duration_factors=DURATION_FACTORS),
    )


def _planning_prompt(
    generation_type: GenerationType,
    requirements: str,
    options: GenerationOptions,
) -> str:
    parts = [
        f"Create a detailed plan for generating {generation_type.value} content.",
        f"Requirements: {requirements}",
    ]
    if options.length is not None:
        parts.append(f"Target length: {options.length}")
    if options.tone:
        parts.append(f"Tone: {options.tone}")
    if options.audience:
        parts.append(f"Target audience: {options.audience}")
    parts.append("Provide structure, key points and approach.")
    return "\n".join(parts)


def _generation_prompt(
    generation_type: GenerationType,
    requirements: str,
    options: GenerationOptions,
) -> str:
    prompt = (
        f"Generate high-quality {generation_type.value} content based on the plan "
        f"and requirements: {requirements}"
    )
    if options.output_format:
        prompt += f"\nFormat the output as {options.output_format}."
    if options.include_visuals:
        prompt += "\nInclude suggestions for visual elements."
    if options.include_recommendations:
        prompt += "\nInclude recommendations."
    return prompt
