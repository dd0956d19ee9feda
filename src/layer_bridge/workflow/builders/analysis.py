"""Multi-file analysis workflows."""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from layer_bridge.errors import ValidationError
from layer_bridge.models import Complexity, FileReference, LayerType, ReasoningDepth, TaskKind
from layer_bridge.workflow.builders.common import (
    COST_FACTORS,
    MB,
    categorize_files,
    complexity_from_score,
    scaled_estimate,
    tiered_points,
    total_size,
)
from layer_bridge.workflow.models import WorkflowDefinition, WorkflowPlan, WorkflowStep
from layer_bridge.workflow.templates import new_workflow_id

_ANALYTIC_VERBS = re.compile(r"\b(compare|analyze|correlate|synthesize)\b", re.IGNORECASE)
_LONG_PROMPT_CHARS = 1_000


class AnalysisType(str, Enum):
    COMPREHENSIVE = "comprehensive"
    COMPARATIVE = "comparative"
    THEMATIC = "thematic"
    SENTIMENT = "sentiment"
    TREND = "trend"
    STATISTICAL = "statistical"


_ANALYSIS_PROMPTS: dict[AnalysisType, str] = {
    AnalysisType.COMPREHENSIVE: (
        "Perform a comprehensive analysis of the extracted content. "
        "Identify themes, patterns and key insights."
    ),
    AnalysisType.COMPARATIVE: (
        "Compare the files: similarities, differences and how they relate to each other."
    ),
    AnalysisType.THEMATIC: "Identify recurring themes and how they develop across the content.",
    AnalysisType.SENTIMENT: "Analyze sentiment and emotional tone, with supporting examples.",
    AnalysisType.TREND: "Identify trends and changes over time in the content.",
    AnalysisType.STATISTICAL: (
        "Perform a statistical analysis of the numerical data in the content."
    ),
}
_GROUNDED_TYPES = frozenset({AnalysisType.COMPREHENSIVE, AnalysisType.TREND})


@dataclass(frozen=True, slots=True)
class AnalysisOptions:
    depth: ReasoningDepth = ReasoningDepth.MEDIUM
    extract_metadata: bool = False
    structured: bool = False
    require_grounding: bool = False


def needs_grounding(analysis_type: AnalysisType, options: AnalysisOptions) -> bool:
    return analysis_type in _GROUNDED_TYPES or options.require_grounding


def assess_complexity(
    files: Sequence[FileReference],
    prompt: str,
    options: AnalysisOptions,
) -> Complexity:
    score = tiered_points(len(files), (5, 10))
    score += tiered_points(total_size(files), (10 * MB, 100 * MB))
    score += tiered_points(categorize_files(files).non_empty_count, (1, 3))
    if options.depth is ReasoningDepth.DEEP:
        score += 2
    score += int(options.extract_metadata) + int(options.structured)
    if len(prompt) > _LONG_PROMPT_CHARS:
        score += 1
    if _ANALYTIC_VERBS.search(prompt):
        score += 1
    return complexity_from_score(score)


def build_analysis(
    files: Sequence[FileReference],
    prompt: str,
    *,
    analysis_type: AnalysisType = AnalysisType.COMPREHENSIVE,
    options: AnalysisOptions | None = None,
    workflow_id: str | None = None,
) -> WorkflowPlan:
    """Extraction steps only for the file kinds present, then reasoning and synthesis."""

    options = options or AnalysisOptions()
    if not files:
        raise ValidationError("Analysis requires at least one input file.")
    if analysis_type is AnalysisType.COMPARATIVE and len(files) < 2:
        raise ValidationError("Comparative analysis requires at least 2 files.")

    categories = categorize_files(files)
    steps: list[WorkflowStep] = []
    context: list[str] = []
    if categories.multimodal:
        steps.append(
            WorkflowStep(
                id="extract_multimodal_content",
                layer=LayerType.AISTUDIO,
                action=TaskKind.MULTIMODAL,
                input={
                    "files": categories.multimodal,
                    "prompt": "Extract all content from these files, including text, "
                    "metadata and descriptions.",
                },
            ),
        )
        context.append("Multimodal: {{extract_multimodal_content}}")
    textual = [*categories.documents, *categories.structured, *categories.text]
    if textual:
        steps.append(
            WorkflowStep(
                id="extract_document_content",
                layer=LayerType.AISTUDIO,
                action=TaskKind.DOCUMENT_ANALYSIS,
                input={
                    "files": textual,
                    "prompt": "Extract text content, structure and metadata from the documents.",
                },
            ),
        )
        context.append("Documents: {{extract_document_content}}")

    extraction_ids = tuple(step.id for step in steps)
    steps.append(
        WorkflowStep(
            id="initial_analysis",
            layer=LayerType.CLAUDE,
            action=TaskKind.COMPLEX_REASONING,
            input={
                "prompt": f"{_ANALYSIS_PROMPTS[analysis_type]}\n\nRequest: {prompt}",
                "context": "\n".join(context),
                "options": {"depth": options.depth.value},
            },
            depends_on=extraction_ids,
        ),
    )
    synthesis_inputs = {"initial_analysis": "{{initial_analysis}}"}
    synthesis_deps = ["initial_analysis"]
    if needs_grounding(analysis_type, options):
        steps.append(
            WorkflowStep(
                id="grounded_analysis",
                layer=LayerType.GEMINI,
                action=TaskKind.GROUNDED_SEARCH,
                input={
                    "prompt": "Enhance this analysis with current contextual information:\n"
                    "{{initial_analysis}}",
                    "options": {"use_search": True},
                },
                depends_on=("initial_analysis",),
            ),
        )
        synthesis_inputs["grounded_enhancement"] = "{{grounded_analysis}}"
        synthesis_deps.append("grounded_analysis")
    steps.append(
        WorkflowStep(
            id="synthesize_analysis",
            layer=LayerType.CLAUDE,
            action=TaskKind.SYNTHESIZE,
            input={
                "prompt": f"Create a {analysis_type.value} analysis report with insights "
                "and conclusions.",
                "inputs": synthesis_inputs,
            },
            depends_on=tuple(synthesis_deps),
        ),
    )

    definition = WorkflowDefinition(
        id=workflow_id or new_workflow_id(f"{analysis_type.value}_analysis"),
        name=f"{analysis_type.value}_analysis",
        steps=tuple(steps),
        parallel=len(extraction_ids) > 1,
        timeout=900.0,
    )
    complexity = assess_complexity(files, prompt, options)
    return WorkflowPlan(
        definition=definition,
        estimate=scaled_estimate(definition, complexity, duration_factors=COST_FACTORS),
    )
