"""Ready-made workflow definitions for common multi-layer jobs."""

from __future__ import annotations

import uuid
from collections.abc import Mapping, Sequence
from enum import Enum
from typing import Any

from layer_bridge.errors import ValidationError
from layer_bridge.models import FileReference, LayerType, TaskKind
from layer_bridge.workflow.models import WorkflowDefinition, WorkflowStep

PIPELINE_STEP_TIMEOUT_SECONDS = 120.0


class WorkflowTemplate(str, Enum):
    DOCUMENT_PROCESSING = "document_processing"
    CONTENT_ANALYSIS = "content_analysis"
    MULTIMODAL_PIPELINE = "multimodal_pipeline"
    RESEARCH_WORKFLOW = "research_workflow"


def new_workflow_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:8]}"


def create_workflow(
    template: WorkflowTemplate,
    files: Sequence[FileReference],
    instructions: str,
    *,
    workflow_id: str | None = None,
) -> WorkflowDefinition:
    """Build the named template around caller files and instructions."""

    workflow_id = workflow_id or new_workflow_id(template.value)
    match template:
        case WorkflowTemplate.DOCUMENT_PROCESSING:
            return document_processing(workflow_id, files, instructions)
        case WorkflowTemplate.CONTENT_ANALYSIS:
            return content_analysis(workflow_id, files, instructions)
        case WorkflowTemplate.MULTIMODAL_PIPELINE:
            return multimodal_pipeline(workflow_id, files, instructions)
        case WorkflowTemplate.RESEARCH_WORKFLOW:
            return research_workflow(workflow_id, files, instructions)


def document_processing(
    workflow_id: str,
    files: Sequence[FileReference],
    instructions: str,
) -> WorkflowDefinition:
    return WorkflowDefinition(
        id=workflow_id,
        name="document_processing",
        steps=(
            WorkflowStep(
                id="extract_content",
                layer=LayerType.AISTUDIO,
                action=TaskKind.DOCUMENT_ANALYSIS,
                input={
                    "files": list(files),
                    "prompt": "Extract all content and structure from the documents.",
                },
            ),
            WorkflowStep(
                id="analyze_content",
                layer=LayerType.CLAUDE,
                action=TaskKind.COMPLEX_REASONING,
                input={
                    "prompt": f"{instructions}\n\nExtracted content:\n{{{{extract_content}}}}",
                },
                depends_on=("extract_content",),
            ),
            WorkflowStep(
                id="generate_insights",
                layer=LayerType.CLAUDE,
                action=TaskKind.SYNTHESIZE,
                input={
                    "prompt": "Generate insights and conclusions from the analysis.",
                    "inputs": {"analysis": "{{analyze_content}}"},
                },
                depends_on=("analyze_content",),
            ),
        ),
        timeout=600.0,
    )


def content_analysis(
    workflow_id: str,
    files: Sequence[FileReference],
    instructions: str,
) -> WorkflowDefinition:
    return WorkflowDefinition(
        id=workflow_id,
        name="content_analysis",
        steps=(
            WorkflowStep(
                id="process_multimodal",
                layer=LayerType.AISTUDIO,
                action=TaskKind.MULTIMODAL,
                input={"files": list(files), "prompt": "Process and analyze all content types."},
            ),
            WorkflowStep(
                id="contextual_grounding",
                layer=LayerType.GEMINI,
                action=TaskKind.GROUNDED_SEARCH,
                input={
                    "prompt": f"{instructions}\n\nContext:\n{{{{process_multimodal}}}}",
                    "options": {"use_search": True},
                },
                depends_on=("process_multimodal",),
            ),
            WorkflowStep(
                id="comprehensive_analysis",
                layer=LayerType.CLAUDE,
                action=TaskKind.COMPLEX_REASONING,
                input={
                    "prompt": f"Perform a comprehensive analysis: {instructions}",
                    "context": (
                        "Multimodal: {{process_multimodal}}\nGrounded: {{contextual_grounding}}"
                    ),
                    "options": {"depth": "deep"},
                },
                depends_on=("process_multimodal", "contextual_grounding"),
            ),
        ),
        parallel=True,
        timeout=900.0,
    )


def multimodal_pipeline(
    workflow_id: str,
    files: Sequence[FileReference],
    instructions: str,
) -> WorkflowDefinition:
    return WorkflowDefinition(
        id=workflow_id,
        name="multimodal_pipeline",
        steps=(
            WorkflowStep(
                id="extract_multimodal",
                layer=LayerType.AISTUDIO,
                action=TaskKind.MULTIMODAL,
                input={
                    "files": list(files),
                    "prompt": "Extract and process all multimodal content.",
                },
            ),
            WorkflowStep(
                id="draft_synthesis",
                layer=LayerType.CLAUDE,
                action=TaskKind.SYNTHESIZE,
                input={
                    "prompt": instructions,
                    "inputs": {"multimodal": "{{extract_multimodal}}"},
                },
                depends_on=("extract_multimodal",),
            ),
            WorkflowStep(
                id="enhance_with_search",
                layer=LayerType.GEMINI,
                action=TaskKind.GROUNDED_SEARCH,
                input={
                    "prompt": "Enhance understanding with current information: "
                    "{{extract_multimodal}}",
                    "options": {"use_search": True},
                },
                depends_on=("extract_multimodal",),
                required=False,
            ),
            WorkflowStep(
                id="synthesize_final",
                layer=LayerType.CLAUDE,
                action=TaskKind.SYNTHESIZE,
                input={
                    "prompt": instructions,
                    "inputs": {
                        "draft": "{{draft_synthesis}}",
                        "grounded": "{{enhance_with_search}}",
                    },
                },
                depends_on=("draft_synthesis", "enhance_with_search"),
            ),
        ),
        continue_on_error=True,
        timeout=1_200.0,
    )


def research_workflow(
    workflow_id: str,
    files: Sequence[FileReference],
    instructions: str,
) -> WorkflowDefinition:
    return WorkflowDefinition(
        id=workflow_id,
        name="research_workflow",
        steps=(
            WorkflowStep(
                id="initial_research",
                layer=LayerType.GEMINI,
                action=TaskKind.GROUNDED_SEARCH,
                input={
                    "prompt": f"Research background information: {instructions}",
                    "options": {"use_search": True},
                },
            ),
            WorkflowStep(
                id="analyze_documents",
                layer=LayerType.AISTUDIO,
                action=TaskKind.DOCUMENT_ANALYSIS,
                input={
                    "files": list(files),
                    "prompt": "Analyze the documents in the context of the research.",
                },
            ),
            WorkflowStep(
                id="cross_reference",
                layer=LayerType.CLAUDE,
                action=TaskKind.COMPLEX_REASONING,
                input={
                    "prompt": f"Cross-reference research with document analysis: {instructions}",
                    "context": "Research: {{initial_research}}\nDocuments: {{analyze_documents}}",
                    "options": {"depth": "deep"},
                },
                depends_on=("initial_research", "analyze_documents"),
            ),
            WorkflowStep(
                id="final_synthesis",
                layer=LayerType.CLAUDE,
                action=TaskKind.SYNTHESIZE,
                input={
                    "prompt": "Create a comprehensive research synthesis.",
                    "inputs": {
                        "research": "{{initial_research}}",
                        "documents": "{{analyze_documents}}",
                        "analysis": "{{cross_reference}}",
                    },
                },
                depends_on=("initial_research", "analyze_documents", "cross_reference"),
            ),
        ),
        parallel=True,
        timeout=1_800.0,
    )


def build_pipeline(
    steps: Sequence[Mapping[str, Any]],
    *,
    parallel: bool = False,
    continue_on_error: bool = False,
    timeout: float | None = None,
    workflow_id: str | None = None,
) -> WorkflowDefinition:
    """Turn loose step mappings into a definition with `step_<i>` ids.

    Each mapping needs `layer` and `action`; `input` and `depends_on` are
    optional. A sequential pipeline without explicit dependencies is
    chained so that every step depends on the previous one.
    """

    built: list[WorkflowStep] = []
    for index, entry in enumerate(steps):
        try:
            layer = LayerType(entry["layer"])
            action = TaskKind(entry["action"])
        except KeyError as error:
            raise ValidationError(f"Pipeline step {index} is missing {error.args[0]!r}.") from None
        except ValueError as error:
            raise ValidationError(f"Pipeline step {index}: {error}") from None
        depends_on = tuple(entry.get("depends_on", ()))
        if not depends_on and not parallel and index > 0 and "depends_on" not in entry:
            depends_on = (f"step_{index - 1}",)
        built.append(
            WorkflowStep(
                id=f"step_{index}",
                layer=layer,
                action=action,
                input=dict(entry.get("input", {})),
                depends_on=depends_on,
                timeout=entry.get("timeout", PIPELINE_STEP_TIMEOUT_SECONDS),
            ),
        )
    return WorkflowDefinition(
        id=workflow_id or new_workflow_id("pipeline"),
        name="pipeline",
        steps=tuple(built),
        parallel=parallel,
        continue_on_error=continue_on_error,
        timeout=timeout,
    )
