from __future__ import annotations

import allure
import pytest
from conftest import FakeAdapter

from layer_bridge.errors import BackendFailure, ValidationError
from layer_bridge.layer_manager import LayerManager
from layer_bridge.models import Complexity, FileReference, LayerType, TaskKind
from layer_bridge.workflow.graph import plan_phases, validate_definition
from layer_bridge.workflow.models import StepStatus, WorkflowDefinition, WorkflowStep
from layer_bridge.workflow.orchestrator import WorkflowOrchestrator
from layer_bridge.workflow.planning import estimate_resources
from layer_bridge.workflow.templates import WorkflowTemplate, build_pipeline, create_workflow

pytestmark = [
    allure.epic("Workflows"),
    allure.feature("Templates & Planning"),
]

FILES = [FileReference.from_path("paper.pdf"), FileReference.from_path("figure.png")]


@pytest.mark.parametrize("template", list(WorkflowTemplate))
def test_every_template_is_a_valid_workflow(template: WorkflowTemplate) -> None:
    definition = create_workflow(template, FILES, "Explain the findings")

    validate_definition(definition)
    assert definition.id.startswith(f"{template.value}_")
    assert len(definition.id) == len(template.value) + 9
    assert definition.name == template.value


def test_workflow_id_can_be_given() -> None:
    definition = create_workflow(
        WorkflowTemplate.DOCUMENT_PROCESSING,
        FILES,
        "Summarize",
        workflow_id="docs-1",
    )

    assert definition.id == "docs-1"
    assert "Summarize" in definition.step("analyze_content").input["prompt"]


def test_research_workflow_phases() -> None:
    definition = create_workflow(WorkflowTemplate.RESEARCH_WORKFLOW, FILES, "Solar adoption")

    assert definition.parallel is True
    assert plan_phases(definition) == [
        ["initial_research", "analyze_documents"],
        ["cross_reference"],
        ["final_synthesis"],
    ]


@pytest.mark.asyncio
async def test_multimodal_pipeline_still_synthesizes_without_grounding() -> None:
    aistudio = FakeAdapter(LayerType.AISTUDIO, respond=lambda task: "two charts")
    gemini = FakeAdapter(LayerType.GEMINI, outcomes=[BackendFailure("search is down")])
    claude = FakeAdapter(LayerType.CLAUDE, respond=lambda task: f"synthesis of {task.prompt}")
    definition = create_workflow(WorkflowTemplate.MULTIMODAL_PIPELINE, FILES, "Describe")

    result = await WorkflowOrchestrator(LayerManager([aistudio, gemini, claude])).execute(
        definition,
    )

    assert result.success is True
    assert result.statuses == {
        "extract_multimodal": StepStatus.COMPLETED,
        "draft_synthesis": StepStatus.COMPLETED,
        "enhance_with_search": StepStatus.FAILED,
        "synthesize_final": StepStatus.SKIPPED,
    }
    assert result.results["draft_synthesis"].data == "synthesis of Describe"
    assert claude.calls[0].params["inputs"] == {"multimodal": "two charts"}


@pytest.mark.asyncio
async def test_multimodal_pipeline_final_step_uses_grounding() -> None:
    aistudio = FakeAdapter(LayerType.AISTUDIO, respond=lambda task: "two charts")
    gemini = FakeAdapter(LayerType.GEMINI, respond=lambda task: "rates rose in May")
    claude = FakeAdapter(LayerType.CLAUDE, outcomes=["draft"])
    definition = create_workflow(WorkflowTemplate.MULTIMODAL_PIPELINE, FILES, "Describe")

    result = await WorkflowOrchestrator(LayerManager([aistudio, gemini, claude])).execute(
        definition,
    )

    assert result.success is True
    assert result.metadata.steps_completed == 4
    assert claude.calls[-1].params["inputs"] == {"draft": "draft", "grounded": "rates rose in May"}


def test_sequential_pipeline_chains_steps() -> None:
    definition = build_pipeline(
        [
            {"layer": "gemini", "action": "grounded_search", "input": {"prompt": "news"}},
            {"layer": "claude", "action": "synthesize", "timeout": 30},
            {"layer": "claude", "action": "text_prompt", "depends_on": []},
        ],
        workflow_id="pipe",
    )

    validate_definition(definition)
    assert [step.depends_on for step in definition.steps] == [(), ("step_0",), ()]
    assert [step.timeout for step in definition.steps] == [120.0, 30, 120.0]
    assert definition.steps[0].layer is LayerType.GEMINI
    assert definition.steps[1].action is TaskKind.SYNTHESIZE


def test_parallel_pipeline_keeps_steps_independent() -> None:
    definition = build_pipeline(
        [
            {"layer": "claude", "action": "text_prompt"},
            {"layer": "gemini", "action": "text_prompt"},
        ],
        parallel=True,
    )

    assert all(step.depends_on == () for step in definition.steps)
    assert definition.id.startswith("pipeline_")


def test_pipeline_rejects_bad_step_specs() -> None:
    with pytest.raises(ValidationError, match="Pipeline step 0 is missing 'layer'"):
        build_pipeline([{"action": "text_prompt"}])
    with pytest.raises(ValidationError, match="Pipeline step 1:"):
        build_pipeline(
            [
                {"layer": "claude", "action": "text_prompt"},
                {"layer": "openai", "action": "text_prompt"},
            ],
        )


def _step(step_id: str, layer: LayerType, action: TaskKind, *depends_on: str) -> WorkflowStep:
    return WorkflowStep(id=step_id, layer=layer, action=action, depends_on=depends_on)


def test_estimate_sums_sequential_steps() -> None:
    definition = WorkflowDefinition(
        id="wf",
        steps=(
            _step("a", LayerType.AISTUDIO, TaskKind.DOCUMENT_ANALYSIS),
            _step("b", LayerType.CLAUDE, TaskKind.TEXT_PROMPT, "a"),
            _step("c", LayerType.GEMINI, TaskKind.GROUNDED_SEARCH, "a"),
        ),
    )

    estimate = estimate_resources(definition)

    assert estimate.estimated_duration == pytest.approx(330)
    assert estimate.estimated_cost == pytest.approx(0.02)
    assert estimate.complexity is Complexity.LOW
    assert estimate.layer_usage == {
        LayerType.AISTUDIO: 1,
        LayerType.CLAUDE: 1,
        LayerType.GEMINI: 1,
    }


def test_estimate_takes_slowest_step_per_parallel_phase() -> None:
    steps = (
        _step("a", LayerType.AISTUDIO, TaskKind.DOCUMENT_ANALYSIS),
        _step("b", LayerType.CLAUDE, TaskKind.TEXT_PROMPT, "a"),
        _step("c", LayerType.GEMINI, TaskKind.GROUNDED_SEARCH, "a"),
        _step("d", LayerType.CLAUDE, TaskKind.SYNTHESIZE, "b", "c"),
    )
    definition = WorkflowDefinition(id="wf", steps=steps, parallel=True)

    estimate = estimate_resources(definition)

    assert estimate.estimated_duration == pytest.approx(240 + 60 + 60)
    assert estimate.complexity is Complexity.MEDIUM
    assert estimate_resources(definition, complexity=Complexity.HIGH).complexity is (
        Complexity.HIGH
    )
