"""Advisory duration and cost projections for workflow definitions."""

from __future__ import annotations

from layer_bridge.models import Complexity, LayerType, TaskKind
from layer_bridge.workflow.graph import plan_phases
from layer_bridge.workflow.models import ResourceEstimate, WorkflowDefinition, WorkflowStep

# (seconds, usd) per step
LAYER_BASELINES: dict[LayerType, tuple[float, float]] = {
    LayerType.CLAUDE: (60.0, 0.01),
    LayerType.GEMINI: (30.0, 0.0),
    LayerType.AISTUDIO: (120.0, 0.005),
}
_HEAVY_ACTIONS = frozenset(
    {
        TaskKind.COMPLEX_REASONING,
        TaskKind.DOCUMENT_ANALYSIS,
        TaskKind.IMAGE_ANALYSIS,
        TaskKind.AUDIO_ANALYSIS,
        TaskKind.MULTIMODAL,
    },
)


def step_baseline(step: WorkflowStep) -> tuple[float, float]:
    duration, cost = LAYER_BASELINES[step.layer]
    if step.action in _HEAVY_ACTIONS:
        return duration * 2, cost * 2
    return duration, cost


def estimate_resources(
    definition: WorkflowDefinition,
    *,
    complexity: Complexity | None = None,
) -> ResourceEstimate:
    """Project duration and cost without running anything.

    Sequential definitions add up every step; parallel ones add up the
    slowest step of each dependency level.
    """

    baselines = {step.id: step_baseline(step) for step in definition.steps}
    if definition.parallel:
        duration = sum(
            max(baselines[step_id][0] for step_id in phase) for phase in plan_phases(definition)
        )
    else:
        duration = sum(seconds for seconds, _ in baselines.values())

    usage: dict[LayerType, int] = {}
    for step in definition.steps:
        usage[step.layer] = usage.get(step.layer, 0) + 1

    if complexity is None:
        complexity = _complexity_from_size(len(definition.steps))
    return ResourceEstimate(
        estimated_duration=duration,
        estimated_cost=sum(cost for _, cost in baselines.values()),
        complexity=complexity,
        layer_usage=usage,
    )


def _complexity_from_size(step_count: int) -> Complexity:
    if step_count > 6:
        return Complexity.HIGH
    if step_count > 3:
        return Complexity.MEDIUM
    return Complexity.LOW
