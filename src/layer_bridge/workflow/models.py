"""Workflow definitions, step references and run results."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from layer_bridge.models import Complexity, LayerResult, LayerType, TaskKind


class StepStatus(str, Enum):
    """Lifecycle of one step inside a single run."""

    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True, slots=True)
class StepRef:
    """Reference to another step's output, optionally to a field inside it."""

    step_id: str
    field_path: tuple[str, ...] = ()

    def __str__(self) -> str:
        return "{{" + ".".join((self.step_id, *self.field_path)) + "}}"


@dataclass(frozen=True, slots=True)
class TemplateText:
    """Text with embedded step references, kept as ordered parts."""

    parts: tuple[str | StepRef, ...]

    def __str__(self) -> str:
        return "".join(str(part) for part in self.parts)


@dataclass(frozen=True, slots=True)
class WorkflowStep:
    """One graph node bound to a layer and action.

    `input` keys: `prompt` (text, may reference other steps), `files`
    (paths), `options` (processing option overrides) and any
    action-specific parameters.
    """

    id: str
    layer: LayerType
    action: TaskKind
    input: Mapping[str, Any] = field(default_factory=dict)
    depends_on: tuple[str, ...] = ()
    timeout: float | None = None
    retries: int | None = None
    required: bool = True


@dataclass(frozen=True, slots=True)
class WorkflowDefinition:
    """A DAG of steps plus run policy."""

    id: str
    steps: tuple[WorkflowStep, ...]
    parallel: bool = False
    continue_on_error: bool = False
    timeout: float | None = None
    synthesize_summary: bool = False
    name: str | None = None
    description: str | None = None

    def step(self, step_id: str) -> WorkflowStep:
        for candidate in self.steps:
            if candidate.id == step_id:
                return candidate
        raise KeyError(step_id)


@dataclass(slots=True)
class WorkflowMetadata:
    """Aggregates populated even when the run partially fails."""

    workflow_id: str
    total_duration: float
    steps_completed: int
    steps_failed: int
    steps_skipped: int
    total_cost: float
    timed_out: bool = False


@dataclass(slots=True)
class WorkflowResult:
    """Outcome of one workflow run."""

    success: bool
    results: dict[str, LayerResult]
    statuses: dict[str, StepStatus]
    summary: str
    metadata: WorkflowMetadata

    @property
    def failed_steps(self) -> list[str]:
        return [step_id for step_id, status in self.statuses.items() if status is StepStatus.FAILED]

    @property
    def skipped_steps(self) -> list[str]:
        return [
            step_id for step_id, status in self.statuses.items() if status is StepStatus.SKIPPED
        ]


@dataclass(slots=True)
class ResourceEstimate:
    """Advisory projection; never gates execution."""

    estimated_duration: float
    estimated_cost: float
    complexity: Complexity
    layer_usage: dict[LayerType, int] = field(default_factory=dict)


@dataclass(slots=True)
class WorkflowPlan:
    """Builder output: a definition plus its resource estimate."""

    definition: WorkflowDefinition
    estimate: ResourceEstimate
