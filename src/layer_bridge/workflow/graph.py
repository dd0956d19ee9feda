"""Workflow graph validation and ordering."""

from __future__ import annotations

import re
from collections.abc import Sequence

from layer_bridge.errors import ValidationError
from layer_bridge.workflow.models import WorkflowDefinition, WorkflowStep
from layer_bridge.workflow.references import collect_refs

DEFAULT_MAX_STEPS = 50
_STEP_ID = re.compile(r"^[A-Za-z0-9_-]+$")


def validate_definition(
    definition: WorkflowDefinition,
    *,
    max_steps: int = DEFAULT_MAX_STEPS,
) -> None:
    """Reject malformed definitions before any step runs."""

    steps = definition.steps
    if not steps:
        raise ValidationError(f"Workflow {definition.id} has no steps.")
    if len(steps) > max_steps:
        raise ValidationError(
            f"Workflow {definition.id} has {len(steps)} steps; the limit is {max_steps}.",
        )
    if definition.timeout is not None and definition.timeout <= 0:
        raise ValidationError(f"Workflow {definition.id} timeout must be positive.")

    problems: list[str] = []
    seen: set[str] = set()
    for step in steps:
        if not _STEP_ID.match(step.id):
            problems.append(f"invalid step id {step.id!r}")
        if step.id in seen:
            problems.append(f"duplicate step id {step.id!r}")
        seen.add(step.id)
        if step.timeout is not None and step.timeout <= 0:
            problems.append(f"step {step.id} timeout must be positive")
        if step.retries is not None and step.retries < 1:
            problems.append(f"step {step.id} retries must be at least 1")

    for step in steps:
        for dependency in step.depends_on:
            if dependency == step.id:
                problems.append(f"step {step.id} depends on itself")
            elif dependency not in seen:
                problems.append(f"step {step.id} depends on unknown step {dependency!r}")
        for ref in collect_refs(step.input):
            if ref.step_id not in step.depends_on:
                problems.append(
                    f"step {step.id} references {ref} without declaring {ref.step_id!r} "
                    "in depends_on",
                )

    if problems:
        raise ValidationError(
            f"Invalid workflow {definition.id}: " + "; ".join(problems),
            details={"problems": problems},
        )

    cycle = find_cycle(steps)
    if cycle is not None:
        raise ValidationError(
            f"Invalid workflow {definition.id}: dependency cycle " + " -> ".join(cycle),
            details={"cycle": cycle},
        )


def find_cycle(steps: Sequence[WorkflowStep]) -> list[str] | None:
    """Return one dependency cycle as a closed path, or None."""

    dependencies = {step.id: step.depends_on for step in steps}
    visiting: list[str] = []
    state: dict[str, int] = {}

    def visit(step_id: str) -> list[str] | None:
        state[step_id] = 1
        visiting.append(step_id)
        for dependency in dependencies.get(step_id, ()):
            if dependency not in dependencies:
                continue
            if state.get(dependency) == 1:
                start = visiting.index(dependency)
                return [*visiting[start:], dependency]
            if dependency not in state:
                found = visit(dependency)
                if found is not None:
                    return found
        visiting.pop()
        state[step_id] = 2
        return None

    for step in steps:
        if step.id not in state:
            found = visit(step.id)
            if found is not None:
                return found
    return None


def topological_order(steps: Sequence[WorkflowStep]) -> list[str]:
    """Kahn's algorithm; ties keep declaration order."""

    phases = _levels(steps)
    return [step_id for phase in phases for step_id in phase]


def plan_phases(definition: WorkflowDefinition) -> list[list[str]]:
    """Group steps into dependency levels that could run side by side."""

    return _levels(definition.steps)


def _levels(steps: Sequence[WorkflowStep]) -> list[list[str]]:
    remaining = {step.id: set(step.depends_on) for step in steps}
    order = [step.id for step in steps]
    phases: list[list[str]] = []
    done: set[str] = set()
    while remaining:
        phase = [
            step_id for step_id in order if step_id in remaining and remaining[step_id] <= done
        ]
        if not phase:
            raise ValidationError("Workflow dependency graph contains a cycle.")
        for step_id in phase:
            del remaining[step_id]
        done.update(phase)
        phases.append(phase)
    return phases
