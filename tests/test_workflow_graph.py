from __future__ import annotations

import allure
import pytest

from layer_bridge.errors import ValidationError
from layer_bridge.models import LayerType, TaskKind
from layer_bridge.workflow.graph import (
    find_cycle,
    plan_phases,
    topological_order,
    validate_definition,
)
from layer_bridge.workflow.models import WorkflowDefinition, WorkflowStep

pytestmark = [
    allure.epic("Workflows"),
    allure.feature("Graph Validation"),
]


def _step(step_id: str, *depends_on: str, prompt: str = "do it") -> WorkflowStep:
    return WorkflowStep(
        id=step_id,
        layer=LayerType.CLAUDE,
        action=TaskKind.TEXT_PROMPT,
        input={"prompt": prompt},
        depends_on=depends_on,
    )


def _workflow(*steps: WorkflowStep, timeout: float | None = None) -> WorkflowDefinition:
    return WorkflowDefinition(id="wf", steps=steps, timeout=timeout)


def test_diamond_orders_and_phases() -> None:
    definition = _workflow(
        _step("a"),
        _step("c", "a"),
        _step("b", "a"),
        _step("d", "b", "c"),
    )

    validate_definition(definition)

    assert topological_order(definition.steps) == ["a", "c", "b", "d"]
    assert plan_phases(definition) == [["a"], ["c", "b"], ["d"]]


def test_cycle_is_reported_as_closed_path() -> None:
    definition = _workflow(_step("a", "b"), _step("b", "a"), _step("c"))

    with pytest.raises(ValidationError, match="dependency cycle a -> b -> a") as error:
        validate_definition(definition)

    assert error.value.details["cycle"] == ["a", "b", "a"]
    assert find_cycle(_workflow(_step("a"), _step("b", "a")).steps) is None


def test_structural_problems_are_collected() -> None:
    definition = _workflow(
        _step("a"),
        _step("a"),
        _step("bad id"),
        _step("self", "self"),
        _step("orphan", "ghost"),
        _step("dangling", prompt="Use {{a}}"),
    )

    with pytest.raises(ValidationError, match="Invalid workflow wf") as error:
        validate_definition(definition)

    problems = error.value.details["problems"]
    assert "duplicate step id 'a'" in problems
    assert "invalid step id 'bad id'" in problems
    assert "step self depends on itself" in problems
    assert "step orphan depends on unknown step 'ghost'" in problems
    assert "step dangling references {{a}} without declaring 'a' in depends_on" in problems


def test_size_and_timeout_limits() -> None:
    with pytest.raises(ValidationError, match="has no steps"):
        validate_definition(_workflow())
    with pytest.raises(ValidationError, match="the limit is 2"):
        validate_definition(_workflow(_step("a"), _step("b"), _step("c")), max_steps=2)
    with pytest.raises(ValidationError, match="timeout must be positive"):
        validate_definition(_workflow(_step("a"), timeout=0))


def test_step_policy_values_are_checked() -> None:
    step = WorkflowStep(
        id="a",
        layer=LayerType.GEMINI,
        action=TaskKind.TEXT_PROMPT,
        timeout=-1,
        retries=0,
    )

    with pytest.raises(ValidationError) as error:
        validate_definition(_workflow(step))

    assert error.value.details["problems"] == [
        "step a timeout must be positive",
        "step a retries must be at least 1",
    ]
