"""Dependency-ordered workflow execution on top of the layer manager."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

from layer_bridge.config import parse_bool
from layer_bridge.errors import ValidationError
from layer_bridge.layer_manager import LayerManager
from layer_bridge.models import (
    ExecutionMode,
    FileReference,
    LayerResult,
    LayerType,
    ProcessingOptions,
    QualityLevel,
    ReasoningDepth,
    ResultMetadata,
    Task,
    TaskKind,
    output_text,
)
from layer_bridge.workflow.graph import topological_order, validate_definition
from layer_bridge.workflow.models import (
    StepStatus,
    WorkflowDefinition,
    WorkflowMetadata,
    WorkflowResult,
    WorkflowStep,
)
from layer_bridge.workflow.references import resolve_input

logger = logging.getLogger(__name__)

_OPTION_PARSERS: dict[str, Callable[[Any], Any]] = {
    "execution_mode": ExecutionMode,
    "quality_level": QualityLevel,
    "depth": ReasoningDepth,
    "temperature": float,
    "max_tokens": int,
    "timeout": float,
    "use_cache": parse_bool,
    "use_search": parse_bool,
    "domain": str,
}


class WorkflowOrchestrator:
    """Runs one WorkflowDefinition at a time; results are scoped to the run."""

    def __init__(  # noqa: PLR0913
        self,
        layer_manager: LayerManager,
        *,
        max_concurrent_steps: int = 5,
        max_steps: int = 50,
        default_timeout_seconds: float = 1_800.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._manager = layer_manager
        self._max_concurrent = max_concurrent_steps
        self._max_steps = max_steps
        self._default_timeout = default_timeout_seconds
        self._clock = clock

    async def execute(self, definition: WorkflowDefinition) -> WorkflowResult:
        """Run the DAG and aggregate a result.

        Raises ValidationError for an invalid definition before any step
        runs; every other failure is reported inside the returned result.
        """

        validate_definition(definition, max_steps=self._max_steps)
        started = self._clock()
        order = topological_order(definition.steps)
        steps = {step.id: step for step in definition.steps}
        statuses = {step_id: StepStatus.PENDING for step_id in order}
        results: dict[str, LayerResult] = {}
        running: dict[asyncio.Task[LayerResult], str] = {}
        limit = self._max_concurrent if definition.parallel else 1
        workflow_timeout = definition.timeout or self._default_timeout
        halted = False
        timed_out = False

        logger.info(
            "Workflow %s started: %d steps, parallel=%s",
            definition.id,
            len(order),
            definition.parallel,
        )
        try:
            async with asyncio.timeout(workflow_timeout):
                while True:
                    if not halted:
                        _skip_blocked(order, steps, statuses)
                        _promote_ready(order, steps, statuses)
                        ready = _ready_steps(definition, order, statuses, running, limit)
                        for step_id in ready:
                            step = steps[step_id]
                            statuses[step_id] = StepStatus.RUNNING
                            logger.info("Step %s running on %s", step_id, step.layer.value)
                            task = asyncio.create_task(self._run_step(step, results))
                            running[task] = step_id
                    if not running:
                        break
                    done, _ = await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)
                    for finished in done:
                        step_id = running.pop(finished)
                        result = finished.result()
                        results[step_id] = result
                        if result.success:
                            statuses[step_id] = StepStatus.COMPLETED
                            logger.info("Step %s completed", step_id)
                            continue
                        statuses[step_id] = StepStatus.FAILED
                        logger.warning("Step %s failed: %s", step_id, result.error)
                        if steps[step_id].required and not definition.continue_on_error:
                            halted = True
        except TimeoutError:
            timed_out = True
            logger.warning(
                "Workflow %s timed out after %gs; cancelling %d running steps",
                definition.id,
                workflow_timeout,
                len(running),
            )
            for step_id in running.values():
                statuses[step_id] = StepStatus.FAILED
                results[step_id] = _step_failure(
                    steps[step_id],
                    f"Workflow timed out after {workflow_timeout:g}s",
                )
        finally:
            for pending_task in running:
                pending_task.cancel()
            if running:
                await asyncio.gather(*running, return_exceptions=True)

        for step_id, status in statuses.items():
            if status in {StepStatus.PENDING, StepStatus.READY}:
                statuses[step_id] = StepStatus.SKIPPED

        success = not timed_out and not any(
            status is StepStatus.FAILED and steps[step_id].required
            for step_id, status in statuses.items()
        )
        summary = await self._summarize(definition, statuses, results)
        metadata = WorkflowMetadata(
            workflow_id=definition.id,
            total_duration=self._clock() - started,
            steps_completed=_count(statuses, StepStatus.COMPLETED),
            steps_failed=_count(statuses, StepStatus.FAILED),
            steps_skipped=_count(statuses, StepStatus.SKIPPED),
            total_cost=sum(result.metadata.cost or 0.0 for result in results.values()),
            timed_out=timed_out,
        )
        logger.info(
            "Workflow %s finished: success=%s completed=%d failed=%d skipped=%d in %.2fs",
            definition.id,
            success,
            metadata.steps_completed,
            metadata.steps_failed,
            metadata.steps_skipped,
            metadata.total_duration,
        )
        return WorkflowResult(
            success=success,
            results={step_id: results[step_id] for step_id in order if step_id in results},
            statuses=statuses,
            summary=summary,
            metadata=metadata,
        )

    async def _run_step(
        self,
        step: WorkflowStep,
        outputs: Mapping[str, LayerResult],
    ) -> LayerResult:
        try:
            task = build_step_task(step, outputs)
        except ValidationError as error:
            return _step_failure(step, str(error))
        except Exception as error:  # noqa: BLE001
            logger.exception("Step %s input could not be prepared", step.id)
            return _step_failure(step, str(error) or type(error).__name__)
        try:
            async with asyncio.timeout(step.timeout):
                return await self._manager.execute(task)
        except TimeoutError:
            return _step_failure(step, f"Step {step.id} timed out after {step.timeout:g}s")
        except Exception as error:  # noqa: BLE001
            logger.exception("Step %s raised an unexpected error", step.id)
            return _step_failure(step, str(error) or type(error).__name__)

    async def _summarize(
        self,
        definition: WorkflowDefinition,
        statuses: Mapping[str, StepStatus],
        results: Mapping[str, LayerResult],
    ) -> str:
        fallback = text_summary(definition, statuses, results)
        completed = {
            step_id: result.data
            for step_id, result in results.items()
            if statuses[step_id] is StepStatus.COMPLETED
        }
        if not definition.synthesize_summary or not completed:
            return fallback
        if LayerType.CLAUDE not in self._manager.layers:
            return fallback
        synthesis = await self._manager.execute(
            Task(
                kind=TaskKind.SYNTHESIZE,
                prompt=f"Summarize the outcome of workflow {definition.name or definition.id}.",
                options=ProcessingOptions(layer_priority=LayerType.CLAUDE, use_cache=False),
                params={"inputs": completed},
            ),
        )
        if not synthesis.success:
            logger.warning("Summary synthesis failed: %s", synthesis.error)
            return fallback
        return synthesis.text


def build_step_task(step: WorkflowStep, outputs: Mapping[str, LayerResult]) -> Task:
    """Resolve references in the step input and shape it into a Task."""

    resolved = resolve_input(
        step.input,
        step_id=step.id,
        depends_on=step.depends_on,
        outputs=outputs,
    )
    params = dict(resolved)
    prompt = output_text(params.pop("prompt", ""))
    context = params.pop("context", None)
    if context:
        prompt = f"{prompt}\n\nContext:\n{output_text(context)}"
    files = _file_references(step, params.pop("files", None))
    options = _options_for(step, params.pop("options", None) or {})
    return Task(
        kind=step.action,
        prompt=prompt,
        files=files,
        options=options,
        timeout=step.timeout,
        max_attempts=step.retries,
        params=params,
    )


def text_summary(
    definition: WorkflowDefinition,
    statuses: Mapping[str, StepStatus],
    results: Mapping[str, LayerResult],
) -> str:
    lines = [
        f"Workflow {definition.name or definition.id}: "
        f"{_count(statuses, StepStatus.COMPLETED)} completed, "
        f"{_count(statuses, StepStatus.FAILED)} failed, "
        f"{_count(statuses, StepStatus.SKIPPED)} skipped.",
    ]
    for step_id, status in statuses.items():
        result = results.get(step_id)
        match status:
            case StepStatus.COMPLETED if result is not None:
                lines.append(f"- {step_id}: completed ({_excerpt(result.text)})")
            case StepStatus.FAILED if result is not None:
                lines.append(f"- {step_id}: failed ({result.error})")
            case _:
                lines.append(f"- {step_id}: {status.value}")
    return "\n".join(lines)


def _options_for(step: WorkflowStep, overrides: Mapping[str, Any]) -> ProcessingOptions:
    values: dict[str, Any] = {}
    for name, raw in overrides.items():
        parser = _OPTION_PARSERS.get(name)
        if parser is None:
            raise ValidationError(f"Step {step.id} has unknown option {name!r}.")
        try:
            values[name] = parser(raw)
        except (TypeError, ValueError):
            raise ValidationError(
                f"Step {step.id} option {name} has invalid value {raw!r}.",
            ) from None
    return dataclasses.replace(ProcessingOptions(layer_priority=step.layer), **values)


def _ready_steps(
    definition: WorkflowDefinition,
    order: list[str],
    statuses: Mapping[str, StepStatus],
    running: Mapping[asyncio.Task[LayerResult], str],
    limit: int,
) -> list[str]:
    """Ready steps to start now, up to the free concurrency slots.

    Sequential workflows stop at the first step that is still pending so
    declaration order is kept.
    """

    ready: list[str] = []
    for step_id in order:
        if len(running) + len(ready) >= limit:
            break
        status = statuses[step_id]
        if status is StepStatus.PENDING and not definition.parallel:
            break
        if status is StepStatus.READY:
            ready.append(step_id)
    return ready


def _promote_ready(
    order: list[str],
    steps: Mapping[str, WorkflowStep],
    statuses: dict[str, StepStatus],
) -> None:
    for step_id in order:
        if statuses[step_id] is not StepStatus.PENDING:
            continue
        if _dependencies_completed(steps[step_id], statuses):
            statuses[step_id] = StepStatus.READY
            logger.debug("Step %s ready", step_id)


def _dependencies_completed(step: WorkflowStep, statuses: Mapping[str, StepStatus]) -> bool:
    return all(statuses[dependency] is StepStatus.COMPLETED for dependency in step.depends_on)


def _file_references(step: WorkflowStep, raw: Any) -> tuple[FileReference, ...]:
    if not raw:
        return ()
    items = [raw] if isinstance(raw, str | Path | FileReference) else raw
    if not isinstance(items, list | tuple):
        raise ValidationError(f"Step {step.id} files must be a list of paths.")
    references: list[FileReference] = []
    for item in items:
        if isinstance(item, FileReference):
            references.append(item)
        elif isinstance(item, str | Path):
            references.append(FileReference.from_path(item))
        else:
            raise ValidationError(
                f"Step {step.id} file entry must be a path, got {type(item).__name__}.",
            )
    return tuple(references)


def _skip_blocked(
    order: list[str],
    steps: Mapping[str, WorkflowStep],
    statuses: dict[str, StepStatus],
) -> None:
    blocked = {StepStatus.FAILED, StepStatus.SKIPPED}
    for step_id in order:
        if statuses[step_id] is not StepStatus.PENDING:
            continue
        if any(statuses[dependency] in blocked for dependency in steps[step_id].depends_on):
            statuses[step_id] = StepStatus.SKIPPED
            logger.info("Step %s skipped: a dependency did not complete", step_id)


def _step_failure(step: WorkflowStep, error: str) -> LayerResult:
    return LayerResult(
        success=False,
        data=None,
        metadata=ResultMetadata(layer=step.layer, attempts=0),
        error=error,
    )


def _count(statuses: Mapping[str, StepStatus], status: StepStatus) -> int:
    return sum(1 for value in statuses.values() if value is status)


def _excerpt(text: str, limit: int = 120) -> str:
    flat = " ".join(text.split())
    return flat if len(flat) <= limit else f"{flat[: limit - 3]}..."
