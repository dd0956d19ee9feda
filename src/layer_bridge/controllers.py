"""Controllers for layer-bridge CLI commands."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from layer_bridge.config import Settings
from layer_bridge.context import AppContext
from layer_bridge.errors import ValidationError
from layer_bridge.models import (
    FileReference,
    LayerResult,
    LayerType,
    ProcessingOptions,
    Task,
    TaskKind,
)
from layer_bridge.workflow.builders import (
    AnalysisType,
    ExtractionMode,
    ExtractionOptions,
    ExtractionType,
    GenerationOptions,
    GenerationType,
    build_analysis,
    build_conversion,
    build_extraction,
    build_focused_extraction,
    build_generation,
)
from layer_bridge.workflow.models import WorkflowPlan, WorkflowResult


@dataclass(slots=True)
class RunCommand:
    """CLI input for a single task."""

    prompt: str
    kind: str
    layer: str | None
    files: tuple[Path, ...]
    search: bool
    use_cache: bool = True


@dataclass(slots=True)
class AnalyzeCommand:
    """CLI input for a multi-file analysis workflow."""

    files: tuple[Path, ...]
    prompt: str
    analysis_type: str


@dataclass(slots=True)
class GenerateCommand:
    """CLI input for a content generation workflow."""

    generation_type: str
    requirements: str
    output_format: str | None
    files: tuple[Path, ...]


@dataclass(slots=True)
class ConvertCommand:
    """CLI input for a format conversion workflow."""

    files: tuple[Path, ...]
    target_format: str


@dataclass(slots=True)
class ExtractCommand:
    """CLI input for an extraction workflow; `mode` selects a focused pipeline."""

    files: tuple[Path, ...]
    extraction_types: tuple[str, ...]
    mode: str | None
    targets: tuple[str, ...]
    output_format: str = "json"


@dataclass(slots=True)
class CommandResult:
    lines: list[str]
    success: bool


class BridgeCliController:
    """Builds an application context per command and renders results as lines."""

    def __init__(self, settings_factory: Callable[[], Settings] = Settings.from_env) -> None:
        self._settings_factory = settings_factory

    def run(self, command: RunCommand) -> CommandResult:
        try:
            task = Task(
                kind=TaskKind(command.kind),
                prompt=command.prompt,
                files=tuple(FileReference.from_path(path) for path in command.files),
                options=ProcessingOptions(
                    layer_priority=LayerType(command.layer) if command.layer else None,
                    use_search=command.search,
                    use_cache=command.use_cache,
                ),
            )
        except ValueError as error:
            return CommandResult(lines=[f"Invalid input: {error}"], success=False)
        result = asyncio.run(self._execute_task(task))
        return CommandResult(lines=render_layer_result(result), success=result.success)

    def status(self) -> CommandResult:
        return CommandResult(lines=asyncio.run(self._status()), success=True)

    def analyze(self, command: AnalyzeCommand) -> CommandResult:
        return self._run_plan(
            lambda: build_analysis(
                _file_refs(command.files),
                command.prompt,
                analysis_type=AnalysisType(command.analysis_type),
            ),
        )

    def generate(self, command: GenerateCommand) -> CommandResult:
        return self._run_plan(
            lambda: build_generation(
                GenerationType(command.generation_type),
                command.requirements,
                source_files=_file_refs(command.files),
                options=GenerationOptions(output_format=command.output_format),
            ),
        )

    def convert(self, command: ConvertCommand) -> CommandResult:
        return self._run_plan(
            lambda: build_conversion(_file_refs(command.files), command.target_format),
        )

    def extract(self, command: ExtractCommand) -> CommandResult:
        options = ExtractionOptions(output_format=command.output_format)
        if command.mode:
            mode = command.mode
            return self._run_plan(
                lambda: build_focused_extraction(
                    ExtractionMode(mode),
                    _file_refs(command.files),
                    targets=command.targets,
                    options=options,
                ),
            )
        return self._run_plan(
            lambda: build_extraction(
                _file_refs(command.files),
                [ExtractionType(value) for value in command.extraction_types or ("text",)],
                options=options,
            ),
        )

    def _run_plan(self, build: Callable[[], WorkflowPlan]) -> CommandResult:
        try:
            plan = build()
        except (ValidationError, ValueError) as error:
            return CommandResult(lines=[f"Invalid input: {error}"], success=False)
        estimate = plan.estimate
        lines = [
            f"Workflow: {plan.definition.id} ({len(plan.definition.steps)} steps)",
            f"Estimate: ~{estimate.estimated_duration:.0f}s, "
            f"~${estimate.estimated_cost:.4f}, complexity={estimate.complexity.value}",
        ]
        try:
            result = asyncio.run(self._execute_workflow(plan))
        except ValidationError as error:
            return CommandResult(lines=[*lines, f"Invalid workflow: {error}"], success=False)
        return CommandResult(
            lines=[*lines, *render_workflow_result(result)],
            success=result.success,
        )

    async def _execute_task(self, task: Task) -> LayerResult:
        async with AppContext.build(self._settings_factory()) as context:
            return await context.layer_manager.execute(task)

    async def _execute_workflow(self, plan: WorkflowPlan) -> WorkflowResult:
        async with AppContext.build(self._settings_factory()) as context:
            return await context.orchestrator.execute(plan.definition)

    async def _status(self) -> list[str]:
        async with AppContext.build(self._settings_factory()) as context:
            health = await context.layer_manager.health()
            lines = ["Layers:"]
            for layer, available in health.items():
                adapter = context.layer_manager.get_adapter(layer)
                cached = context.auth_cache.get(layer)
                line = f"  {layer.value}: {'available' if available else 'unavailable'}"
                if cached is not None:
                    line += f" (auth={cached.method}"
                    line += ")" if cached.success else f", error={cached.error})"
                lines.append(line)
                if cached is not None and not cached.success and cached.action_instructions:
                    lines.append(f"    fix: {cached.action_instructions}")
                lines.append(f"    capabilities: {', '.join(adapter.get_capabilities())}")
            usage = context.quota_monitor.usage()
            lines.append(
                f"Gemini quota: {usage.minute_remaining}/{usage.minute_limit} left this minute, "
                f"{usage.daily_remaining}/{usage.daily_limit} left today",
            )
            return lines


def render_layer_result(result: LayerResult) -> list[str]:
    metadata = result.metadata
    layer = metadata.layer.value if metadata.layer else "-"
    if not result.success:
        lines = [f"Failed on {layer}: {result.error}"]
        if result.remediation:
            lines.append(f"Fix: {result.remediation}")
        return lines
    lines = [result.text]
    details = [f"layer={layer}", f"duration={metadata.duration:.2f}s"]
    if metadata.cache_hit:
        details.append("cache=soft" if metadata.cache_soft_hit else "cache=hit")
    if metadata.cost:
        details.append(f"cost=${metadata.cost:.4f}")
    if len(metadata.layers_tried) > 1:
        details.append(f"tried={','.join(layer.value for layer in metadata.layers_tried)}")
    lines.append(f"[{' '.join(details)}]")
    lines.extend(f"Source: {source}" for source in metadata.sources)
    lines.extend(f"Saved: {path}" for path in metadata.media_paths)
    return lines


def render_workflow_result(result: WorkflowResult) -> list[str]:
    metadata = result.metadata
    lines = [
        result.summary,
        f"Status: {'succeeded' if result.success else 'failed'}"
        f"{' (timed out)' if metadata.timed_out else ''}; "
        f"duration={metadata.total_duration:.1f}s cost=${metadata.total_cost:.4f}",
    ]
    for step_id in result.failed_steps:
        step_result = result.results.get(step_id)
        if step_result is not None and step_result.remediation:
            lines.append(f"Fix for {step_id}: {step_result.remediation}")
    return lines


def _file_refs(paths: tuple[Path, ...]) -> list[FileReference]:
    return [FileReference.from_path(path) for path in paths]
