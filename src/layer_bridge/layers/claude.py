"""Reasoning backend driven through the Claude Code CLI."""

from __future__ import annotations

from collections.abc import Mapping

from layer_bridge.errors import ValidationError
from layer_bridge.layers.base import CliLayerAdapter, InvocationOutput
from layer_bridge.models import (
    FileType,
    LayerType,
    ReasoningDepth,
    Task,
    TaskKind,
    output_text,
)

_DEPTH_GUIDANCE: dict[ReasoningDepth, str] = {
    ReasoningDepth.SHALLOW: "Give a brief, direct analysis.",
    ReasoningDepth.MEDIUM: "Reason step by step and state your conclusion clearly.",
    ReasoningDepth.DEEP: (
        "Reason thoroughly: consider alternatives, edge cases and counterarguments "
        "before stating a well-supported conclusion."
    ),
}
_LONG_PROMPT_CHARS = 1_000


class ClaudeLayer(CliLayerAdapter):
    """Complex reasoning, synthesis and text generation."""

    layer = LayerType.CLAUDE

    def can_handle(self, task: Task) -> bool:
        if any(file.type is not FileType.TEXT for file in task.files):
            return False
        match task.kind:
            case (
                TaskKind.COMPLEX_REASONING
                | TaskKind.SYNTHESIZE
                | TaskKind.GENERATE_CONTENT
                | TaskKind.DOCUMENT_ANALYSIS
            ):
                return True
            case TaskKind.TEXT_PROMPT:
                return self._classifier.media_kind(task.prompt) is None
            case (
                TaskKind.GROUNDED_SEARCH
                | TaskKind.MULTIMODAL
                | TaskKind.IMAGE_ANALYSIS
                | TaskKind.AUDIO_ANALYSIS
                | TaskKind.CONVERT_FILE
                | TaskKind.GENERATE_IMAGE
                | TaskKind.GENERATE_VIDEO
                | TaskKind.GENERATE_AUDIO
            ):
                return False

    def get_capabilities(self) -> list[str]:
        return [
            "complex_reasoning",
            "synthesis",
            "code_analysis",
            "text_generation",
            "document_analysis",
        ]

    def get_estimated_duration(self, task: Task) -> float:
        duration = 5.0
        if task.kind is TaskKind.COMPLEX_REASONING:
            duration *= 2
        if len(task.prompt) > _LONG_PROMPT_CHARS:
            duration *= 1.5
        return duration

    async def _invoke(self, task: Task, timeout: float) -> InvocationOutput:
        prompt = self._build_prompt(task)
        output = await self._run_cli(prompt=prompt, flags=[], timeout=timeout)
        return InvocationOutput(data=output)

    def _build_prompt(self, task: Task) -> str:
        match task.kind:
            case TaskKind.TEXT_PROMPT | TaskKind.GENERATE_CONTENT:
                return _with_files(task.prompt, task)
            case TaskKind.COMPLEX_REASONING:
                return build_reasoning_prompt(
                    task.prompt,
                    depth=task.options.depth,
                    domain=task.options.domain,
                )
            case TaskKind.SYNTHESIZE:
                inputs = task.params.get("inputs", {})
                return build_synthesis_prompt(task.prompt, inputs)
            case TaskKind.DOCUMENT_ANALYSIS:
                return _with_files(f"Analyze the following documents.\n\n{task.prompt}", task)
            case (
                TaskKind.GROUNDED_SEARCH
                | TaskKind.MULTIMODAL
                | TaskKind.IMAGE_ANALYSIS
                | TaskKind.AUDIO_ANALYSIS
                | TaskKind.CONVERT_FILE
                | TaskKind.GENERATE_IMAGE
                | TaskKind.GENERATE_VIDEO
                | TaskKind.GENERATE_AUDIO
            ):
                raise ValidationError(
                    f"claude cannot execute {task.kind.value} tasks.",
                    layer=self.layer,
                )


def build_reasoning_prompt(
    problem: str,
    *,
    depth: ReasoningDepth = ReasoningDepth.MEDIUM,
    domain: str | None = None,
) -> str:
    lines = []
    if domain:
        lines.append(f"You are an expert in {domain}.")
    lines.append(_DEPTH_GUIDANCE[depth])
    lines.append("")
    lines.append(f"Problem:\n{problem}")
    lines.append("")
    lines.append("End with a line starting with 'Conclusion:'.")
    return "\n".join(lines)


def build_synthesis_prompt(request: str, inputs: Mapping[str, object]) -> str:
    sections = [f"Request:\n{request}", "", "Inputs:"]
    for name, value in inputs.items():
        sections.append(f"--- {name} ---")
        sections.append(output_text(value))
    sections.append("")
    sections.append("Synthesize the inputs into one coherent response to the request.")
    return "\n".join(sections)


def _with_files(prompt: str, task: Task) -> str:
    if not task.files:
        return prompt
    listing = "\n".join(f"- {file.path}" for file in task.files)
    return f"{prompt}\n\nFiles:\n{listing}"
