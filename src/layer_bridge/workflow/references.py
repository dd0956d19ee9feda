"""Typed step-output references and their substitution pass."""

from __future__ import annotations

import json
import re
from collections.abc import Collection, Mapping
from typing import Any

from layer_bridge.errors import ValidationError
from layer_bridge.models import LayerResult, output_text
from layer_bridge.workflow.models import StepRef, TemplateText

_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z0-9_-]+)((?:\.[A-Za-z0-9_-]+)*)\s*\}\}")


def parse_text(text: str) -> str | StepRef | TemplateText:
    """Turn `{{id}}` / `{{id.field}}` placeholders into typed references."""

    parts: list[str | StepRef] = []
    position = 0
    for match in _PLACEHOLDER.finditer(text):
        if match.start() > position:
            parts.append(text[position : match.start()])
        path = tuple(segment for segment in match.group(2).split(".") if segment)
        parts.append(StepRef(step_id=match.group(1), field_path=path))
        position = match.end()
    if not parts:
        return text
    if position < len(text):
        parts.append(text[position:])
    if len(parts) == 1 and isinstance(parts[0], StepRef):
        return parts[0]
    return TemplateText(parts=tuple(parts))


def parse_input(value: Any) -> Any:
    """Recursively parse strings in a step input into typed references."""

    if isinstance(value, str):
        return parse_text(value)
    if isinstance(value, StepRef | TemplateText):
        return value
    if isinstance(value, Mapping):
        return {key: parse_input(item) for key, item in value.items()}
    if isinstance(value, list | tuple):
        return [parse_input(item) for item in value]
    return value


def collect_refs(value: Any) -> list[StepRef]:
    """All references found anywhere in a (parsed or raw) input."""

    parsed = parse_input(value)
    found: list[StepRef] = []
    _collect(parsed, found)
    return found


def resolve_input(
    value: Any,
    *,
    step_id: str,
    depends_on: Collection[str],
    outputs: Mapping[str, LayerResult],
) -> Any:
    """Substitute every reference with the referenced step's output text.

    Raises ValidationError if a reference is not a declared dependency or
    the referenced step has no completed output.
    """

    return _resolve(parse_input(value), step_id, depends_on, outputs)


def _collect(value: Any, found: list[StepRef]) -> None:
    if isinstance(value, StepRef):
        found.append(value)
    elif isinstance(value, TemplateText):
        found.extend(part for part in value.parts if isinstance(part, StepRef))
    elif isinstance(value, Mapping):
        for item in value.values():
            _collect(item, found)
    elif isinstance(value, list):
        for item in value:
            _collect(item, found)


def _resolve(
    value: Any,
    step_id: str,
    depends_on: Collection[str],
    outputs: Mapping[str, LayerResult],
) -> Any:
    if isinstance(value, StepRef):
        return _lookup(value, step_id, depends_on, outputs)
    if isinstance(value, TemplateText):
        return "".join(
            part if isinstance(part, str) else _lookup(part, step_id, depends_on, outputs)
            for part in value.parts
        )
    if isinstance(value, Mapping):
        return {key: _resolve(item, step_id, depends_on, outputs) for key, item in value.items()}
    if isinstance(value, list):
        return [_resolve(item, step_id, depends_on, outputs) for item in value]
    return value


def _lookup(
    ref: StepRef,
    step_id: str,
    depends_on: Collection[str],
    outputs: Mapping[str, LayerResult],
) -> str:
    if ref.step_id not in depends_on:
        raise ValidationError(
            f"Step {step_id} references {ref} but does not depend on {ref.step_id}.",
        )
    result = outputs.get(ref.step_id)
    if result is None or not result.success:
        raise ValidationError(
            f"Step {step_id} references {ref} but {ref.step_id} has not completed.",
        )
    data: Any = result.data
    for segment in ref.field_path:
        data = _descend(data, segment, ref)
    return output_text(data)


def _descend(data: Any, segment: str, ref: StepRef) -> Any:
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError:
            raise ValidationError(f"Cannot resolve {ref}: output is plain text.") from None
    if isinstance(data, Mapping) and segment in data:
        return data[segment]
    if isinstance(data, list) and segment.isdigit() and int(segment) < len(data):
        return data[int(segment)]
    raise ValidationError(f"Cannot resolve {ref}: no field {segment!r}.")
