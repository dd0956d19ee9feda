"""Cost estimation helpers for layer selection and reporting."""

from __future__ import annotations

import os

from layer_bridge.models import LayerType, QualityLevel, TaskKind

_GENERATION_COST_USD: dict[TaskKind, float] = {
    TaskKind.GENERATE_IMAGE: 0.05,
    TaskKind.GENERATE_VIDEO: 0.25,
    TaskKind.GENERATE_AUDIO: 0.02,
}
_QUALITY_MULTIPLIER: dict[QualityLevel, float] = {
    QualityLevel.FAST: 1.0,
    QualityLevel.BALANCED: 2.0,
    QualityLevel.QUALITY: 4.0,
}
_AISTUDIO_PER_FILE_USD = 0.001


def estimate_cost_usd(
    *,
    layer: LayerType,
    kind: TaskKind,
    file_count: int,
    quality: QualityLevel = QualityLevel.BALANCED,
) -> float:
    """Estimate the USD cost of one invocation.

    `LAYER_BRIDGE_PRICING` overrides take precedence over built-in rates.
    """

    override = _lookup_override(layer=layer, kind=kind)
    if override is not None:
        return override

    if layer is not LayerType.AISTUDIO:
        # subscription CLIs: no per-call charge
        return 0.0

    generation = _GENERATION_COST_USD.get(kind)
    if generation is not None:
        return generation * _QUALITY_MULTIPLIER[quality]
    return _AISTUDIO_PER_FILE_USD * max(file_count, 1)


def _lookup_override(*, layer: LayerType, kind: TaskKind) -> float | None:
    mapping = _parse_pricing_mapping(os.getenv("LAYER_BRIDGE_PRICING", ""))
    for key in ((layer.value, kind.value), (layer.value, "*"), ("*", "*")):
        value = mapping.get(key)
        if value is not None:
            return value
    return None


def _parse_pricing_mapping(raw: str) -> dict[tuple[str, str], float]:
    """Parse `LAYER_BRIDGE_PRICING` mapping.

    Format:
    - `layer:kind:usd`
    - multiple entries separated by `,`
    - supports wildcards in layer/kind (`*`)
    """

    parsed: dict[tuple[str, str], float] = {}
    if not raw.strip():
        return parsed

    for entry in raw.split(","):
        value = entry.strip()
        if not value:
            continue
        parts = [part.strip() for part in value.split(":")]
        if len(parts) != 3:
            continue
        layer, kind, usd = parts
        try:
            cost = float(usd)
        except ValueError:
            continue
        if cost < 0:
            continue
        parsed[(layer.lower(), kind.lower())] = cost
    return parsed
