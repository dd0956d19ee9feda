"""Timeout policy derived from task shape."""

from __future__ import annotations

from layer_bridge.models import Task, TaskKind

PER_FILE_RATIO = 0.5

# (floor seconds, multiplier) for media generation
_MEDIA_FLOORS: dict[TaskKind, tuple[float, float]] = {
    TaskKind.GENERATE_IMAGE: (240.0, 1.5),
    TaskKind.GENERATE_AUDIO: (240.0, 1.5),
    TaskKind.GENERATE_VIDEO: (300.0, 2.0),
}


def compute_timeout(task: Task, *, base_seconds: float) -> float:
    """Return the timeout for one backend invocation of `task`.

    An explicit task timeout always wins. Otherwise the base grows linearly
    with attached files, and media generation never drops below its floor.
    """

    explicit = task.explicit_timeout
    if explicit is not None:
        return explicit

    timeout = base_seconds * (1 + PER_FILE_RATIO * len(task.files))
    floor = _MEDIA_FLOORS.get(task.kind)
    if floor is not None:
        minimum, multiplier = floor
        timeout = max(minimum, timeout * multiplier)
    return timeout
