"""Process runner interface used by the CLI-backed adapters."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from layer_bridge.models import LayerType


@dataclass(slots=True)
class ProcessRunRequest:
    """Inputs required to run one backend process to completion."""

    argv: list[str]
    timeout_seconds: float
    layer: LayerType | None = None
    stdin_text: str | None = None
    env: dict[str, str] | None = None
    cwd: Path | None = None
    grace_seconds: float = 2.0


@dataclass(slots=True)
class ProcessRunResult:
    """Captured outcome of a finished or timed-out process."""

    exit_code: int
    timed_out: bool
    stdout: str
    stderr: str
    duration: float = 0.0
    argv: list[str] = field(default_factory=list)


class ProcessRunner(Protocol):
    """Protocol implemented by process runners."""

    async def run(self, request: ProcessRunRequest) -> ProcessRunResult:
        """Run the process and return its captured output."""
