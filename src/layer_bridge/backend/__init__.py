"""Subprocess transports for backend adapters."""

from layer_bridge.backend.base import ProcessRunner, ProcessRunRequest, ProcessRunResult
from layer_bridge.backend.cli_backend import CliProcessRunner, build_run_args
from layer_bridge.backend.jsonl_backend import (
    JsonLinesProcessPool,
    JsonLinesReply,
    JsonLinesSession,
)

__all__ = [
    "CliProcessRunner",
    "JsonLinesProcessPool",
    "JsonLinesReply",
    "JsonLinesSession",
    "ProcessRunRequest",
    "ProcessRunResult",
    "ProcessRunner",
    "build_run_args",
]
