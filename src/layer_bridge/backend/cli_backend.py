"""Asyncio subprocess runner for CLI backends."""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
import time
from collections.abc import Sequence

from layer_bridge.backend.base import ProcessRunRequest, ProcessRunResult
from layer_bridge.errors import BackendFailure, TransientBackendError, ValidationError

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124
_FLAGS_TOKEN = "{flags}"


class CliProcessRunner:
    """Run one CLI invocation, enforcing timeout with terminate then kill."""

    async def run(self, request: ProcessRunRequest) -> ProcessRunResult:
        if not request.argv:
            raise ValidationError("CLI backend command is empty.", layer=request.layer)

        env = None
        if request.env is not None:
            env = os.environ.copy()
            env.update(request.env)

        stdin_payload = request.stdin_text.encode("utf-8") if request.stdin_text else None
        logger.debug("Spawning %s (timeout %.1fs)", request.argv[0], request.timeout_seconds)
        started = time.monotonic()
        try:
            process = await asyncio.create_subprocess_exec(
                *request.argv,
                stdin=asyncio.subprocess.PIPE if stdin_payload else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                cwd=request.cwd,
            )
        except FileNotFoundError as error:
            raise BackendFailure(
                f"CLI backend command not found: {request.argv[0]}",
                layer=request.layer,
                remediation=f"Install {request.argv[0]} or fix the configured command.",
            ) from error
        except OSError as error:
            raise TransientBackendError(
                f"CLI backend failed to start: {error}",
                layer=request.layer,
            ) from error

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(stdin_payload),
                timeout=request.timeout_seconds,
            )
        except TimeoutError:
            logger.warning(
                "%s timed out after %.1fs, terminating",
                request.argv[0],
                request.timeout_seconds,
            )
            await terminate_process(process, grace_seconds=request.grace_seconds)
            return ProcessRunResult(
                exit_code=TIMEOUT_EXIT_CODE,
                timed_out=True,
                stdout="",
                stderr=f"Timed out after {request.timeout_seconds:.1f}s",
                duration=time.monotonic() - started,
                argv=list(request.argv),
            )
        except asyncio.CancelledError:
            await terminate_process(process, grace_seconds=request.grace_seconds)
            raise

        return ProcessRunResult(
            exit_code=process.returncode if process.returncode is not None else -1,
            timed_out=False,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            duration=time.monotonic() - started,
            argv=list(request.argv),
        )


async def terminate_process(
    process: asyncio.subprocess.Process,
    *,
    grace_seconds: float = 2.0,
) -> None:
    """Send SIGTERM, then SIGKILL if the process outlives the grace period."""

    if process.returncode is not None:
        return
    try:
        process.terminate()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(process.wait(), timeout=grace_seconds)
    except TimeoutError:
        try:
            process.kill()
        except ProcessLookupError:
            return
        await process.wait()


def build_run_args(
    *,
    command_template: str,
    model: str,
    prompt: str,
    flags: Sequence[str] = (),
) -> list[str]:
    """Render a command template into argv.

    Supported placeholders:
    - `{prompt}`: required, replaced by the prompt as one argument
    - `{model}`: model name
    - `{flags}`: standalone token expanded to zero or more adapter flags
    """

    stripped = command_template.strip()
    if not stripped:
        raise ValidationError("CLI backend command template is empty.")
    if "{prompt}" not in stripped:
        raise ValidationError("CLI backend command template must include {prompt}.")

    argv: list[str] = []
    for token in shlex.split(stripped):
        if token == _FLAGS_TOKEN:
            argv.extend(flags)
            continue
        try:
            argv.append(token.format(model=model, prompt=prompt))
        except (KeyError, IndexError) as error:
            raise ValidationError(
                f"Unsupported command template placeholder: {error}",
            ) from error
    if not argv:
        raise ValidationError("CLI backend command template rendered empty command.")
    return argv
