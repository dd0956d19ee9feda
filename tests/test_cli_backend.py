from __future__ import annotations

import sys

import allure
import pytest

from layer_bridge.backend.base import ProcessRunRequest
from layer_bridge.backend.cli_backend import TIMEOUT_EXIT_CODE, CliProcessRunner, build_run_args
from layer_bridge.errors import BackendFailure, ValidationError
from layer_bridge.models import LayerType

pytestmark = [
    allure.epic("Layer Runtime"),
    allure.feature("CLI Command Rendering & Execution"),
]


def test_build_run_args_expands_flags_and_keeps_prompt_as_one_argument() -> None:
    argv = build_run_args(
        command_template="gemini --model {model} {flags} --prompt {prompt}",
        model="gemini-2.5-pro",
        prompt="what's {new} today?",
        flags=["--search"],
    )

    assert argv == [
        "gemini",
        "--model",
        "gemini-2.5-pro",
        "--search",
        "--prompt",
        "what's {new} today?",
    ]


def test_build_run_args_drops_empty_flags() -> None:
    argv = build_run_args(
        command_template="claude -p --model {model} {flags} -- {prompt}",
        model="sonnet",
        prompt="hi",
    )

    assert argv == ["claude", "-p", "--model", "sonnet", "--", "hi"]


@pytest.mark.parametrize(
    ("template", "message"),
    [
        ("   ", "empty"),
        ("claude --model {model}", "must include {prompt}"),
        ("claude --out {output} {prompt}", "Unsupported command template placeholder"),
    ],
)
def test_build_run_args_rejects_bad_templates(template: str, message: str) -> None:
    with pytest.raises(ValidationError, match=message):
        build_run_args(command_template=template, model="m", prompt="p")


@pytest.mark.asyncio
async def test_runner_captures_output_and_exit_code() -> None:
    script = "import sys; print('out'); print('err', file=sys.stderr); sys.exit(3)"
    result = await CliProcessRunner().run(
        ProcessRunRequest(argv=[sys.executable, "-c", script], timeout_seconds=30),
    )

    assert result.exit_code == 3
    assert result.timed_out is False
    assert result.stdout.strip() == "out"
    assert result.stderr.strip() == "err"


@pytest.mark.asyncio
async def test_runner_passes_stdin_and_env() -> None:
    script = "import os, sys; print(sys.stdin.read().upper() + os.environ['LB_TEST_VALUE'])"
    result = await CliProcessRunner().run(
        ProcessRunRequest(
            argv=[sys.executable, "-c", script],
            timeout_seconds=30,
            stdin_text="abc",
            env={"LB_TEST_VALUE": "42"},
        ),
    )

    assert result.exit_code == 0
    assert result.stdout.strip() == "ABC42"


@pytest.mark.asyncio
async def test_runner_terminates_on_timeout() -> None:
    result = await CliProcessRunner().run(
        ProcessRunRequest(
            argv=[sys.executable, "-c", "import time; time.sleep(30)"],
            timeout_seconds=0.3,
            grace_seconds=1.0,
        ),
    )

    assert result.timed_out is True
    assert result.exit_code == TIMEOUT_EXIT_CODE
    assert "Timed out" in result.stderr


@pytest.mark.asyncio
async def test_runner_reports_missing_command_and_empty_argv() -> None:
    runner = CliProcessRunner()

    with pytest.raises(BackendFailure, match="command not found") as error:
        await runner.run(
            ProcessRunRequest(
                argv=["layer-bridge-missing-binary-xyz"],
                timeout_seconds=5,
                layer=LayerType.CLAUDE,
            ),
        )
    assert error.value.layer is LayerType.CLAUDE
    assert error.value.remediation is not None

    with pytest.raises(ValidationError):
        await runner.run(ProcessRunRequest(argv=[], timeout_seconds=5))
