from __future__ import annotations

import sys
import textwrap
from pathlib import Path

import allure
import pytest
from conftest import FakeRunner, StaticVerifier, completed, layer_settings

from layer_bridge.backend.base import ProcessRunResult
from layer_bridge.backend.jsonl_backend import JsonLinesProcessPool, JsonLinesSession
from layer_bridge.cache.auth_cache import AuthStatusCache
from layer_bridge.errors import (
    AuthenticationError,
    BackendFailure,
    QuotaExceededError,
    TransientBackendError,
    ValidationError,
)
from layer_bridge.layers.aistudio import AIStudioLayer
from layer_bridge.layers.claude import ClaudeLayer, build_synthesis_prompt
from layer_bridge.layers.gemini import GeminiLayer, extract_sources
from layer_bridge.media import MediaStore
from layer_bridge.models import (
    FileReference,
    FileType,
    LayerType,
    ProcessingOptions,
    ReasoningDepth,
    Task,
    TaskKind,
)

pytestmark = [
    allure.epic("Layer Runtime"),
    allure.feature("Backend Adapters"),
]

CLAUDE_TEMPLATE = "claude -p --model {model} {flags} -- {prompt}"
GEMINI_TEMPLATE = "gemini --model {model} {flags} --prompt {prompt}"


def _claude(runner: FakeRunner, verifier: StaticVerifier | None = None) -> ClaudeLayer:
    return ClaudeLayer(
        settings=layer_settings(CLAUDE_TEMPLATE, model="sonnet"),
        auth_cache=AuthStatusCache(jitter_ratio=0.0),
        verifier=verifier or StaticVerifier(),
        runner=runner,
    )


def _gemini(runner: FakeRunner) -> GeminiLayer:
    return GeminiLayer(
        settings=layer_settings(GEMINI_TEMPLATE, model="gemini-2.5-pro"),
        auth_cache=AuthStatusCache(jitter_ratio=0.0),
        verifier=StaticVerifier(),
        runner=runner,
    )


@pytest.mark.asyncio
async def test_claude_reasoning_builds_structured_prompt() -> None:
    runner = FakeRunner(completed("Step 1...\nConclusion: yes\n"))
    task = Task(
        kind=TaskKind.COMPLEX_REASONING,
        prompt="Is P equal to NP?",
        options=ProcessingOptions(depth=ReasoningDepth.DEEP, domain="complexity theory"),
    )

    result = await _claude(runner).execute(task)

    argv = runner.requests[0].argv
    assert argv[:5] == ["claude", "-p", "--model", "sonnet", "--"]
    prompt = argv[5]
    assert prompt.startswith("You are an expert in complexity theory.")
    assert "Problem:\nIs P equal to NP?" in prompt
    assert "Conclusion:" in prompt
    assert result.success
    assert result.data == "Step 1...\nConclusion: yes"
    assert result.metadata.layer is LayerType.CLAUDE
    assert result.metadata.model == "sonnet"
    assert result.metadata.cost == 0.0


def test_synthesis_prompt_lists_named_inputs() -> None:
    prompt = build_synthesis_prompt("Combine", {"research": "R", "data": {"k": 1}})

    assert "--- research ---\nR" in prompt
    assert '--- data ---\n{"k": 1}' in prompt


@pytest.mark.asyncio
async def test_claude_maps_failures_to_typed_errors() -> None:
    quota = FakeRunner(completed("", exit_code=1, stderr="Usage limit reached"))
    with pytest.raises(QuotaExceededError):
        await _claude(quota).execute(Task(kind=TaskKind.TEXT_PROMPT, prompt="hi"))

    timed_out = FakeRunner(
        ProcessRunResult(exit_code=124, timed_out=True, stdout="", stderr="Timed out"),
    )
    with pytest.raises(TransientBackendError) as error:
        await _claude(timed_out).execute(Task(kind=TaskKind.TEXT_PROMPT, prompt="hi"))
    assert error.value.timed_out is True


@pytest.mark.asyncio
async def test_failed_credentials_block_execution() -> None:
    runner = FakeRunner()
    layer = _claude(runner, StaticVerifier(success=False))

    with pytest.raises(AuthenticationError) as error:
        await layer.execute(Task(kind=TaskKind.TEXT_PROMPT, prompt="hi"))

    assert error.value.remediation == "log in to claude"
    assert runner.requests == []
    assert await layer.is_available() is False


def test_claude_and_gemini_capability_predicates() -> None:
    claude = _claude(FakeRunner())
    gemini = _gemini(FakeRunner())
    image = FileReference(path="photo.png", type=FileType.IMAGE)
    audio = FileReference(path="talk.mp3", type=FileType.AUDIO)

    assert claude.can_handle(Task(kind=TaskKind.SYNTHESIZE, prompt="x"))
    assert not claude.can_handle(Task(kind=TaskKind.GROUNDED_SEARCH, prompt="x"))
    assert not claude.can_handle(Task(kind=TaskKind.TEXT_PROMPT, prompt="x", files=(image,)))
    assert not claude.can_handle(Task(kind=TaskKind.TEXT_PROMPT, prompt="Draw a dragon"))
    assert gemini.can_handle(Task(kind=TaskKind.IMAGE_ANALYSIS, prompt="x", files=(image,)))
    assert not gemini.can_handle(Task(kind=TaskKind.TEXT_PROMPT, prompt="x", files=(audio,)))
    assert not gemini.can_handle(Task(kind=TaskKind.COMPLEX_REASONING, prompt="x"))


@pytest.mark.asyncio
async def test_gemini_grounded_search_adds_flag_and_sources() -> None:
    output = "Rates rose [1].\nSource: Reuters\nSee https://example.com/rates."
    runner = FakeRunner(completed(output))

    result = await _gemini(runner).execute(
        Task(kind=TaskKind.GROUNDED_SEARCH, prompt="Latest interest rates"),
    )

    assert runner.requests[0].argv == [
        "gemini",
        "--model",
        "gemini-2.5-pro",
        "--search",
        "--prompt",
        "Latest interest rates",
    ]
    assert result.metadata.grounded is True
    assert result.metadata.sources == ("Reuters", "https://example.com/rates")


@pytest.mark.asyncio
async def test_gemini_references_files_without_search() -> None:
    runner = FakeRunner(completed("summary"))
    notes = FileReference(path="notes.txt", type=FileType.TEXT)

    result = await _gemini(runner).execute(
        Task(kind=TaskKind.DOCUMENT_ANALYSIS, prompt="Summarize", files=(notes,)),
    )

    argv = runner.requests[0].argv
    assert "--search" not in argv
    assert argv[-1] == "@notes.txt\nSummarize"
    assert result.metadata.grounded is False


def test_extract_sources_deduplicates_in_order() -> None:
    text = "\n".join(
        [
            "Answer https://a.com/x.",
            "Sources: Reuters",
            "References: https://b.org/y",
            "again https://a.com/x",
        ],
    )

    assert extract_sources(text) == ("https://a.com/x", "Reuters", "https://b.org/y")


_AISTUDIO_SERVER = textwrap.dedent(
    """
    import json
    import sys

    for line in sys.stdin:
        message = json.loads(line)
        if "id" not in message:
            continue
        if message["method"] == "initialize":
            result = {"protocolVersion": "2024-11-05", "capabilities": {}}
        else:
            name = message["params"]["name"]
            arguments = message["params"]["arguments"]
            if name == "generate_image":
                result = {
                    "content": [
                        {"type": "image", "data": "UE5H", "mimeType": "image/png"},
                        {"type": "text", "text": "done"},
                    ],
                }
            elif name == "convert_file":
                result = {"isError": True, "content": [{"type": "text", "text": "unsupported"}]}
            else:
                text = "analysis of " + arguments["user_prompt"]
                result = {"content": [{"type": "text", "text": text}]}
        print(json.dumps({"jsonrpc": "2.0", "id": message["id"], "result": result}))
    """,
)


def _aistudio(tmp_path: Path) -> tuple[AIStudioLayer, MediaStore, list[int]]:
    script = tmp_path / "aistudio_server.py"
    script.write_text(_AISTUDIO_SERVER, "utf-8")
    spawned: list[int] = []

    async def spawn() -> JsonLinesSession:
        spawned.append(1)
        return await JsonLinesSession.spawn(
            [sys.executable, "-u", str(script)],
            layer=LayerType.AISTUDIO,
        )

    store = MediaStore(tmp_path / "media")
    layer = AIStudioLayer(
        settings=layer_settings("unused-server-command", model="gemini-2.5-flash"),
        auth_cache=AuthStatusCache(jitter_ratio=0.0),
        verifier=StaticVerifier(),
        media_store=store,
        pool=JsonLinesProcessPool(spawn),
    )
    return layer, store, spawned


@pytest.mark.asyncio
async def test_aistudio_generates_and_stores_media(tmp_path: Path) -> None:
    layer, store, spawned = _aistudio(tmp_path)
    try:
        image = await layer.execute(
            Task(kind=TaskKind.TEXT_PROMPT, prompt="Generate an image of a red fox"),
        )
        analysis = await layer.execute(
            Task(
                kind=TaskKind.DOCUMENT_ANALYSIS,
                prompt="Key findings?",
                files=(FileReference(path="report.pdf", type=FileType.PDF),),
            ),
        )
    finally:
        await layer.aclose()
        await store.aclose()

    saved = Path(image.metadata.media_paths[0])
    assert saved.parent == tmp_path / "media" / "image"
    assert saved.read_bytes() == b"PNG"
    assert image.data["text"] == "done"
    assert image.metadata.cost == pytest.approx(0.1)
    assert analysis.data == "analysis of Key findings?"
    assert len(spawned) == 1


@pytest.mark.asyncio
async def test_aistudio_tool_errors_and_missing_params(tmp_path: Path) -> None:
    layer, store, _ = _aistudio(tmp_path)
    notes = FileReference(path="notes.docx", type=FileType.DOCUMENT)
    try:
        with pytest.raises(ValidationError, match="target_format"):
            await layer.execute(Task(kind=TaskKind.CONVERT_FILE, prompt="x", files=(notes,)))
        with pytest.raises(BackendFailure, match="convert_file failed: unsupported"):
            await layer.execute(
                Task(
                    kind=TaskKind.CONVERT_FILE,
                    prompt="x",
                    files=(notes,),
                    params={"target_format": "pdf"},
                ),
            )
    finally:
        await layer.aclose()
        await store.aclose()


@pytest.mark.asyncio
async def test_aistudio_routing_predicates(tmp_path: Path) -> None:
    layer, store, _ = _aistudio(tmp_path)
    try:
        assert layer.effective_kind(Task(kind=TaskKind.TEXT_PROMPT, prompt="Make a video")) is (
            TaskKind.GENERATE_VIDEO
        )
        assert layer.effective_kind(Task(kind=TaskKind.TEXT_PROMPT, prompt="hello")) is (
            TaskKind.GENERATE_CONTENT
        )
        assert not layer.can_handle(Task(kind=TaskKind.TEXT_PROMPT, prompt="hello"))
        assert not layer.can_handle(Task(kind=TaskKind.COMPLEX_REASONING, prompt="x"))
        assert layer.timeout_for(Task(kind=TaskKind.TEXT_PROMPT, prompt="Make a video")) == 300
    finally:
        await layer.aclose()
        await store.aclose()
