"""Domain models for tasks, files and layer results."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any


class LayerType(str, Enum):
    """Backends the bridge can dispatch to."""

    CLAUDE = "claude"
    GEMINI = "gemini"
    AISTUDIO = "aistudio"


class FileType(str, Enum):
    """Coarse file categories used for routing."""

    IMAGE = "image"
    AUDIO = "audio"
    PDF = "pdf"
    DOCUMENT = "document"
    TEXT = "text"
    VIDEO = "video"


class TaskKind(str, Enum):
    """Closed set of task kinds understood by the adapters."""

    TEXT_PROMPT = "text_prompt"
    COMPLEX_REASONING = "complex_reasoning"
    SYNTHESIZE = "synthesize"
    GROUNDED_SEARCH = "grounded_search"
    MULTIMODAL = "multimodal"
    DOCUMENT_ANALYSIS = "document_analysis"
    IMAGE_ANALYSIS = "image_analysis"
    AUDIO_ANALYSIS = "audio_analysis"
    CONVERT_FILE = "convert_file"
    GENERATE_IMAGE = "generate_image"
    GENERATE_VIDEO = "generate_video"
    GENERATE_AUDIO = "generate_audio"
    GENERATE_CONTENT = "generate_content"

    @property
    def is_media_generation(self) -> bool:
        return self in MEDIA_GENERATION_KINDS


MEDIA_GENERATION_KINDS = frozenset(
    {TaskKind.GENERATE_IMAGE, TaskKind.GENERATE_VIDEO, TaskKind.GENERATE_AUDIO},
)


class ExecutionMode(str, Enum):
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    ADAPTIVE = "adaptive"


class QualityLevel(str, Enum):
    FAST = "fast"
    BALANCED = "balanced"
    QUALITY = "quality"


class ReasoningDepth(str, Enum):
    SHALLOW = "shallow"
    MEDIUM = "medium"
    DEEP = "deep"


class Complexity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


_EXTENSION_TYPES: dict[str, FileType] = {
    **dict.fromkeys(
        ("jpg", "jpeg", "png", "gif", "bmp", "webp", "svg", "tiff"),
        FileType.IMAGE,
    ),
    **dict.fromkeys(("mp3", "wav", "m4a", "flac", "ogg", "aac"), FileType.AUDIO),
    **dict.fromkeys(("mp4", "avi", "mov", "mkv", "webm"), FileType.VIDEO),
    "pdf": FileType.PDF,
    **dict.fromkeys(
        ("doc", "docx", "odt", "rtf", "ppt", "pptx", "xls", "xlsx", "epub"),
        FileType.DOCUMENT,
    ),
}


def detect_file_type(path: str | Path) -> FileType:
    """Map a file extension to its coarse type; unknown extensions are text."""

    suffix = Path(path).suffix.lower().lstrip(".")
    return _EXTENSION_TYPES.get(suffix, FileType.TEXT)


@dataclass(frozen=True, slots=True)
class FileReference:
    """Caller-owned file the bridge only reads."""

    path: str
    type: FileType
    size: int | None = None
    encoding: str | None = None

    @classmethod
    def from_path(cls, path: str | Path) -> FileReference:
        resolved = Path(path)
        size = resolved.stat().st_size if resolved.is_file() else None
        return cls(path=str(resolved), type=detect_file_type(resolved), size=size)


@dataclass(frozen=True, slots=True)
class ProcessingOptions:
    """Caller-tunable knobs for one task."""

    layer_priority: LayerType | None = None
    execution_mode: ExecutionMode = ExecutionMode.ADAPTIVE
    quality_level: QualityLevel = QualityLevel.BALANCED
    temperature: float | None = None
    max_tokens: int | None = None
    timeout: float | None = None
    use_cache: bool = True
    depth: ReasoningDepth = ReasoningDepth.MEDIUM
    domain: str | None = None
    use_search: bool = False


@dataclass(frozen=True, slots=True)
class Task:
    """Unit of work dispatched to exactly one layer at a time."""

    kind: TaskKind
    prompt: str
    files: tuple[FileReference, ...] = ()
    options: ProcessingOptions = field(default_factory=ProcessingOptions)
    timeout: float | None = None
    max_attempts: int | None = None
    params: Mapping[str, Any] = field(default_factory=dict)

    @property
    def explicit_layer(self) -> LayerType | None:
        return self.options.layer_priority

    @property
    def explicit_timeout(self) -> float | None:
        if self.timeout is not None:
            return self.timeout
        return self.options.timeout


@dataclass(frozen=True, slots=True)
class ResultMetadata:
    """Normalized per-invocation metadata."""

    layer: LayerType | None
    duration: float = 0.0
    tokens_used: int | None = None
    cost: float | None = None
    cache_hit: bool = False
    cache_soft_hit: bool = False
    cache_similarity: float | None = None
    model: str | None = None
    attempts: int = 1
    layers_tried: tuple[LayerType, ...] = ()
    sources: tuple[str, ...] = ()
    grounded: bool = False
    media_paths: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class LayerResult:
    """Discriminated success/failure value produced by one invocation."""

    success: bool
    data: Any
    metadata: ResultMetadata
    error: str | None = None
    remediation: str | None = None

    @property
    def text(self) -> str:
        return output_text(self.data)


def output_text(data: Any) -> str:
    """Render layer output as text for templating and summaries."""

    if data is None:
        return ""
    if isinstance(data, str):
        return data
    return json.dumps(data, ensure_ascii=False, default=str)


class FailureClass(str, Enum):
    """Normalized failure classes used by retry and fallback policy."""

    TIMEOUT = "timeout"
    BACKEND_TRANSIENT = "backend_transient"
    BACKEND_NON_RETRYABLE = "backend_non_retryable"
    BILLING_OR_QUOTA = "billing_or_quota"
    RATE_LIMITED = "rate_limited"
    ACCESS_OR_AUTH = "access_or_auth"
    MODEL_NOT_AVAILABLE = "model_not_available"
    INVALID_INPUT = "invalid_input"
