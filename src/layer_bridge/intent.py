"""Prompt intent classification used by routing and adapters.

Keyword matching is approximate; callers only rely on the documented
keyword sets below. Swap in another `IntentClassifier` to change routing
without touching adapter dispatch.
"""

from __future__ import annotations

import re
from typing import Protocol

from layer_bridge.models import TaskKind

CURRENT_INFO_KEYWORDS: tuple[str, ...] = (
    "latest",
    "recent",
    "current",
    "today",
    "now",
    "news",
    "trends",
    "2024",
    "2025",
    "this year",
    "this month",
    "this week",
    "search",
    "find",
    "what is happening",
    "breaking",
    "update",
)
GENERATION_KEYWORDS: tuple[str, ...] = (
    "generate",
    "create",
    "make",
    "produce",
    "build",
    "design",
    "draw",
    "paint",
    "compose",
    "write",
    "author",
    "craft",
    "image of",
    "picture of",
)
CODE_KEYWORDS: tuple[str, ...] = (
    "function",
    "class",
    "import",
    "def",
    "code",
    "programming",
    "script",
    "algorithm",
    "debug",
    "refactor",
    "compile",
    "syntax",
)
_MEDIA_NOUNS: dict[TaskKind, tuple[str, ...]] = {
    TaskKind.GENERATE_IMAGE: (
        "image",
        "picture",
        "photo",
        "illustration",
        "drawing",
        "logo",
        "icon",
        "artwork",
    ),
    TaskKind.GENERATE_VIDEO: ("video", "animation", "clip", "movie"),
    TaskKind.GENERATE_AUDIO: ("audio", "speech", "voice", "narration", "podcast", "sound"),
}
_IMAGE_ONLY_VERBS: tuple[str, ...] = ("draw", "paint", "image of", "picture of")


class IntentClassifier(Protocol):
    """Classifies free-text prompts into routing signals."""

    def needs_current_info(self, text: str) -> bool: ...

    def is_generation(self, text: str) -> bool: ...

    def media_kind(self, text: str) -> TaskKind | None: ...

    def is_code_related(self, text: str) -> bool: ...


class KeywordIntentClassifier:
    """Whole-word keyword matcher over the documented keyword sets."""

    def __init__(self) -> None:
        self._current_info = _compile(CURRENT_INFO_KEYWORDS)
        self._generation = _compile(GENERATION_KEYWORDS)
        self._code = _compile(CODE_KEYWORDS)
        self._image_only = _compile(_IMAGE_ONLY_VERBS)
        self._media = {kind: _compile(nouns, plural=True) for kind, nouns in _MEDIA_NOUNS.items()}

    def needs_current_info(self, text: str) -> bool:
        return self._current_info.search(text) is not None

    def is_generation(self, text: str) -> bool:
        return self._generation.search(text) is not None

    def media_kind(self, text: str) -> TaskKind | None:
        if not self.is_generation(text):
            return None
        for kind in (TaskKind.GENERATE_VIDEO, TaskKind.GENERATE_AUDIO, TaskKind.GENERATE_IMAGE):
            if self._media[kind].search(text) is not None:
                return kind
        if self._image_only.search(text) is not None:
            return TaskKind.GENERATE_IMAGE
        return None

    def is_code_related(self, text: str) -> bool:
        return self._code.search(text) is not None


def _compile(keywords: tuple[str, ...], *, plural: bool = False) -> re.Pattern[str]:
    suffix = "s?" if plural else ""
    alternatives = "|".join(re.escape(keyword) for keyword in keywords)
    return re.compile(rf"\b(?:{alternatives}){suffix}\b", re.IGNORECASE)
