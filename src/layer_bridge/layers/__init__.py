"""Backend adapters."""

from layer_bridge.layers.aistudio import AIStudioLayer
from layer_bridge.layers.base import CliLayerAdapter, InvocationOutput, LayerAdapter
from layer_bridge.layers.claude import ClaudeLayer
from layer_bridge.layers.gemini import GeminiLayer

__all__ = [
    "AIStudioLayer",
    "ClaudeLayer",
    "CliLayerAdapter",
    "GeminiLayer",
    "InvocationOutput",
    "LayerAdapter",
]
