"""Workflow definition builders for composite tasks."""

from layer_bridge.workflow.builders.analysis import AnalysisOptions, AnalysisType, build_analysis
from layer_bridge.workflow.builders.conversion import (
    SUPPORTED_CONVERSIONS,
    ConversionOptions,
    build_conversion,
    validate_conversion,
)
from layer_bridge.workflow.builders.extraction import (
    ExtractionMode,
    ExtractionOptions,
    ExtractionType,
    build_extraction,
    build_focused_extraction,
)
from layer_bridge.workflow.builders.generation import (
    GenerationOptions,
    GenerationType,
    build_generation,
)

__all__ = [
    "SUPPORTED_CONVERSIONS",
    "AnalysisOptions",
    "AnalysisType",
    "ConversionOptions",
    "ExtractionMode",
    "ExtractionOptions",
    "ExtractionType",
    "GenerationOptions",
    "GenerationType",
    "build_analysis",
    "build_conversion",
    "build_extraction",
    "build_focused_extraction",
    "build_generation",
    "validate_conversion",
]
