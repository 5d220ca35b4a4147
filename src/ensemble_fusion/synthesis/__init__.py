"""Synthesis: strategies, streaming synthesizer, explanation, contributions."""

from ensemble_fusion.synthesis.collector import OutputCollector
from ensemble_fusion.synthesis.contributions import ContributionReport, ContributionTracker
from ensemble_fusion.synthesis.explanation import ExplanationLayer, ExplanationTracker
from ensemble_fusion.synthesis.models import SynthesisChunk, SynthesisInput, SynthesisResult
from ensemble_fusion.synthesis.strategies import StrategyConfig, get_strategy
from ensemble_fusion.synthesis.synthesizer import (
    SynthesisEngine,
    SynthesisStream,
    Synthesizer,
    parse_and_validate_synthesis_output,
    parse_synthesis_output,
)

__all__ = [
    "ContributionReport",
    "ContributionTracker",
    "ExplanationLayer",
    "ExplanationTracker",
    "OutputCollector",
    "StrategyConfig",
    "SynthesisChunk",
    "SynthesisEngine",
    "SynthesisInput",
    "SynthesisResult",
    "SynthesisStream",
    "Synthesizer",
    "get_strategy",
    "parse_and_validate_synthesis_output",
    "parse_synthesis_output",
]
