"""Run planning: presets, suggestions, pane assignment, preambles and estimates."""

from ensemble_fusion.planning.assignment import (
    AgentPane,
    ModeAssignment,
    assign_by_category,
    assign_explicit,
    assign_round_robin,
    validate_assignments,
)
from ensemble_fusion.planning.estimate import (
    EnsembleEstimate,
    EstimateInput,
    Estimator,
    ModeAlternative,
    ModeEstimate,
)
from ensemble_fusion.planning.preamble import PreambleEngine
from ensemble_fusion.planning.presets import EnsemblePreset, load_presets
from ensemble_fusion.planning.suggest import SuggestionEngine, SuggestionResult

__all__ = [
    "AgentPane",
    "EnsembleEstimate",
    "EnsemblePreset",
    "EstimateInput",
    "Estimator",
    "ModeAlternative",
    "ModeAssignment",
    "PreambleEngine",
    "SuggestionEngine",
    "SuggestionResult",
    "assign_by_category",
    "assign_explicit",
    "assign_round_robin",
    "load_presets",
    "validate_assignments",
]
