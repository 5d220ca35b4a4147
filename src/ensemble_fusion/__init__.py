"""Fusion core for reasoning ensembles: merge, synthesize, observe, checkpoint."""

__version__ = "0.1.0"
