"""Composite lead scoring: remote relevance estimate plus local weighting."""

from .engine import ScoringEngine, compute_final_score, parse_inference_score
from .inference import InferenceClient, OpenAIInferenceClient

__all__ = [
    "ScoringEngine",
    "compute_final_score",
    "parse_inference_score",
    "InferenceClient",
    "OpenAIInferenceClient",
]
