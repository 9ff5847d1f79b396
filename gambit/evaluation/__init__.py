from .gating import GatingDecision, gate_model
from .match import EvaluationResult, evaluate_policies

__all__ = ["EvaluationResult", "GatingDecision", "evaluate_policies", "gate_model"]
