"""
Prompt routing package.

Maps free text to a backend with an explainable, non-probabilistic score.
"""
from .schema import Backend, RoutingDecision, RoutingScores
from .scoring import choose_backend, score_prompt

__all__ = ["Backend", "RoutingDecision", "RoutingScores", "choose_backend", "score_prompt"]
