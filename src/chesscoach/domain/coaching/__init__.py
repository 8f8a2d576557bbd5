"""Auto-play and coaching services built on the engine session."""

from .auto_play import AutoPlayCoordinator
from .evaluator import CoachingEvaluation, CoachingEvaluator

__all__ = ["AutoPlayCoordinator", "CoachingEvaluation", "CoachingEvaluator"]
