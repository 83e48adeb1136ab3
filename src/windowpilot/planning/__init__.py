"""Usage profiles, trigger optimization and adaptive adjustment."""

from windowpilot.planning.adaptive import AdaptiveLearner, AdjustmentResult, blend_times
from windowpilot.planning.profile import build_profile, compute_actual_hourly_usage
from windowpilot.planning.trigger_optimizer import (
    OptimizationResult,
    calculate_optimal_start_times,
    find_optimal_trigger,
)

__all__ = [
    "AdaptiveLearner",
    "AdjustmentResult",
    "blend_times",
    "build_profile",
    "compute_actual_hourly_usage",
    "OptimizationResult",
    "calculate_optimal_start_times",
    "find_optimal_trigger",
]
