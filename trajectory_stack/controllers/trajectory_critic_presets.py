# In: trajectory_stack/controllers/trajectory_critic_presets.py

"""Preset cost coefficients for different tracking styles"""

from .trajectory_types import CostCoefficients

# BALANCED (default) - Works well in most scenarios
BALANCED_WEIGHTS = {
    "path": 1.0,
    "velocity": 1.0,
    "acceleration": 0.1,
    "angular_acceleration": 0.1,
}

# AGGRESSIVE - Hug the path, accept jerky motion
AGGRESSIVE_WEIGHTS = {
    "path": 3.0,               # ↑ Follow path strictly
    "velocity": 0.5,
    "acceleration": 0.02,      # ↓ Allow jerkier motion
    "angular_acceleration": 0.02,
}

# SMOOTH - Prioritize comfort over tracking error
SMOOTH_WEIGHTS = {
    "path": 1.0,
    "velocity": 2.0,
    "acceleration": 0.5,       # ↑↑ Very smooth motion
    "angular_acceleration": 0.5,
}

PRESETS = {
    "balanced": BALANCED_WEIGHTS,
    "aggressive": AGGRESSIVE_WEIGHTS,
    "smooth": SMOOTH_WEIGHTS,
}


def coefficients_from_preset(name: str) -> CostCoefficients:
    try:
        return CostCoefficients(**PRESETS[name.lower()])
    except KeyError:
        raise KeyError(f"Unknown preset '{name}', available: {sorted(PRESETS)}") from None
