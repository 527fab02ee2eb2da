# trajectory_stack/utils/config_loader.py
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from trajectory_stack.controllers.trajectory_types import (
    AccelerationBound,
    ConfigurationError,
    ControllerConfig,
    CostCoefficients,
    CostFieldOptions,
)

DEFAULT_CONFIG_PATH = (
    Path(__file__).resolve().parent.parent / "controllers" / "trajectory_controller.yaml"
)

# section -> {yaml key: ControllerConfig field}
_FLAT_KEYS = {
    "node": {"debug": "debug", "verbose": "verbose"},
    "controller": {
        "timestep": "timestep",
        "horizon": "horizon",
        "samples": "num_samples",
        "seed": "seed",
        "warm_start": "warm_start",
        "device": "device",
    },
    "cost_function": {"max_velocity": "velocity_limit"},
    "model": {
        "axle_length": "axle_length",
        "max_angular_velocity": "angular_velocity_limit",
    },
    "sampling": {
        "v_std": "v_std",
        "w_std": "w_std",
        "nominal_velocity": "nominal_velocity",
    },
}
_NESTED_KEYS = {
    "signed_distance_field": set(),
    "cost_function": {"coefficients"},
    "model": {"acceleration_bound", "angular_acceleration_bound"},
}


def load_yaml(config_path: Union[str, Path]) -> Dict[str, Any]:
    """Load configuration from YAML file."""
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        raw = yaml.safe_load(f)

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Top level of {config_path} must be a mapping")
    return raw


def _build(cls, section: str, values: Any):
    if not isinstance(values, dict):
        raise ConfigurationError(f"'{section}' must be a mapping, got {values!r}")
    try:
        return cls(**values)
    except TypeError as e:
        raise ConfigurationError(f"Invalid keys in '{section}': {e}") from e


def config_from_dict(raw: Dict[str, Any]) -> ControllerConfig:
    """
    Build a ControllerConfig from the nested parameter layout used in
    trajectory_controller.yaml. Missing keys keep their dataclass default;
    unknown sections or keys are rejected.
    """
    known_sections = set(_FLAT_KEYS) | set(_NESTED_KEYS)
    unknown = set(raw) - known_sections
    if unknown:
        raise ConfigurationError(f"Unknown config sections: {sorted(unknown)}")

    kwargs: Dict[str, Any] = {}
    for section, values in raw.items():
        if values is None:
            continue
        if not isinstance(values, dict):
            raise ConfigurationError(f"'{section}' must be a mapping, got {values!r}")

        if section == "signed_distance_field":
            kwargs["cost_field"] = _build(CostFieldOptions, section, values)
            continue

        flat = _FLAT_KEYS.get(section, {})
        nested = _NESTED_KEYS.get(section, set())
        for key, value in values.items():
            if key in flat:
                kwargs[flat[key]] = value
            elif key == "coefficients" and key in nested:
                kwargs["cost_coefficients"] = _build(CostCoefficients, f"{section}/{key}", value)
            elif key in ("acceleration_bound", "angular_acceleration_bound") and key in nested:
                kwargs[key] = _build(AccelerationBound, f"{section}/{key}", value)
            else:
                raise ConfigurationError(f"Unknown config key: {section}/{key}")

    return ControllerConfig(**kwargs)


def load_config(config_path: Optional[Union[str, Path]] = None) -> ControllerConfig:
    """Load and validate a ControllerConfig (packaged defaults when no path is given)"""
    path = DEFAULT_CONFIG_PATH if config_path is None else Path(config_path)
    config = config_from_dict(load_yaml(path))
    if config.verbose:
        print(f"Loaded config from: {path}")
    return config
