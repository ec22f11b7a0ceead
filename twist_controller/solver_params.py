"""
Solver configuration.

``SolverParameters`` is an immutable snapshot. The orchestrator swaps whole
snapshots when the configuration is reloaded, so a tick never sees a mix of
old and new values (e.g. a new base_active with a stale base_ratio).

YAML layout (either at top level or under a ``solver:`` key)::

    solver:
      method: damped_weighted        # damped_weighted | unweighted | pose_velocity
      damping_method: manipulability # none | constant | manipulability | least_singular_value
      eps: 0.001
      maxiter: 150
      damping_factor: 0.01
      lambda_max: 0.1
      w_threshold: 0.005
      joint_limit_avoidance: true
      displacement_gain: 0.0
      base_active: false
      base_ratio: 0.0
"""

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Union

import numpy as np
import yaml


class SolverMethod(str, Enum):
    """Joint-velocity resolution strategy."""

    DAMPED_WEIGHTED = "damped_weighted"
    """Damped, joint-limit weighted pseudo-inverse."""

    UNWEIGHTED = "unweighted"
    """Plain Moore-Penrose pseudo-inverse with a hard singular value cutoff (legacy)."""

    POSE_VELOCITY = "pose_velocity"
    """Full pose + velocity solve. Not implemented; always reports so."""


class DampingMethod(str, Enum):
    """How the damping factor lambda is chosen for the damped strategy."""

    NONE = "none"
    CONSTANT = "constant"
    MANIPULABILITY = "manipulability"
    LEAST_SINGULAR_VALUE = "least_singular_value"


def _coerce_enum(enum_cls, value, name: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        allowed = [m.value for m in enum_cls]
        raise ValueError(f"Invalid {name}: {value!r}. Must be one of {allowed}") from None


@dataclass(frozen=True)
class SolverParameters:
    """Configuration for the differential IK constraint solver."""

    method: SolverMethod = SolverMethod.DAMPED_WEIGHTED
    """Resolution strategy."""

    damping_method: DampingMethod = DampingMethod.MANIPULABILITY
    """Damping selection for the damped strategy."""

    eps: float = 1e-3
    """Singular value cutoff; also the threshold for least_singular_value damping."""

    maxiter: int = 150
    """Maximum number of SVD sweeps before reporting a numerical failure."""

    damping_factor: float = 0.01
    """Lambda used by constant damping."""

    lambda_max: float = 0.1
    """Upper bound on lambda for manipulability / least_singular_value damping."""

    w_threshold: float = 0.005
    """Manipulability below which damping kicks in."""

    joint_limit_avoidance: bool = True
    """Weight joints moving toward their limits (weighted least norm)."""

    displacement_gain: float = 0.0
    """Extra lambda per unit norm of the Cartesian displacement since the last tick."""

    base_active: bool = False
    """Append the three virtual mobile base columns to the Jacobian."""

    base_ratio: float = 0.0
    """Attenuation of the base contribution, 0..1."""

    delta_p_vec: np.ndarray = field(default_factory=lambda: np.zeros(6), compare=False, repr=False)
    """Pose vector change since the previous tick. Filled in by the solver each tick."""

    def __post_init__(self):
        object.__setattr__(self, "method", _coerce_enum(SolverMethod, self.method, "method"))
        object.__setattr__(self, "damping_method",
                           _coerce_enum(DampingMethod, self.damping_method, "damping_method"))

        if isinstance(self.maxiter, bool) or int(self.maxiter) != self.maxiter:
            raise ValueError(f"maxiter must be an integer, got {self.maxiter!r}")
        object.__setattr__(self, "maxiter", int(self.maxiter))
        if self.maxiter < 1:
            raise ValueError(f"maxiter must be >= 1, got {self.maxiter}")

        for name in ("eps", "damping_factor", "lambda_max", "w_threshold",
                     "displacement_gain", "base_ratio"):
            value = float(getattr(self, name))
            if not np.isfinite(value):
                raise ValueError(f"{name} must be finite, got {value}")
            object.__setattr__(self, name, value)

        if self.eps <= 0.0:
            raise ValueError(f"eps must be > 0, got {self.eps}")
        if self.w_threshold <= 0.0:
            raise ValueError(f"w_threshold must be > 0, got {self.w_threshold}")
        for name in ("damping_factor", "lambda_max", "displacement_gain"):
            if getattr(self, name) < 0.0:
                raise ValueError(f"{name} must be >= 0, got {getattr(self, name)}")
        if not 0.0 <= self.base_ratio <= 1.0:
            raise ValueError(f"base_ratio must be within [0, 1], got {self.base_ratio}")

        object.__setattr__(self, "base_active", bool(self.base_active))
        object.__setattr__(self, "joint_limit_avoidance", bool(self.joint_limit_avoidance))

        delta = np.array(self.delta_p_vec, dtype=np.float64).reshape(-1)
        if delta.shape[0] != 6:
            raise ValueError(f"delta_p_vec must have 6 components, got {delta.shape[0]}")
        delta.setflags(write=False)
        object.__setattr__(self, "delta_p_vec", delta)

    def with_delta(self, delta_p_vec) -> "SolverParameters":
        """Copy of these parameters carrying a new delta_p_vec."""
        return dataclasses.replace(self, delta_p_vec=delta_p_vec)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method.value,
            "damping_method": self.damping_method.value,
            "eps": self.eps,
            "maxiter": self.maxiter,
            "damping_factor": self.damping_factor,
            "lambda_max": self.lambda_max,
            "w_threshold": self.w_threshold,
            "joint_limit_avoidance": self.joint_limit_avoidance,
            "displacement_gain": self.displacement_gain,
            "base_active": self.base_active,
            "base_ratio": self.base_ratio,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SolverParameters":
        if not isinstance(data, dict):
            raise ValueError(f"Solver configuration must be a mapping, got {type(data).__name__}")
        allowed = {f.name for f in dataclasses.fields(cls)} - {"delta_p_vec"}
        unknown = set(data) - allowed
        if unknown:
            raise ValueError(f"Unknown solver parameters: {sorted(unknown)}")
        return cls(**data)


def load_solver_params(path: Union[str, Path]) -> SolverParameters:
    """Load solver parameters from a YAML file.

    Raises:
        FileNotFoundError: file does not exist
        ValueError: file contents are not a valid solver configuration
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Solver configuration not found: {p}")

    with p.open('r', encoding='utf-8') as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {p}: {e}") from e

    if isinstance(data, dict) and "solver" in data:
        data = data["solver"] or {}
    return SolverParameters.from_dict(data)


DEFAULT_CONFIG_PATH = Path(__file__).parent / "configuration_files" / "solver_config.yaml"
