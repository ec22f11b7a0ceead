"""
Joint velocity resolution strategies.

Every strategy implements the same contract:

    solve(params, jacobian (6xM), twist (6), q (N), last_q_dot (N), joint_limits)
        -> SolverResult(status, qdot (M))

``ConstraintSolverFactory`` maps ``params.method`` to a strategy and validates
inputs. Nothing is raised across this boundary for numerical or configuration
problems: a status is returned together with a zero vector of the expected
length, and that vector must not be used as a command unless the status is
SUCCESS. An unknown method never falls back to another strategy.

When the base is active (M = N + 3), the last three entries of qdot are the
virtual base velocities [vx, vy, wz].
"""

import logging
from enum import IntEnum
from typing import Dict, NamedTuple, Optional

import numpy as np

from .solver_params import DampingMethod, SolverMethod, SolverParameters
from .svd import jacobi_svd

MAX_JOINT_WEIGHT = 1e6
"""Weight applied to a joint pushing further past its limit."""


class SolverStatus(IntEnum):
    SUCCESS = 0
    NOT_IMPLEMENTED = -1
    NUMERICAL_FAILURE = -2
    INVALID_INPUT = -3


class SolverResult(NamedTuple):
    status: SolverStatus
    qdot: np.ndarray


def calculate_weighting(
    q: np.ndarray,
    last_q_dot: np.ndarray,
    joint_limits: Optional[np.ndarray],
    num_columns: int,
) -> np.ndarray:
    """Weighted least norm joint weights (joint limit avoidance).

    Uses the gradient of the joint limit performance criterion

        H(q) = sum (hi - lo)^2 / (4 (hi - q)(q - lo))
        g_i  = dH/dq_i = (hi - lo)^2 (2q - hi - lo) / (4 (hi - q)^2 (q - lo)^2)

    A joint whose last velocity moves it toward the nearer limit (g * qdot > 0)
    gets weight 1 + |g|; moving away it gets weight 1 so it can recover freely.
    Virtual base columns (and joints without limits) always weigh 1.

    Args:
        q: Current joint positions (N)
        last_q_dot: Joint velocities from the previous tick (N)
        joint_limits: (N, 2) array of [min, max], or None
        num_columns: Column count M of the effective Jacobian (N or N + 3)

    Returns:
        Weights (M), all >= 1
    """
    weights = np.ones(num_columns, dtype=np.float64)
    if joint_limits is None:
        return weights

    for i in range(len(q)):
        lo, hi = float(joint_limits[i, 0]), float(joint_limits[i, 1])
        qi = float(q[i])
        qdi = float(last_q_dot[i])

        if qi >= hi or qi <= lo:
            # At or past a limit: block further outward motion only
            moving_out = (qi >= hi and qdi > 0.0) or (qi <= lo and qdi < 0.0)
            weights[i] = MAX_JOINT_WEIGHT if moving_out else 1.0
            continue

        grad = ((hi - lo) ** 2 * (2.0 * qi - hi - lo)) / (4.0 * (hi - qi) ** 2 * (qi - lo) ** 2)
        if grad * qdi > 0.0:
            weights[i] = min(1.0 + abs(grad), MAX_JOINT_WEIGHT)

    return weights


def compute_damping(params: SolverParameters, singular_values: np.ndarray) -> float:
    """Damping factor lambda for the damped pseudo-inverse.

    Only the task-space singular values (at most 6, the largest ones) take part;
    the remaining ones of a redundant chain are structurally zero.
    """
    s_task = singular_values[:min(6, len(singular_values))]
    method = params.damping_method

    if method == DampingMethod.NONE:
        lam = 0.0
    elif method == DampingMethod.CONSTANT:
        lam = params.damping_factor
    elif method == DampingMethod.MANIPULABILITY:
        # sqrt(det(J J^T)) == product of singular values
        w = float(np.prod(s_task)) if len(s_task) > 0 else 0.0
        lam = params.lambda_max * (1.0 - w / params.w_threshold) ** 2 if w < params.w_threshold else 0.0
    elif method == DampingMethod.LEAST_SINGULAR_VALUE:
        s_min = float(s_task[-1]) if len(s_task) > 0 else 0.0
        lam = params.lambda_max * np.sqrt(1.0 - (s_min / params.eps) ** 2) if s_min < params.eps else 0.0
    else:
        raise ValueError(f"Unknown damping method: {method}")

    # Large recent Cartesian displacement -> damp harder
    lam_d = params.displacement_gain * float(np.linalg.norm(params.delta_p_vec))
    return float(np.sqrt(lam * lam + lam_d * lam_d))


def invert_singular_values(s: np.ndarray, lam: float, eps: float) -> np.ndarray:
    """sigma / (sigma^2 + lambda^2) when damped, truncated 1 / sigma otherwise."""
    s_inv = np.zeros_like(s)
    if lam > 0.0:
        s_inv = s / (s * s + lam * lam)
    else:
        keep = s >= eps
        s_inv[keep] = 1.0 / s[keep]
    return s_inv


class ConstraintSolverBase:
    """Common interface of all resolution strategies."""

    method: SolverMethod

    def solve(
        self,
        params: SolverParameters,
        jacobian: np.ndarray,
        twist: np.ndarray,
        q: np.ndarray,
        last_q_dot: np.ndarray,
        joint_limits: Optional[np.ndarray],
    ) -> SolverResult:
        raise NotImplementedError


class DampedWeightedPseudoInverse(ConstraintSolverBase):
    """Damped least squares on the joint-limit weighted Jacobian.

    qdot = W^-1/2 (J W^-1/2)^+_lambda v, with the damped pseudo-inverse built
    from a Jacobi SVD. Equivalent to W^-1 J^T (J W^-1 J^T + lambda^2 I)^-1 v.
    """

    method = SolverMethod.DAMPED_WEIGHTED

    def solve(self, params, jacobian, twist, q, last_q_dot, joint_limits):
        num_columns = jacobian.shape[1]

        if params.joint_limit_avoidance:
            weights = calculate_weighting(q, last_q_dot, joint_limits, num_columns)
        else:
            weights = np.ones(num_columns, dtype=np.float64)
        w_inv_sqrt = 1.0 / np.sqrt(weights)

        # J_W = J * W^{-1/2}
        jac_weighted = jacobian * w_inv_sqrt[np.newaxis, :]

        svd = jacobi_svd(jac_weighted, maxiter=params.maxiter)
        if not svd.converged:
            return SolverResult(SolverStatus.NUMERICAL_FAILURE, np.zeros(num_columns))

        lam = compute_damping(params, svd.s)
        s_inv = invert_singular_values(svd.s, lam, params.eps)

        qdot = w_inv_sqrt * (svd.v @ (s_inv * (svd.u.T @ twist)))
        return SolverResult(SolverStatus.SUCCESS, qdot)


class UnweightedPseudoInverse(ConstraintSolverBase):
    """Plain Moore-Penrose pseudo-inverse, singular values below eps dropped."""

    method = SolverMethod.UNWEIGHTED

    def solve(self, params, jacobian, twist, q, last_q_dot, joint_limits):
        num_columns = jacobian.shape[1]

        svd = jacobi_svd(jacobian, maxiter=params.maxiter)
        if not svd.converged:
            return SolverResult(SolverStatus.NUMERICAL_FAILURE, np.zeros(num_columns))

        s_inv = invert_singular_values(svd.s, 0.0, params.eps)
        qdot = svd.v @ (s_inv * (svd.u.T @ twist))
        return SolverResult(SolverStatus.SUCCESS, qdot)


class PoseVelocityNotImplemented(ConstraintSolverBase):
    """Full pose + velocity solve. Kept in the interface, never implemented."""

    method = SolverMethod.POSE_VELOCITY

    def solve(self, params, jacobian, twist, q, last_q_dot, joint_limits):
        return SolverResult(SolverStatus.NOT_IMPLEMENTED, np.zeros(jacobian.shape[1]))


def default_strategies() -> Dict[SolverMethod, ConstraintSolverBase]:
    return {
        SolverMethod.DAMPED_WEIGHTED: DampedWeightedPseudoInverse(),
        SolverMethod.UNWEIGHTED: UnweightedPseudoInverse(),
        SolverMethod.POSE_VELOCITY: PoseVelocityNotImplemented(),
    }


class ConstraintSolverFactory:
    """Selects and runs the resolution strategy requested by the parameters."""

    def __init__(
        self,
        joint_limits: Optional[np.ndarray] = None,
        strategies: Optional[Dict[SolverMethod, ConstraintSolverBase]] = None,
    ):
        """
        Args:
            joint_limits: (N, 2) joint limits used for weighting, or None
            strategies: method -> strategy mapping (default: all built-in strategies)
        """
        self.joint_limits = None if joint_limits is None else np.asarray(joint_limits, dtype=np.float64)
        self.strategies = default_strategies() if strategies is None else dict(strategies)
        self.logger = logging.getLogger(f"{__name__}.ConstraintSolverFactory")

    def get_strategy(self, method: SolverMethod) -> Optional[ConstraintSolverBase]:
        return self.strategies.get(method)

    def solve(
        self,
        params: SolverParameters,
        jacobian: np.ndarray,
        twist: np.ndarray,
        q: np.ndarray,
        last_q_dot: np.ndarray,
    ) -> SolverResult:
        """Resolve the desired twist into joint (and base) velocities.

        Args:
            params: Solver configuration snapshot (delta_p_vec already set)
            jacobian: Effective 6xM Jacobian
            twist: Desired end-effector twist [vx, vy, vz, wx, wy, wz]
            q: Joint positions (N)
            last_q_dot: Joint velocities of the previous tick (N)

        Returns:
            SolverResult with qdot of length M
        """
        jac = np.asarray(jacobian, dtype=np.float64)
        if jac.ndim != 2 or jac.shape[0] != 6 or jac.shape[1] < 1:
            self.logger.debug(f"Rejecting Jacobian of shape {jac.shape}")
            return SolverResult(SolverStatus.INVALID_INPUT, np.zeros(jac.shape[-1] if jac.ndim == 2 else 0))
        num_columns = jac.shape[1]
        failed = np.zeros(num_columns)

        v_in = np.asarray(twist, dtype=np.float64).reshape(-1)
        q_in = np.asarray(q, dtype=np.float64).reshape(-1)
        qdot_in = np.asarray(last_q_dot, dtype=np.float64).reshape(-1)
        num_joints = q_in.shape[0]

        if (v_in.shape[0] != 6 or qdot_in.shape[0] != num_joints
                or num_columns not in (num_joints, num_joints + 3)):
            self.logger.debug(
                f"Inconsistent shapes: J {jac.shape}, twist {v_in.shape}, "
                f"q {q_in.shape}, last_q_dot {qdot_in.shape}")
            return SolverResult(SolverStatus.INVALID_INPUT, failed)
        if self.joint_limits is not None and self.joint_limits.shape != (num_joints, 2):
            return SolverResult(SolverStatus.INVALID_INPUT, failed)
        if not (np.all(np.isfinite(q_in)) and np.all(np.isfinite(qdot_in))):
            return SolverResult(SolverStatus.INVALID_INPUT, failed)

        if not (np.all(np.isfinite(jac)) and np.all(np.isfinite(v_in))):
            return SolverResult(SolverStatus.NUMERICAL_FAILURE, failed)

        strategy = self.get_strategy(params.method)
        if strategy is None:
            return SolverResult(SolverStatus.NOT_IMPLEMENTED, failed)

        result = strategy.solve(params, jac, v_in, q_in, qdot_in, self.joint_limits)
        if result.status == SolverStatus.SUCCESS and not np.all(np.isfinite(result.qdot)):
            return SolverResult(SolverStatus.NUMERICAL_FAILURE, failed)
        return result
