"""
Per-tick inverse differential kinematics.

Each tick:
1. chain Jacobian at q, augmented with the mobile base columns if active
2. forward kinematics -> pose vector [px, py, pz, qx, qy, qz],
   delta_pose = current - last
3. parameter snapshot for this tick with delta_p_vec = delta_pose
4. constraint solver -> joint (and base) velocities
5. last pose vector <- current, also when the solve failed

The solver is not reentrant: it owns the last pose vector, so one tick must
finish before the next one starts. Parameters may be swapped from another
thread at any time; a tick works on the snapshot it read when it started.

IMPORTANT: last_pose_vec advances even on failed ticks. A run of failures
therefore hides the displacement that accumulated during it, and the first
successful tick afterwards only sees the change since the last failed tick.
"""

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

import numpy as np

from .constraint_solver import ConstraintSolverFactory, SolverStatus
from .jacobian_augmenter import NUM_BASE_COLUMNS, JacobianAugmenter
from .kinematics import KinematicsModel, Pose
from .perf_tracker import TickPerfTracker
from .solver_params import SolverParameters, load_solver_params


@dataclass(frozen=True, eq=False)
class TickResult:
    """Outcome of one solver tick."""

    status: SolverStatus
    joint_velocities: np.ndarray
    """M entries: N arm joints, followed by [vx, vy, wz] when the base is active."""
    delta_pose: np.ndarray
    """Pose vector change seen by the constraint solver on this tick."""
    num_arm_joints: int

    @property
    def ok(self) -> bool:
        return self.status == SolverStatus.SUCCESS

    @property
    def arm_velocities(self) -> np.ndarray:
        return self.joint_velocities[:self.num_arm_joints]

    @property
    def base_velocities(self) -> Optional[np.ndarray]:
        if self.joint_velocities.shape[0] == self.num_arm_joints + NUM_BASE_COLUMNS:
            return self.joint_velocities[self.num_arm_joints:]
        return None


class InverseDifferentialKinematicsSolver:
    """Differential IK orchestrator for a (possibly base-mounted) chain."""

    def __init__(
        self,
        model: KinematicsModel,
        params: Optional[SolverParameters] = None,
        verbose: bool = True,
        log_level: str = "INFO",
        track_performance: bool = False,
    ):
        """Initialize the solver.

        Args:
            model: Kinematics of the chain (shared, read-only)
            params: Initial solver configuration (default: SolverParameters())
            verbose: If False, only warnings and errors are logged
            log_level: Logging level - "DEBUG", "INFO", "WARNING", "ERROR"
            track_performance: Collect tick timing statistics
        """
        self.model = model
        self.num_joints = int(model.num_joints)

        # Setup logger
        self.logger = logging.getLogger(f"{__name__}.InverseDifferentialKinematicsSolver")
        if not verbose:
            self.logger.setLevel(logging.WARNING)
        else:
            self.logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

        # Add console handler if no handlers exist
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter('[%(levelname)s] %(name)s: %(message)s')
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

        self.augmenter = JacobianAugmenter()
        self.constraint_solver_factory = ConstraintSolverFactory(joint_limits=model.joint_limits)

        self._params_lock = threading.Lock()
        self._params = params if params is not None else SolverParameters()

        self._last_pose_vec = np.zeros(6, dtype=np.float64)

        self._perf = TickPerfTracker(enabled=track_performance)

        # Rate limiting for repeated failure logs
        self._failure_counter = 0
        self._warned_methods = set()

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def params(self) -> SolverParameters:
        return self.get_params()

    def get_params(self) -> SolverParameters:
        with self._params_lock:
            return self._params

    def set_params(self, params: SolverParameters) -> None:
        """Swap in a new parameter snapshot. Takes effect on the next tick."""
        if not isinstance(params, SolverParameters):
            raise TypeError(f"Expected SolverParameters, got {type(params).__name__}")
        with self._params_lock:
            self._params = params
        self.logger.info(
            f"Solver parameters updated: method={params.method.value} "
            f"damping={params.damping_method.value} base_active={params.base_active} "
            f"base_ratio={params.base_ratio:.3f}")

    def reload_params(self, path: Union[str, Path]) -> SolverParameters:
        """Load parameters from YAML and swap them in.

        Raises on a missing or invalid file; the current parameters stay active.
        """
        try:
            params = load_solver_params(path)
        except (OSError, ValueError) as e:
            self.logger.error(f"Failed to reload solver parameters from {path}: {e}")
            raise
        self.set_params(params)
        return params

    def set_log_level(self, level: str) -> None:
        """Change the logging level at runtime.

        Args:
            level: One of "DEBUG", "INFO", "WARNING", "ERROR"
        """
        self.logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def last_pose_vec(self) -> np.ndarray:
        return self._last_pose_vec.copy()

    def reset(self) -> None:
        """Forget the previous pose; the next delta is measured from zero."""
        self._last_pose_vec = np.zeros(6, dtype=np.float64)
        self._failure_counter = 0

    def get_perf_stats(self) -> Dict[str, Any]:
        return self._perf.get_stats()

    # ------------------------------------------------------------------
    # Solving
    # ------------------------------------------------------------------

    def tick(
        self,
        q: np.ndarray,
        last_q_dot: np.ndarray,
        desired_twist: np.ndarray,
        base_pose: Optional[Pose] = None,
        chain_base_pose: Optional[Pose] = None,
        target_period_s: float = 0.0,
    ) -> TickResult:
        """Compute the joint velocity command for one control tick.

        Args:
            q: Joint positions (N)
            last_q_dot: Joint velocities of the previous tick (N)
            desired_twist: End-effector twist [vx, vy, vz, wx, wy, wz]
            base_pose: Mobile base pose; None = degenerate frame (no base contribution)
            chain_base_pose: Chain attachment pose; None = degenerate frame
            target_period_s: Control period, only used for timing statistics

        Returns:
            TickResult; joint_velocities has N entries, or N + 3 with the base active
        """
        self._perf.tick_start()
        try:
            return self._tick(q, last_q_dot, desired_twist, base_pose, chain_base_pose)
        finally:
            self._perf.tick_end(target_period_s)

    def _tick(self, q, last_q_dot, desired_twist, base_pose, chain_base_pose) -> TickResult:
        # One snapshot for the whole tick
        params = self.get_params()

        n = self.num_joints
        num_columns = n + NUM_BASE_COLUMNS if params.base_active else n
        q_in = np.asarray(q, dtype=np.float64).reshape(-1)
        qdot_in = np.asarray(last_q_dot, dtype=np.float64).reshape(-1)
        v_in = np.asarray(desired_twist, dtype=np.float64).reshape(-1)

        if q_in.shape[0] != n or qdot_in.shape[0] != n or v_in.shape[0] != 6:
            self.logger.debug(
                f"Invalid input sizes: q={q_in.shape[0]} last_q_dot={qdot_in.shape[0]} "
                f"twist={v_in.shape[0]} (expected {n}, {n}, 6)")
            return TickResult(SolverStatus.INVALID_INPUT, np.zeros(num_columns), np.zeros(6), n)

        # 1. Effective Jacobian
        jac_chain = np.asarray(self.model.jacobian(q_in), dtype=np.float64)
        if jac_chain.shape != (6, n):
            self.logger.debug(f"Kinematics model returned a Jacobian of shape {jac_chain.shape}, expected (6, {n})")
            return TickResult(SolverStatus.INVALID_INPUT, np.zeros(num_columns), np.zeros(6), n)
        jacobian = self.augmenter.augment(jac_chain, params, base_pose, chain_base_pose)

        # 2. Current pose and displacement since the previous tick
        p_in_vec = self.model.forward_kinematics(q_in).as_vector()
        delta_p_vec = p_in_vec - self._last_pose_vec

        # 3-4. Solve with this tick's auxiliary state
        result = self.constraint_solver_factory.solve(
            params.with_delta(delta_p_vec), jacobian, v_in, q_in, qdot_in)

        # 5. Command buffer: arm joints first, base columns (if any) after
        qdot_out = np.zeros(num_columns, dtype=np.float64)
        qdot_out[:] = result.qdot[:num_columns]

        # 6. Unconditionally, see module docstring
        self._last_pose_vec = p_in_vec

        self._log_status(result.status, params)
        return TickResult(result.status, qdot_out, delta_p_vec, n)

    def solve_pose_velocity(self, *args, **kwargs) -> TickResult:
        """Joint position + velocity solve from a full Cartesian pose/velocity state.

        Not implemented; always returns NOT_IMPLEMENTED.
        """
        params = self.get_params()
        num_columns = self.num_joints + NUM_BASE_COLUMNS if params.base_active else self.num_joints
        return TickResult(SolverStatus.NOT_IMPLEMENTED, np.zeros(num_columns), np.zeros(6), self.num_joints)

    def _log_status(self, status: SolverStatus, params: SolverParameters) -> None:
        if status == SolverStatus.SUCCESS:
            if self._failure_counter > 0:
                self.logger.debug(f"Solver recovered after {self._failure_counter} failed ticks")
            self._failure_counter = 0
            return

        if status == SolverStatus.NOT_IMPLEMENTED:
            if params.method not in self._warned_methods:
                self._warned_methods.add(params.method)
                self.logger.warning(f"Solver method '{params.method.value}' is not implemented")
            return

        self._failure_counter += 1
        # Log occasionally
        if self.logger.level <= logging.DEBUG and self._failure_counter % 50 == 1:
            self.logger.debug(
                f"Solve failed: status={status.name} consecutive={self._failure_counter} "
                f"method={params.method.value} maxiter={params.maxiter}")
