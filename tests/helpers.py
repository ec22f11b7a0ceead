"""Shared test fixtures."""

import numpy as np

from twist_controller.kinematics import Pose


def well_conditioned_jacobian(num_columns: int = 6) -> np.ndarray:
    """6 x M matrix with a dominant 1.5 * identity block, full row rank."""
    jac = np.zeros((6, num_columns))
    k = min(6, num_columns)
    jac[:k, :k] = 1.5 * np.eye(k)
    jac += 0.1 * np.arange(6 * num_columns, dtype=np.float64).reshape(6, num_columns) / (6 * num_columns)
    return jac


class StubModel:
    """Kinematics model returning a fixed Jacobian and a scripted pose sequence."""

    def __init__(self, jacobian, poses=None, joint_limits=None):
        self._jacobian = np.asarray(jacobian, dtype=np.float64)
        self._poses = list(poses) if poses is not None else [Pose.identity()]
        self._joint_limits = None if joint_limits is None else np.asarray(joint_limits, dtype=np.float64)
        self.fk_calls = 0

    @property
    def num_joints(self) -> int:
        return self._jacobian.shape[1]

    @property
    def joint_limits(self):
        return self._joint_limits

    def forward_kinematics(self, q) -> Pose:
        pose = self._poses[min(self.fk_calls, len(self._poses) - 1)]
        self.fk_calls += 1
        return pose

    def jacobian(self, q) -> np.ndarray:
        return self._jacobian.copy()
