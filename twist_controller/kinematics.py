"""
Kinematic chain model used by the differential IK solver.

The solver only talks to the chain through the ``KinematicsModel`` protocol:

- num_joints: number of actuated joints N
- forward_kinematics(q): end-effector Pose for joint positions q
- jacobian(q): 6xN geometric Jacobian mapping joint velocities to the
  end-effector twist [vx, vy, vz, wx, wy, wz]
- joint_limits: (N, 2) array of [min, max] or None

``SerialChainModel`` is a reference implementation for serial chains of
revolute joints, built from a ``SerialChainConfig``. Any other object that
provides the same members (e.g. a wrapper around a URDF-based library) can be
handed to the solver instead.

Notes:
- All quaternions use [w, x, y, z]
- Each link i starts at joint i and extends link_lengths[i] along
  link_directions[i], expressed in the frame of joint i after its rotation
- ee_offset is applied in the last joint's frame
"""

from dataclasses import dataclass
from typing import List, Optional, Protocol, Tuple, runtime_checkable

import numba
import numpy as np

from .quaternion_math import (
    as_quat, as_vector3, cross3, quat_from_axis_angle, quat_multiply,
    quat_norm, quat_normalize, quat_rotate_vector, quat_to_rotation_matrix,
    quat_unique,
)


@dataclass(frozen=True, eq=False)
class Pose:
    """Rigid pose: position [x, y, z] and orientation quaternion [w, x, y, z]."""

    position: np.ndarray
    orientation: np.ndarray

    def __post_init__(self):
        object.__setattr__(self, "position", as_vector3(self.position))
        object.__setattr__(self, "orientation", as_quat(self.orientation))

    @classmethod
    def identity(cls) -> "Pose":
        return cls(np.zeros(3), np.array([1.0, 0.0, 0.0, 0.0]))

    @classmethod
    def degenerate(cls) -> "Pose":
        """Zero position with a zero-norm orientation.

        Used when the caller supplies no frame: anything rotated by it vanishes,
        so a base contribution computed from it is zero.
        """
        return cls(np.zeros(3), np.zeros(4))

    @property
    def is_degenerate(self) -> bool:
        return float(quat_norm(self.orientation)) < 1e-12

    def rotation_matrix(self) -> np.ndarray:
        return quat_to_rotation_matrix(self.orientation)

    def as_vector(self) -> np.ndarray:
        """6-vector [px, py, pz, qx, qy, qz] (position + quaternion vector part).

        The quaternion is normalized and sign-fixed to w >= 0 so the same
        orientation always maps to the same vector part.
        """
        if self.is_degenerate:
            vec_part = np.zeros(3)
        else:
            q = quat_unique(quat_normalize(self.orientation))
            vec_part = q[1:4]
        return np.concatenate([self.position, vec_part])


@runtime_checkable
class KinematicsModel(Protocol):
    """Read-only kinematics interface consumed by the solver."""

    @property
    def num_joints(self) -> int:
        ...

    @property
    def joint_limits(self) -> Optional[np.ndarray]:
        ...

    def forward_kinematics(self, q: np.ndarray) -> Pose:
        ...

    def jacobian(self, q: np.ndarray) -> np.ndarray:
        ...


@dataclass
class SerialChainConfig:
    """Serial revolute chain description."""

    link_lengths: List[float]
    """Length of each link."""

    link_directions: Optional[List[np.ndarray]] = None
    """Local direction vector for each link (default: x-axis)."""

    rotation_axes: Optional[List[np.ndarray]] = None
    """Rotation axis for each joint (default: z for first, y for others)."""

    origin_offset: Optional[np.ndarray] = None
    """Position of the first joint relative to the chain base [x, y, z]."""

    ee_offset: Optional[np.ndarray] = None
    """End-effector position offset from last joint in local frame [x, y, z]."""

    joint_limits: Optional[List[Tuple[float, float]]] = None
    """Joint limits as [(min, max), ...] in radians. None = unlimited."""

    def __post_init__(self):
        if self.link_lengths is None or len(self.link_lengths) == 0:
            raise ValueError("link_lengths cannot be empty")

        self.num_joints = len(self.link_lengths)
        n = self.num_joints

        if self.link_directions is None:
            self.link_directions = [np.array([1.0, 0.0, 0.0]) for _ in range(n)]

        if self.rotation_axes is None:
            self.rotation_axes = [np.array([0.0, 0.0, 1.0])]  # First joint: Z
            self.rotation_axes.extend([np.array([0.0, 1.0, 0.0]) for _ in range(1, n)])  # Others: Y

        if len(self.link_directions) != n:
            raise ValueError(f"Expected {n} link directions, got {len(self.link_directions)}")
        if len(self.rotation_axes) != n:
            raise ValueError(f"Expected {n} rotation axes, got {len(self.rotation_axes)}")

        for i, axis in enumerate(self.rotation_axes):
            if np.linalg.norm(np.asarray(axis, dtype=np.float64)) < 1e-9:
                raise ValueError(f"Rotation axis {i} has zero length")

        if self.joint_limits is not None:
            if len(self.joint_limits) != n:
                raise ValueError(f"Expected {n} joint limits, got {len(self.joint_limits)}")
            for i, (lo, hi) in enumerate(self.joint_limits):
                if not lo < hi:
                    raise ValueError(f"Joint {i} limit min ({lo}) must be below max ({hi})")

        if self.origin_offset is None:
            self.origin_offset = np.zeros(3)
        if self.ee_offset is None:
            self.ee_offset = np.zeros(3)

        # Kernels want contiguous float64 everywhere
        self.link_lengths = np.ascontiguousarray(self.link_lengths, dtype=np.float64)
        self.link_directions = np.ascontiguousarray(
            [as_vector3(d) for d in self.link_directions], dtype=np.float64)
        self.rotation_axes = np.ascontiguousarray(
            [as_vector3(a) / np.linalg.norm(as_vector3(a)) for a in self.rotation_axes], dtype=np.float64)
        self.origin_offset = as_vector3(self.origin_offset)
        self.ee_offset = as_vector3(self.ee_offset)


class SerialChainModel:
    """Reference ``KinematicsModel`` for a serial revolute chain."""

    def __init__(self, config: SerialChainConfig):
        self.config = config
        if config.joint_limits is None:
            self._joint_limits = None
        else:
            self._joint_limits = np.asarray(config.joint_limits, dtype=np.float64)
            self._joint_limits.setflags(write=False)

    @property
    def num_joints(self) -> int:
        return self.config.num_joints

    @property
    def joint_limits(self) -> Optional[np.ndarray]:
        return self._joint_limits

    def _angles(self, q) -> np.ndarray:
        angles = np.ascontiguousarray(q, dtype=np.float64).reshape(-1)
        if angles.shape[0] != self.num_joints:
            raise ValueError(f"Expected {self.num_joints} joint positions, got {angles.shape[0]}")
        return angles

    def joint_positions(self, q) -> np.ndarray:
        """Positions of every link end (N x 3), not including ee_offset."""
        c = self.config
        positions, _, _ = forward_kinematics_core(
            self._angles(q), c.link_lengths, c.link_directions, c.rotation_axes, c.origin_offset)
        return positions

    def forward_kinematics(self, q) -> Pose:
        c = self.config
        position, orientation = end_effector_pose_core(
            self._angles(q), c.link_lengths, c.link_directions, c.rotation_axes,
            c.origin_offset, c.ee_offset)
        return Pose(position, orientation)

    def jacobian(self, q) -> np.ndarray:
        c = self.config
        return compute_jacobian_core(
            self._angles(q), c.link_lengths, c.link_directions, c.rotation_axes,
            c.origin_offset, c.ee_offset)


# Numba-optimized kinematics functions


@numba.njit(fastmath=False)
def forward_kinematics_core(angles, link_lengths, link_directions, rotation_axes, origin_offset):
    """
    Core forward kinematics.

    Returns:
        positions: (N, 3) link end positions
        axes_world: (N, 3) joint axes in the chain base frame
        rot: orientation of the last joint frame [w, x, y, z]
    """
    n = link_lengths.shape[0]
    positions = np.zeros((n, 3), dtype=np.float64)
    axes_world = np.zeros((n, 3), dtype=np.float64)

    rot = np.array([1.0, 0.0, 0.0, 0.0], dtype=np.float64)
    pos = origin_offset.copy()

    for i in range(n):
        axis = rotation_axes[i].copy()
        # Normalize after multiplication
        rot = quat_normalize(quat_multiply(rot, quat_from_axis_angle(axis, angles[i])))
        axes_world[i] = quat_rotate_vector(rot, axis)
        pos = pos + quat_rotate_vector(rot, link_lengths[i] * link_directions[i])
        positions[i] = pos

    return positions, axes_world, rot


@numba.njit(fastmath=False)
def end_effector_pose_core(angles, link_lengths, link_directions, rotation_axes, origin_offset, ee_offset):
    positions, _, rot = forward_kinematics_core(
        angles, link_lengths, link_directions, rotation_axes, origin_offset)
    ee_pos = positions[positions.shape[0] - 1] + quat_rotate_vector(rot, ee_offset)
    return ee_pos, rot


@numba.njit(fastmath=False)
def compute_jacobian_core(angles, link_lengths, link_directions, rotation_axes, origin_offset, ee_offset):
    n = link_lengths.shape[0]
    jacobian = np.zeros((6, n), dtype=np.float64)

    positions, axes_world, rot = forward_kinematics_core(
        angles, link_lengths, link_directions, rotation_axes, origin_offset)
    ee_pos = positions[n - 1] + quat_rotate_vector(rot, ee_offset)

    for i in range(n):
        if i == 0:
            joint_pos = origin_offset.copy()
        else:
            joint_pos = positions[i - 1].copy()

        world_axis = axes_world[i].copy()
        # Linear velocity component
        lin = cross3(world_axis, ee_pos - joint_pos)
        for k in range(3):
            jacobian[k, i] = lin[k]
            # Angular velocity component
            jacobian[3 + k, i] = world_axis[k]

    return jacobian


# Example chains
SIX_AXIS_READY_POSE = np.array([0.0, -0.6, 1.2, 0.0, 0.6, 0.0])


def create_planar_arm_config(link_lengths=(0.4, 0.3, 0.2)) -> SerialChainConfig:
    """Planar arm: every joint rotates about Z, links extend along X."""
    n = len(link_lengths)
    return SerialChainConfig(
        link_lengths=list(link_lengths),
        rotation_axes=[np.array([0.0, 0.0, 1.0]) for _ in range(n)],
        joint_limits=[(-np.pi, np.pi) for _ in range(n)],
    )


def create_six_axis_config() -> SerialChainConfig:
    """Six-axis arm: waist (Z), shoulder/elbow (Y), roll-pitch-yaw wrist (X, Y, Z).

    At q = 0 the arm is stretched out along X (boundary singularity, no X
    velocity available); ``SIX_AXIS_READY_POSE`` bends the elbow instead.
    """
    return SerialChainConfig(
        link_lengths=[0.30, 0.40, 0.35, 0.08, 0.08, 0.06],
        link_directions=[
            np.array([0.0, 0.0, 1.0]),  # Waist column: up
            np.array([1.0, 0.0, 0.0]),  # Upper arm
            np.array([1.0, 0.0, 0.0]),  # Forearm
            np.array([1.0, 0.0, 0.0]),  # Wrist roll
            np.array([1.0, 0.0, 0.0]),  # Wrist pitch
            np.array([1.0, 0.0, 0.0]),  # Flange
        ],
        rotation_axes=[
            np.array([0.0, 0.0, 1.0]),
            np.array([0.0, 1.0, 0.0]),
            np.array([0.0, 1.0, 0.0]),
            np.array([1.0, 0.0, 0.0]),
            np.array([0.0, 1.0, 0.0]),
            np.array([0.0, 0.0, 1.0]),
        ],
        ee_offset=np.array([0.05, 0.0, 0.0]),
        joint_limits=[
            (-np.pi, np.pi),
            (-2.0, 2.0),
            (-2.5, 2.5),
            (-np.pi, np.pi),
            (-2.0, 2.0),
            (-np.pi, np.pi),
        ],
    )
