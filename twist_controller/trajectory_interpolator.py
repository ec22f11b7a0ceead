"""
Cartesian trajectory interpolation.

Produces the pose sequence a control loop walks through, one pose per tick at
``update_rate``, and the twists between consecutive poses that are fed to the
differential IK solver.

Velocity profiles along the normalized path parameter s in [0, 1]:
- "ramp":   trapezoidal velocity (constant acceleration, cruise, constant
            deceleration); falls back to a triangle for short moves
- "sinoid": sin^2 velocity, smooth acceleration at both ends
"""

import math
from typing import List, Sequence

import numpy as np

from .kinematics import Pose
from .quaternion_math import (
    as_quat, compute_quat_error, mat3_vec3, quat_slerp, quat_to_rotation_matrix,
)

PROFILES = ("ramp", "sinoid")


def _check_positive(name: str, value: float) -> float:
    value = float(value)
    if not np.isfinite(value) or value <= 0.0:
        raise ValueError(f"{name} must be > 0, got {value}")
    return value


def ramp_profile(distance: float, vel: float, accel: float, update_rate: float) -> np.ndarray:
    """Normalized path parameter samples for a trapezoidal velocity profile."""
    t_acc = vel / accel
    d_acc = 0.5 * accel * t_acc ** 2

    if 2.0 * d_acc >= distance:
        # Triangle: never reaches cruise velocity
        t_acc = math.sqrt(distance / accel)
        vel = accel * t_acc
        t_cruise = 0.0
    else:
        t_cruise = (distance - 2.0 * d_acc) / vel
    t_total = 2.0 * t_acc + t_cruise

    steps = max(1, int(math.ceil(t_total * update_rate)))
    t = np.linspace(0.0, t_total, steps + 1)

    s = np.empty_like(t)
    for i, ti in enumerate(t):
        if ti < t_acc:
            d = 0.5 * accel * ti ** 2
        elif ti < t_acc + t_cruise:
            d = 0.5 * accel * t_acc ** 2 + vel * (ti - t_acc)
        else:
            td = t_total - ti
            d = distance - 0.5 * accel * td ** 2
        s[i] = d / distance

    s[0] = 0.0
    s[-1] = 1.0
    return np.clip(s, 0.0, 1.0)


def sinoid_profile(distance: float, vel: float, accel: float, update_rate: float) -> np.ndarray:
    """Normalized path parameter samples for a sin^2 velocity profile.

    s(tau) = tau - sin(2 pi tau) / (2 pi); peak velocity 2 d / T, peak
    acceleration 2 pi d / T^2.
    """
    t_total = max(2.0 * distance / vel, math.sqrt(2.0 * math.pi * distance / accel))

    steps = max(1, int(math.ceil(t_total * update_rate)))
    tau = np.linspace(0.0, 1.0, steps + 1)
    s = tau - np.sin(2.0 * np.pi * tau) / (2.0 * np.pi)
    s[0] = 0.0
    s[-1] = 1.0
    return s


class TrajectoryInterpolator:
    """Linear and circular Cartesian moves sampled at the control rate."""

    def __init__(self, update_rate: float):
        self.update_rate = _check_positive("update_rate", update_rate)

    @property
    def dt(self) -> float:
        return 1.0 / self.update_rate

    def _path_parameter(self, distance: float, vel: float, accel: float, profile: str) -> np.ndarray:
        vel = _check_positive("vel", vel)
        accel = _check_positive("accel", accel)
        if profile == "ramp":
            return ramp_profile(distance, vel, accel, self.update_rate)
        if profile == "sinoid":
            return sinoid_profile(distance, vel, accel, self.update_rate)
        raise ValueError(f"Unknown profile: {profile!r}. Must be one of {PROFILES}")

    def linear_interpolation(
        self,
        start: Pose,
        end: Pose,
        vel: float,
        accel: float,
        profile: str = "ramp",
    ) -> List[Pose]:
        """Straight-line move from start to end, orientation slerped along.

        The profile runs over the longer of the translation distance and the
        rotation angle, so a pure re-orientation still gets a proper profile.

        Returns:
            Poses including both endpoints; [start] if start == end
        """
        q_start = as_quat(start.orientation)
        q_end = as_quat(end.orientation)
        delta_pos = end.position - start.position

        distance = max(float(np.linalg.norm(delta_pos)),
                       float(np.linalg.norm(compute_quat_error(q_start, q_end))))
        if distance < 1e-9:
            return [start]

        s = self._path_parameter(distance, vel, accel, profile)

        poses = [start]
        for si in s[1:-1]:
            poses.append(Pose(start.position + si * delta_pos, quat_slerp(q_start, q_end, float(si))))
        poses.append(end)
        return poses

    def circular_interpolation(
        self,
        center: Pose,
        radius: float,
        start_angle: float,
        end_angle: float,
        vel: float,
        accel: float,
        profile: str = "ramp",
    ) -> List[Pose]:
        """Arc in the XY plane of the center frame, keeping the center orientation.

        Angles are in radians, measured from the center frame's X axis;
        end_angle < start_angle moves clockwise.
        """
        radius = _check_positive("radius", radius)
        sweep = float(end_angle) - float(start_angle)
        distance = radius * abs(sweep)
        rot = quat_to_rotation_matrix(center.orientation)

        def point(angle: float) -> Pose:
            local = np.array([radius * math.cos(angle), radius * math.sin(angle), 0.0])
            return Pose(center.position + mat3_vec3(rot, local), center.orientation)

        if distance < 1e-9:
            return [point(float(start_angle))]

        s = self._path_parameter(distance, vel, accel, profile)
        return [point(float(start_angle) + float(si) * sweep) for si in s]

    @staticmethod
    def twists_from_poses(poses: Sequence[Pose], dt: float) -> np.ndarray:
        """Finite-difference twists between consecutive poses.

        Returns:
            (K - 1) x 6 array [vx, vy, vz, wx, wy, wz]
        """
        dt = _check_positive("dt", dt)
        if len(poses) < 2:
            return np.zeros((0, 6))

        twists = np.zeros((len(poses) - 1, 6))
        for k in range(len(poses) - 1):
            a, b = poses[k], poses[k + 1]
            twists[k, 0:3] = (b.position - a.position) / dt
            twists[k, 3:6] = compute_quat_error(a.orientation, b.orientation) / dt
        return twists
