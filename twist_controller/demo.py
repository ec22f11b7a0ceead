#!/usr/bin/env python3
"""
Differential IK tracking demo.

Drives the six-axis reference chain along a straight Cartesian line: the
trajectory interpolator produces one pose per tick, the twist between
consecutive poses (plus a small pose-error feedback term) goes to the solver,
and the resulting joint velocities are integrated to new joint positions.

With --base the three virtual base columns are active: the solved base
velocities [vx, vy, wz] move a planar base in the world frame, the chain rides
on the base origin, and tracking is measured in the world frame.

Usage: python -m twist_controller.demo [--config PATH] [--rate HZ] [--base]
"""

import argparse
import sys
from typing import List, Optional

import numpy as np

from .inverse_differential_kinematics_solver import InverseDifferentialKinematicsSolver
from .kinematics import SIX_AXIS_READY_POSE, Pose, SerialChainModel, create_six_axis_config
from .quaternion_math import (
    compute_quat_error, quat_conjugate, quat_from_axis_angle, quat_multiply, quat_rotate_vector,
)
from .solver_params import DEFAULT_CONFIG_PATH, SolverParameters, load_solver_params
from .trajectory_interpolator import TrajectoryInterpolator


_Z_AXIS = np.array([0.0, 0.0, 1.0])


def world_pose(chain_pose: Pose, base_xy: np.ndarray, base_yaw: float) -> Pose:
    """Chain-frame pose seen from the world, with the chain on the base origin."""
    q_base = quat_from_axis_angle(_Z_AXIS, base_yaw)
    position = np.array([base_xy[0], base_xy[1], 0.0]) + quat_rotate_vector(q_base, chain_pose.position)
    return Pose(position, quat_multiply(q_base, chain_pose.orientation))


def to_base_frame(twist: np.ndarray, base_yaw: float) -> np.ndarray:
    q_inv = quat_conjugate(quat_from_axis_angle(_Z_AXIS, base_yaw))
    return np.concatenate([
        quat_rotate_vector(q_inv, np.ascontiguousarray(twist[:3])),
        quat_rotate_vector(q_inv, np.ascontiguousarray(twist[3:])),
    ])


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Differential IK line tracking demo")
    parser.add_argument("--config", type=str, default=str(DEFAULT_CONFIG_PATH),
                        help="Solver configuration YAML")
    parser.add_argument("--rate", type=float, default=100.0, help="Control rate in Hz")
    parser.add_argument("--distance", type=float, default=0.15, help="Line length in meters")
    parser.add_argument("--vel", type=float, default=0.1, help="Cruise velocity in m/s")
    parser.add_argument("--accel", type=float, default=0.5, help="Acceleration in m/s^2")
    parser.add_argument("--profile", choices=["ramp", "sinoid"], default="ramp")
    parser.add_argument("--gain", type=float, default=2.0, help="Pose error feedback gain")
    parser.add_argument("--base", action="store_true", help="Activate the mobile base columns")
    parser.add_argument("--base-ratio", type=float, default=0.5)
    parser.add_argument("--log-level", type=str, default="INFO")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        params = load_solver_params(args.config)
    except (OSError, ValueError) as e:
        print(f"Configuration file is invalid:\n{e}")
        return 1

    if args.base:
        cfg = params.to_dict()
        cfg.update(base_active=True, base_ratio=args.base_ratio)
        params = SolverParameters.from_dict(cfg)

    model = SerialChainModel(create_six_axis_config())
    solver = InverseDifferentialKinematicsSolver(
        model, params, log_level=args.log_level, track_performance=True)

    q = SIX_AXIS_READY_POSE.copy()
    q_dot = np.zeros(model.num_joints)
    dt = 1.0 / args.rate

    start = model.forward_kinematics(q)
    goal = Pose(start.position + np.array([0.0, args.distance, -0.5 * args.distance]), start.orientation)

    interpolator = TrajectoryInterpolator(args.rate)
    poses = interpolator.linear_interpolation(start, goal, args.vel, args.accel, args.profile)
    twists = interpolator.twists_from_poses(poses, dt)

    # The Jacobian is expressed in the chain base frame, which sits on the
    # base origin with the same orientation
    base_pose = Pose.identity()
    chain_base_pose = Pose.identity()

    # Mobile base state in the world frame: planar position and yaw
    base_xy = np.zeros(2)
    base_yaw = 0.0

    print("DIFFERENTIAL IK LINE TRACKING")
    print("=" * 50)
    print(f"Method: {params.method.value}  damping: {params.damping_method.value}  "
          f"base: {params.base_active}")
    print(f"Ticks: {len(twists)} at {args.rate:.0f} Hz")

    failures = 0
    for k, twist in enumerate(twists):
        current = world_pose(model.forward_kinematics(q), base_xy, base_yaw)
        target = poses[k + 1]
        feedback = np.concatenate([
            target.position - current.position,
            compute_quat_error(current.orientation, target.orientation),
        ])
        command = to_base_frame(twist + args.gain * feedback, base_yaw)

        result = solver.tick(q, q_dot, command, base_pose, chain_base_pose, target_period_s=dt)
        if not result.ok:
            failures += 1
            q_dot = np.zeros(model.num_joints)  # hold position
            continue

        q_dot = result.arm_velocities
        q = q + q_dot * dt

        if result.base_velocities is not None:
            # Base columns are scaled by base_ratio
            vx, vy, wz = params.base_ratio * result.base_velocities
            c, s = np.cos(base_yaw), np.sin(base_yaw)
            base_xy = base_xy + np.array([c * vx - s * vy, s * vx + c * vy]) * dt
            base_yaw += float(wz) * dt

    final = world_pose(model.forward_kinematics(q), base_xy, base_yaw)
    error = float(np.linalg.norm(final.position - goal.position))

    print("-" * 50)
    print(f"Final position error: {error * 1000.0:.2f} mm")
    if params.base_active:
        print(f"Base moved: {np.linalg.norm(base_xy) * 1000.0:.2f} mm, yaw {np.degrees(base_yaw):.3f} deg")
    print(f"Failed ticks: {failures}")
    stats = solver.get_perf_stats()
    if stats:
        print(f"Tick time: avg {stats['proc_avg_ms']:.3f} ms, max {stats['proc_max_ms']:.3f} ms")
    return 0 if failures == 0 else 2


if __name__ == "__main__":
    sys.exit(main())
