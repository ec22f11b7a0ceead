"""Differential inverse kinematics for (mobile-base mounted) kinematic chains."""

from .constraint_solver import ConstraintSolverFactory, SolverResult, SolverStatus
from .inverse_differential_kinematics_solver import InverseDifferentialKinematicsSolver, TickResult
from .jacobian_augmenter import JacobianAugmenter
from .kinematics import KinematicsModel, Pose, SerialChainConfig, SerialChainModel
from .solver_params import DampingMethod, SolverMethod, SolverParameters, load_solver_params
from .trajectory_interpolator import TrajectoryInterpolator

__all__ = [
    'ConstraintSolverFactory',
    'DampingMethod',
    'InverseDifferentialKinematicsSolver',
    'JacobianAugmenter',
    'KinematicsModel',
    'Pose',
    'SerialChainConfig',
    'SerialChainModel',
    'SolverMethod',
    'SolverParameters',
    'SolverResult',
    'SolverStatus',
    'TickResult',
    'TrajectoryInterpolator',
    'load_solver_params',
]
