"""
Jacobian augmentation for a chain mounted on a mobile base.

With the base inactive the chain Jacobian is used as is. With the base active
three virtual joints are appended: base X and Y linear velocity and base yaw
rate. Their effect on the end-effector twist is a rigid-body velocity
composition (v_point = v_ref + w x r) expressed in the chain base frame:

    J_b[0:3, 0:2] = base_ratio * R_cb[:, 0:2]
    w             = R_cb @ [0, 0, base_ratio]
    r             = R_cb @ p_base
    J_b[0:3, 2]   = w x r
    J_b[3:6, 2]   = w

R_cb is the rotation of the chain base pose. A degenerate (zero-norm)
orientation gives R_cb = 0 and therefore a zero base block.
"""

from typing import Optional

import numba
import numpy as np

from .kinematics import Pose
from .quaternion_math import cross3, mat3_vec3, quat_to_rotation_matrix
from .solver_params import SolverParameters

NUM_BASE_COLUMNS = 3


@numba.njit(fastmath=False)
def base_jacobian_core(chain_base_quat, base_position, base_ratio):
    """6x3 base contribution block."""
    jac_b = np.zeros((6, 3), dtype=np.float64)

    chain_base_rot = quat_to_rotation_matrix(chain_base_quat)

    # Transform base yaw axis and base position into the chain base frame
    w_base_link = np.array([0.0, 0.0, base_ratio], dtype=np.float64)
    w_chain_base = mat3_vec3(chain_base_rot, w_base_link)
    r_chain_base = mat3_vec3(chain_base_rot, base_position)

    tangential_vel = cross3(w_chain_base, r_chain_base)

    for k in range(3):
        # Vx / Vy of the base
        jac_b[k, 0] = base_ratio * chain_base_rot[k, 0]
        jac_b[k, 1] = base_ratio * chain_base_rot[k, 1]
        # Yaw rate: tangential velocity at the chain base...
        jac_b[k, 2] = tangential_vel[k]
        # ...and the angular velocity it induces
        jac_b[3 + k, 2] = w_chain_base[k]

    return jac_b


class JacobianAugmenter:
    """Builds the effective Jacobian the constraint solver works on."""

    def base_jacobian(
        self,
        params: SolverParameters,
        base_pose: Optional[Pose],
        chain_base_pose: Optional[Pose],
    ) -> np.ndarray:
        """6x3 base contribution block for the given poses."""
        if base_pose is None:
            base_pose = Pose.degenerate()
        if chain_base_pose is None:
            chain_base_pose = Pose.degenerate()
        return base_jacobian_core(
            chain_base_pose.orientation, base_pose.position, float(params.base_ratio))

    def augment(
        self,
        raw_jacobian: np.ndarray,
        params: SolverParameters,
        base_pose: Optional[Pose] = None,
        chain_base_pose: Optional[Pose] = None,
    ) -> np.ndarray:
        """Effective Jacobian: 6xN (base inactive) or 6x(N+3) (base active).

        Always returns a freshly allocated array; the input is never modified.
        """
        jac_chain = np.array(raw_jacobian, dtype=np.float64)
        if jac_chain.ndim != 2 or jac_chain.shape[0] != 6:
            raise ValueError(f"Expected a 6xN chain Jacobian, got shape {jac_chain.shape}")

        if not params.base_active:
            return jac_chain

        jac_b = self.base_jacobian(params, base_pose, chain_base_pose)
        # combine chain Jacobian and platform Jacobian
        return np.hstack([jac_chain, jac_b])
