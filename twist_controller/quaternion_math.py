"""
Common quaternion and small-vector math optimized with numba.

All quaternions use [w, x, y, z] format, where w is the scalar part
and [x, y, z] is the vector part. Everything is float64: the solver
works close to kinematic singularities where float32 round-off shows up
directly in the inverted singular values.

Callers are expected to pass contiguous float64 arrays (use
``as_vector3`` / ``as_quat`` at the Python boundary).
"""

import numpy as np
import numba


def as_vector3(v) -> np.ndarray:
    """Coerce input to a contiguous float64 3-vector."""
    arr = np.ascontiguousarray(v, dtype=np.float64).reshape(-1)
    if arr.shape[0] != 3:
        raise ValueError(f"Expected 3 components, got {arr.shape[0]}")
    return arr


def as_quat(q) -> np.ndarray:
    """Coerce input to a contiguous float64 quaternion [w, x, y, z]."""
    arr = np.ascontiguousarray(q, dtype=np.float64).reshape(-1)
    if arr.shape[0] != 4:
        raise ValueError(f"Expected quaternion [w, x, y, z], got {arr.shape[0]} components")
    return arr


# General utility functions for numerical operations
@numba.njit(fastmath=False)
def normalize_vector(x, eps=1e-12):
    """Normalize a vector to unit length (returns a copy of x if too short)."""
    norm = 0.0
    for i in range(x.shape[0]):
        norm += x[i] * x[i]
    norm = np.sqrt(norm)
    if norm < eps:
        return x.copy()
    return x / norm


@numba.njit(fastmath=False)
def cross3(a, b):
    """Cross product of two 3-vectors."""
    return np.array([
        a[1] * b[2] - a[2] * b[1],
        a[2] * b[0] - a[0] * b[2],
        a[0] * b[1] - a[1] * b[0]
    ], dtype=np.float64)


# Quaternion operations
@numba.njit(fastmath=False)
def quat_norm(q):
    return np.sqrt(q[0]*q[0] + q[1]*q[1] + q[2]*q[2] + q[3]*q[3])


@numba.njit(fastmath=False)
def quat_normalize(q, eps=1e-12):
    """
    Normalize a quaternion to unit magnitude.

    Args:
        q: Quaternion [w, x, y, z]

    Returns:
        Normalized quaternion of unit length (identity if q is degenerate)
    """
    norm = quat_norm(q)
    if norm < eps:
        return np.array([1.0, 0.0, 0.0, 0.0], dtype=np.float64)
    return q / norm


@numba.njit(fastmath=False)
def quat_unique(q):
    """Ensure quaternion has non-negative real part."""
    if q[0] < 0.0:
        return -q
    return q.copy()


@numba.njit(fastmath=False)
def quat_multiply(q1, q2):
    """
    Multiply two quaternions.

    Args:
        q1: First quaternion [w, x, y, z]
        q2: Second quaternion [w, x, y, z]

    Returns:
        Result of quaternion multiplication q1*q2
    """
    w1, x1, y1, z1 = q1[0], q1[1], q1[2], q1[3]
    w2, x2, y2, z2 = q2[0], q2[1], q2[2], q2[3]

    return np.array([
        w1 * w2 - x1 * x2 - y1 * y2 - z1 * z2,
        w1 * x2 + x1 * w2 + y1 * z2 - z1 * y2,
        w1 * y2 - x1 * z2 + y1 * w2 + z1 * x2,
        w1 * z2 + x1 * y2 - y1 * x2 + z1 * w2
    ], dtype=np.float64)


@numba.njit(fastmath=False)
def quat_conjugate(q):
    """Conjugate quaternion [w, -x, -y, -z]."""
    result = np.empty(4, dtype=np.float64)
    result[0] = q[0]
    result[1] = -q[1]
    result[2] = -q[2]
    result[3] = -q[3]
    return result


@numba.njit(fastmath=False)
def quat_rotate_vector(q, v):
    """
    Rotate a 3D vector using a unit quaternion.

    v' = v + 2 * qw * (q_vec x v) + 2 * q_vec x (q_vec x v)
    """
    qw, qx, qy, qz = q[0], q[1], q[2], q[3]

    c1x = qy * v[2] - qz * v[1]
    c1y = qz * v[0] - qx * v[2]
    c1z = qx * v[1] - qy * v[0]

    c2x = qy * c1z - qz * c1y
    c2y = qz * c1x - qx * c1z
    c2z = qx * c1y - qy * c1x

    return np.array([
        v[0] + 2.0 * qw * c1x + 2.0 * c2x,
        v[1] + 2.0 * qw * c1y + 2.0 * c2y,
        v[2] + 2.0 * qw * c1z + 2.0 * c2z
    ], dtype=np.float64)


@numba.njit(fastmath=False)
def quat_to_rotation_matrix(q, eps=1e-12):
    """
    Rotation matrix of a quaternion.

    The quaternion is normalized first. A zero-norm quaternion denotes a
    degenerate frame and maps to the zero matrix, so anything rotated by it
    vanishes instead of silently passing through unrotated.
    """
    R = np.zeros((3, 3), dtype=np.float64)
    norm = quat_norm(q)
    if norm < eps:
        return R

    w = q[0] / norm
    x = q[1] / norm
    y = q[2] / norm
    z = q[3] / norm

    R[0, 0] = 1.0 - 2.0 * (y * y + z * z)
    R[0, 1] = 2.0 * (x * y - w * z)
    R[0, 2] = 2.0 * (x * z + w * y)
    R[1, 0] = 2.0 * (x * y + w * z)
    R[1, 1] = 1.0 - 2.0 * (x * x + z * z)
    R[1, 2] = 2.0 * (y * z - w * x)
    R[2, 0] = 2.0 * (x * z - w * y)
    R[2, 1] = 2.0 * (y * z + w * x)
    R[2, 2] = 1.0 - 2.0 * (x * x + y * y)
    return R


@numba.njit(fastmath=False)
def mat3_vec3(R, v):
    return np.array([
        R[0, 0] * v[0] + R[0, 1] * v[1] + R[0, 2] * v[2],
        R[1, 0] * v[0] + R[1, 1] * v[1] + R[1, 2] * v[2],
        R[2, 0] * v[0] + R[2, 1] * v[1] + R[2, 2] * v[2]
    ], dtype=np.float64)


@numba.njit(fastmath=False)
def quat_from_axis_angle(axis, angle):
    """Convert axis-angle to quaternion."""
    axis_norm = normalize_vector(axis)
    half_angle = angle * 0.5
    sin_half = np.sin(half_angle)
    cos_half = np.cos(half_angle)

    return np.array([
        cos_half,
        axis_norm[0] * sin_half,
        axis_norm[1] * sin_half,
        axis_norm[2] * sin_half
    ], dtype=np.float64)


@numba.njit(fastmath=False)
def axis_angle_from_quat(q, eps=1e-12):
    """Convert quaternion to axis-angle (rotation vector) representation."""
    qu = quat_unique(q)

    mag = np.sqrt(qu[1] * qu[1] + qu[2] * qu[2] + qu[3] * qu[3])
    if mag < eps:
        return np.zeros(3, dtype=np.float64)

    angle = 2.0 * np.arctan2(mag, qu[0])
    scale = angle / mag
    return np.array([qu[1] * scale, qu[2] * scale, qu[3] * scale], dtype=np.float64)


@numba.njit(fastmath=False)
def compute_quat_error(q1, q2):
    """
    Orientation error q2 * q1^-1 as a rotation vector.

    Args:
        q1: Current orientation quaternion [w, x, y, z]
        q2: Target orientation quaternion [w, x, y, z]
    """
    q1n = quat_normalize(q1)
    q2n = quat_normalize(q2)
    quat_error = quat_multiply(q2n, quat_conjugate(q1n))
    return axis_angle_from_quat(quat_error)


@numba.njit(fastmath=False)
def quat_slerp(q1, q2, t):
    """Spherical linear interpolation between two quaternions, t in [0, 1]."""
    a = quat_normalize(q1)
    b = quat_normalize(q2)

    dot = a[0]*b[0] + a[1]*b[1] + a[2]*b[2] + a[3]*b[3]
    # Take the short way around
    if dot < 0.0:
        b = -b
        dot = -dot

    if dot > 0.9995:
        # Nearly parallel: lerp + renormalize
        return quat_normalize(a + t * (b - a))

    theta_0 = np.arccos(dot)
    theta = theta_0 * t
    sin_theta_0 = np.sin(theta_0)
    s1 = np.sin(theta_0 - theta) / sin_theta_0
    s2 = np.sin(theta) / sin_theta_0
    return s1 * a + s2 * b
