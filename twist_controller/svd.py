"""
Deterministic one-sided (Hestenes) Jacobi SVD.

LAPACK's SVD gives no handle on the iteration count, but the control loop
needs a hard bound on work per tick and a distinct "did not converge" signal.
One-sided Jacobi orthogonalizes the columns of A with plane rotations
accumulated in V:

    A V = G,   s_j = ||G[:, j]||,   U[:, j] = G[:, j] / s_j

One sweep visits every column pair (p, q) once, in a fixed order, so results
are bit-for-bit reproducible for identical input. Works for any shape; for a
6xM Jacobian with M > 6 at least M - 6 singular values come out as zero.

Wide or rank-deficient input always leaves columns of G that are pure
round-off (~1e-16 ||A||). Such columns are never orthogonal to anything in a
relative sense, so any column with ||G[:, j]|| <= tol * ||A||_F counts as
zero: pairs involving it are skipped and its singular value is reported as
exactly 0.
"""

from typing import NamedTuple

import numba
import numpy as np


class SVDResult(NamedTuple):
    u: np.ndarray
    """m x n, columns for zero singular values are zero."""
    s: np.ndarray
    """n singular values, descending."""
    v: np.ndarray
    """n x n orthogonal."""
    converged: bool
    sweeps: int


@numba.njit(fastmath=False)
def jacobi_svd_core(a, maxiter, tol):
    """
    Returns:
        g: A V (m x n), column norms are the singular values
        v: accumulated rotations (n x n)
        converged: True if a sweep finished without rotations
        sweeps: number of sweeps performed
    """
    m = a.shape[0]
    n = a.shape[1]
    g = a.copy()
    v = np.eye(n, dtype=np.float64)

    # Squared column norm below which a column is numerically zero
    frob2 = 0.0
    for i in range(m):
        for j in range(n):
            frob2 += a[i, j] * a[i, j]
    zero_norm2 = tol * tol * frob2

    converged = False
    sweeps = 0
    while sweeps < maxiter:
        sweeps += 1
        rotated = False
        for p in range(n - 1):
            for q in range(p + 1, n):
                alpha = 0.0
                beta = 0.0
                gamma = 0.0
                for k in range(m):
                    alpha += g[k, p] * g[k, p]
                    beta += g[k, q] * g[k, q]
                    gamma += g[k, p] * g[k, q]

                if alpha <= zero_norm2 or beta <= zero_norm2:
                    continue
                # Columns already orthogonal
                if gamma == 0.0 or abs(gamma) <= tol * np.sqrt(alpha * beta):
                    continue

                rotated = True
                zeta = (beta - alpha) / (2.0 * gamma)
                if zeta >= 0.0:
                    t = 1.0 / (zeta + np.sqrt(1.0 + zeta * zeta))
                else:
                    t = -1.0 / (-zeta + np.sqrt(1.0 + zeta * zeta))
                c = 1.0 / np.sqrt(1.0 + t * t)
                s = c * t

                for k in range(m):
                    gp = g[k, p]
                    gq = g[k, q]
                    g[k, p] = c * gp - s * gq
                    g[k, q] = s * gp + c * gq
                for k in range(n):
                    vp = v[k, p]
                    vq = v[k, q]
                    v[k, p] = c * vp - s * vq
                    v[k, q] = s * vp + c * vq

        if not rotated:
            converged = True
            break

    return g, v, converged, sweeps


def jacobi_svd(a: np.ndarray, maxiter: int = 150, tol: float = 1e-12) -> SVDResult:
    """SVD of a (m x n) with at most ``maxiter`` sweeps.

    Non-finite input is reported as not converged without iterating.
    """
    mat = np.ascontiguousarray(a, dtype=np.float64)
    if mat.ndim != 2:
        raise ValueError(f"Expected a 2D matrix, got shape {mat.shape}")
    m, n = mat.shape

    if not np.all(np.isfinite(mat)):
        return SVDResult(np.zeros((m, n)), np.zeros(n), np.eye(n), False, 0)

    g, v, converged, sweeps = jacobi_svd_core(mat, int(maxiter), float(tol))

    s = np.sqrt(np.sum(g * g, axis=0))
    s[s <= tol * np.sqrt(np.sum(mat * mat))] = 0.0
    order = np.argsort(-s, kind="stable")
    s = s[order]
    g = g[:, order]
    v = v[:, order]

    u = np.zeros_like(g)
    nonzero = s > 0.0
    u[:, nonzero] = g[:, nonzero] / s[nonzero]

    return SVDResult(u, s, v, bool(converged), int(sweeps))
