# Copyright 2024 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     https://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Positive (semi-)definite matrix utilities.

This module provides the symmetric-matrix helpers used by the backward
passes, including the square-root (Cholesky factor) operations:

- chol_plus: upper factor of A'A + B'B by QR of the stacked rows
- chol_minus: upper factor of R'R - B'B by sequential rank-one downdates

All factors are upper triangular with R'R equal to the represented matrix.
"""

from typing import Tuple

import jax.numpy as jnp
from jax import Array, jit, lax

from ddpax.core.exceptions import FactorizationError


@jit
def symmetrize(Q: Array) -> Array:
    """Symmetrize a matrix.

    Args:
        Q: Matrix of shape (n, n).

    Returns:
        Symmetric matrix (Q + Q') / 2.
    """
    return 0.5 * (Q + Q.T)


@jit
def is_positive_definite(Q: Array) -> Array:
    """Check positive definiteness of the symmetric part of Q.

    A Cholesky factorization is attempted; JAX fills the factor with NaNs
    when it breaks down, so finiteness is the test.

    Args:
        Q: Matrix to check, shape (m, m).

    Returns:
        Boolean scalar array.
    """
    L = jnp.linalg.cholesky(symmetrize(Q))
    return jnp.all(jnp.isfinite(L))


def cholesky_factor(Q: Array, raise_on_failure: bool = False) -> Array:
    """Upper-triangular Cholesky factor U with U'U = sym(Q).

    Args:
        Q: Symmetric positive definite matrix (n, n).
        raise_on_failure: Raise FactorizationError instead of returning a
            factor filled with NaNs.

    Returns:
        Upper-triangular factor of shape (n, n).

    Raises:
        FactorizationError: If Q is not positive definite and
            raise_on_failure is set.
    """
    U = jnp.linalg.cholesky(symmetrize(Q)).T
    if raise_on_failure and not bool(jnp.all(jnp.isfinite(U))):
        raise FactorizationError(
            f"Matrix of shape {Q.shape} is not positive definite"
        )
    return U


@jit
def psd_sqrt(Q: Array) -> Array:
    """Square-root rows of a PSD matrix.

    Returns W with W'W = Q. Negative eigenvalues from round-off are clipped
    to zero, so singular weight matrices are allowed.

    Args:
        Q: Symmetric positive semi-definite matrix (n, n).

    Returns:
        W: Matrix of shape (n, n), not necessarily triangular.
    """
    S, V = jnp.linalg.eigh(symmetrize(Q))
    return jnp.sqrt(jnp.maximum(S, 0.0))[:, None] * V.T


@jit
def project_psd_cone(Q: Array, delta: float = 0.0) -> Array:
    """Project a symmetric matrix to the PSD cone.

    Computes the nearest positive semi-definite matrix by setting
    negative eigenvalues to zero (or to delta).

    Args:
        Q: Symmetric matrix of shape (n, n).
        delta: Minimum eigenvalue of the projection. Use delta > 0
            to ensure positive definiteness instead of semi-definiteness.

    Returns:
        Q_psd: Projected matrix of shape (n, n), guaranteed to be symmetric
            with all eigenvalues >= delta.
    """
    S, V = jnp.linalg.eigh(symmetrize(Q))
    S = jnp.maximum(S, delta)
    Q_plus = jnp.matmul(V, jnp.matmul(jnp.diag(S), V.T))
    return symmetrize(Q_plus)


@jit
def chol_plus(A: Array, B: Array) -> Array:
    """Upper-triangular factor of A'A + B'B.

    Stacks A over B and triangularizes the stack with a QR decomposition.
    Rows of the result are sign-normalized so the diagonal is non-negative,
    which cholesky_downdate relies on.

    Args:
        A: Matrix of shape (r1, c).
        B: Matrix of shape (r2, c). May have zero rows.

    Returns:
        R: Upper-triangular matrix (c, c) with R'R = A'A + B'B.

    Example:
        >>> R = chol_plus(jnp.eye(2), 2.0 * jnp.eye(2))
        >>> R.T @ R  # 5 * I
    """
    P = jnp.vstack([A, B])
    c = P.shape[1]
    R = jnp.linalg.qr(P, mode='r')
    if R.shape[0] < c:
        R = jnp.vstack([R, jnp.zeros((c - R.shape[0], c), dtype=R.dtype)])
    signs = jnp.where(jnp.diag(R) < 0, -1.0, 1.0).astype(R.dtype)
    return signs[:, None] * R


@jit
def cholesky_downdate(R: Array, x: Array) -> Tuple[Array, Array]:
    """Rank-one downdate of an upper Cholesky factor.

    Computes R1 with R1'R1 = R'R - x x'.

    Args:
        R: Upper-triangular factor (n, n) with positive diagonal.
        x: Vector (n,).

    Returns:
        Tuple of:
            - R1: Downdated factor (n, n)
            - ok: False if R'R - x x' is not positive definite
    """
    n = R.shape[0]
    idx = jnp.arange(n)

    def body(k, carry):
        R, x, ok = carry
        Rkk = R[k, k]
        r2 = Rkk * Rkk - x[k] * x[k]
        ok = jnp.logical_and(ok, r2 > 0.0)
        r = jnp.sqrt(jnp.maximum(r2, 0.0))
        c = r / Rkk
        s = x[k] / Rkk
        tail = idx > k
        row = jnp.where(tail, (R[k] - s * x) / c, R[k])
        row = row.at[k].set(r)
        x = jnp.where(tail, c * x - s * row, x)
        return R.at[k].set(row), x, ok

    R1, _, ok = lax.fori_loop(0, n, body, (R, x, jnp.array(True)))
    ok = jnp.logical_and(ok, jnp.all(jnp.isfinite(R1)))
    return R1, ok


@jit
def chol_minus(R: Array, B: Array) -> Tuple[Array, Array]:
    """Upper-triangular factor of R'R - B'B.

    Applies one rank-one downdate per row of B. The result is only valid
    while every intermediate matrix stays positive definite; `ok` reports
    whether that held.

    Args:
        R: Upper-triangular factor (n, n).
        B: Matrix of shape (p, n) whose rows are removed.

    Returns:
        Tuple of:
            - R1: Factor of shape (n, n)
            - ok: Boolean scalar array
    """
    def body(i, carry):
        R, ok = carry
        R, ok_i = cholesky_downdate(R, B[i])
        return R, jnp.logical_and(ok, ok_i)

    return lax.fori_loop(0, B.shape[0], body, (R, jnp.array(True)))
