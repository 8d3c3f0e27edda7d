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

"""Square-root backward pass.

Same contract as the dense pass, but the cost-to-go Hessian is carried as
an upper-triangular factor Su with Su'Su = S, and the action-value
curvature blocks are built with chol_plus so explicit Hessians are never
propagated. The value update is

    Su_prev = chol_plus(chol_minus(Wxx, Wuu^-T Qux), Wuu (K - K*))

where K* = -Quu^-1 Qux is the unregularized gain; the second block is zero
when no damping is applied and makes the update exact for regularized
gains. If a downdate is not well-posed the factor is rebuilt from the
reconstructed dense Hessian plus rho*I; if that also fails the sweep is
restarted with more damping.
"""

from functools import partial
from typing import Optional, Tuple

import jax.numpy as jnp
import jax.scipy as jsp
from absl import logging
from jax import Array, jit

from ddpax.backward.base import (
    BackwardPassResult,
    CostToGo,
    ExpectedDecrease,
    GainSchedule,
    SweepFailure,
    run_sweeps,
    terminal_cost_to_go,
)
from ddpax.core.config import BackwardPassConfig
from ddpax.core.problem import (
    ConstraintAugmentation,
    CostWeights,
    Linearization,
    Unconstrained,
    validate_problem,
)
from ddpax.core.regularization import Regularization
from ddpax.core.trajectory import Trajectory
from ddpax.core.types import RegularizationMode
from ddpax.utils.psd import chol_minus, chol_plus, psd_sqrt, symmetrize


def _upper_solve(W: Array, B: Array) -> Array:
    """Solve (W'W) X = B for upper-triangular W."""
    Y = jsp.linalg.solve_triangular(W, B, trans='T', lower=False)
    return jsp.linalg.solve_triangular(W, Y, lower=False)


@partial(jit, static_argnames=('state_regularization',))
def sqrt_step(
    Su: Array,
    s: Array,
    x: Array,
    u: Array,
    fx: Array,
    fu: Array,
    Q: Array,
    R: Array,
    xf: Array,
    dt: float,
    rho: float,
    Lxx_rows: Array,
    Luu_rows: Array,
    augmentation: Tuple[Array, Array, Array, Array, Array],
    augmentation_rows: Tuple[Array, Array],
    state_regularization: bool = False,
) -> Tuple[Array, ...]:
    """Single backward step of the square-root recursion.

    Args:
        Su: Next cost-to-go factor (n, n), upper triangular.
        s: Next cost-to-go gradient (n,).
        x: Nominal state (n,).
        u: Nominal control (m,).
        fx: Dynamics Jacobian wrt state (n, n).
        fu: Dynamics Jacobian wrt control (n, m).
        Q: State cost weight (n, n).
        R: Control cost weight (m, m).
        xf: Reference state (n,).
        dt: Timestep.
        rho: Damping value.
        Lxx_rows: Square-root rows of dt * Q.
        Luu_rows: Square-root rows of dt * R.
        augmentation: Constraint terms (gx, gu, Hxx, Huu, Hux).
        augmentation_rows: Constraint rows (sqrt(Imu) Cx, sqrt(Imu) Cu).
        state_regularization: Inflate S instead of Quu.

    Returns:
        Tuple of:
            - K: Feedback gain (m, n)
            - d: Feedforward term (m,)
            - Su_prev: Cost-to-go factor at this knot (n, n)
            - s_prev: Cost-to-go gradient at this knot (n,)
            - dv: Contribution to Delta-v
            - gains_ok: False if the regularized Wuu is singular
            - downdate_ok: False if the factor came from the dense fallback
            - factor_ok: False if no valid factor could be formed
    """
    gx, gu, _, _, Cux = augmentation
    Cx_rows, Cu_rows = augmentation_rows
    m = R.shape[0]

    Qx = dt * Q @ (x - xf) + fx.T @ s + gx
    Qu = dt * R @ u + fu.T @ s + gu

    SF = Su @ fx
    SU = Su @ fu
    Wxx = chol_plus(chol_plus(SF, Lxx_rows), Cx_rows)
    Wuu = chol_plus(chol_plus(SU, Luu_rows), Cu_rows)
    Qux = SU.T @ SF + Cux

    if state_regularization:
        Wuu_reg = chol_plus(Wuu, jnp.sqrt(rho) * fu)
        Qux_reg = Qux + rho * fu.T @ fx
    else:
        Wuu_reg = chol_plus(Wuu, jnp.sqrt(rho) * jnp.eye(m))
        Qux_reg = Qux

    K = -_upper_solve(Wuu_reg, Qux_reg)
    d = -_upper_solve(Wuu_reg, Qu)
    gains_ok = jnp.logical_and(jnp.all(jnp.diag(Wuu_reg) > 0.0),
                               jnp.all(jnp.isfinite(K)) & jnp.all(jnp.isfinite(d)))

    Quu = Wuu.T @ Wuu
    s_prev = Qx + K.T @ Quu @ d + K.T @ Qu + Qux.T @ d

    # Factor update by downdate
    Z = jsp.linalg.solve_triangular(Wuu, Qux, trans='T', lower=False)
    K_star = -jsp.linalg.solve_triangular(Wuu, Z, lower=False)
    Su_minus, downdate_ok = chol_minus(Wxx, Z)
    Su_prev = chol_plus(Su_minus, Wuu @ (K - K_star))
    downdate_ok = jnp.logical_and(downdate_ok, jnp.all(jnp.isfinite(Su_prev)))

    # Fallback: factor the reconstructed, damped dense Hessian directly
    Qxx = Wxx.T @ Wxx
    S_dense = symmetrize(Qxx + K.T @ Quu @ K + K.T @ Qux + Qux.T @ K)
    S_damped = S_dense + rho * jnp.eye(S_dense.shape[0])
    Su_fallback = jnp.linalg.cholesky(symmetrize(S_damped)).T
    factor_ok = jnp.logical_or(downdate_ok, jnp.all(jnp.isfinite(Su_fallback)))
    Su_prev = jnp.where(downdate_ok, Su_prev, Su_fallback)

    dv = jnp.array([d @ Qu, 0.5 * d @ Quu @ d])

    return K, d, Su_prev, s_prev, dv, gains_ok, downdate_ok, factor_ok


def backward_pass(
    trajectory: Trajectory,
    linearization: Linearization,
    weights: CostWeights,
    constraints: Optional[ConstraintAugmentation] = None,
    regularization: Optional[Regularization] = None,
    config: BackwardPassConfig = BackwardPassConfig(),
) -> BackwardPassResult:
    """Square-root iLQR backward pass.

    Args:
        trajectory: Nominal trajectory with N states and N-1 controls.
        linearization: Discrete Jacobians fx, fu along the trajectory.
        weights: Quadratic cost weights (PSD).
        constraints: Constraint augmentation; defaults to Unconstrained().
        regularization: Damping controller, mutated in place.
        config: Regularization mode and restart cap.

    Returns:
        BackwardPassResult whose cost_to_go.S holds upper-triangular
        factors (cost_to_go.is_factored is True).

    Raises:
        DimensionError: If the inputs have inconsistent shapes.
        BackwardPassError: If the restart cap is exceeded.
    """
    constraints = Unconstrained() if constraints is None else constraints
    regularization = Regularization() if regularization is None else regularization
    validate_problem(trajectory, linearization, weights, constraints)

    X, U = trajectory.X, trajectory.U
    N, n, m = trajectory.num_knots, trajectory.state_dim, trajectory.control_dim
    state_regularization = config.regularization_mode == RegularizationMode.STATE

    Lxx_rows = psd_sqrt(weights.dt * weights.Q)
    Luu_rows = psd_sqrt(weights.dt * weights.R)

    def sweep(rho: float):
        _, s_k = terminal_cost_to_go(X[N - 1], weights, constraints)
        Su_k = chol_plus(psd_sqrt(weights.Qf), constraints.terminal_sqrt_rows(n))
        K = [None] * (N - 1)
        d = [None] * (N - 1)
        Su = [None] * N
        s = [None] * N
        Su[N - 1], s[N - 1] = Su_k, s_k
        dv = jnp.zeros(2)

        for k in reversed(range(N - 1)):
            K_k, d_k, Su_k, s_k, dv_k, gains_ok, downdate_ok, factor_ok = sqrt_step(
                Su_k, s_k, X[k], U[k], linearization.fx[k], linearization.fu[k],
                weights.Q, weights.R, weights.xf, weights.dt, rho,
                Lxx_rows, Luu_rows,
                constraints.stage_expansion(k, n, m),
                constraints.stage_sqrt_rows(k, n, m),
                state_regularization=state_regularization,
            )
            if not bool(gains_ok):
                return SweepFailure(knot=k, reason='Wuu singular')
            if not bool(downdate_ok):
                logging.warning(
                    'Cholesky downdate failed at knot %d, refactoring dense '
                    'cost-to-go with rho=%g', k, rho)
                if not bool(factor_ok):
                    return SweepFailure(knot=k, reason='cost-to-go not positive definite')
            K[k], d[k], Su[k], s[k] = K_k, d_k, Su_k, s_k
            dv = dv + dv_k

        return BackwardPassResult(
            gains=GainSchedule(K=jnp.stack(K), d=jnp.stack(d)),
            cost_to_go=CostToGo(S=jnp.stack(Su), s=jnp.stack(s), is_factored=True),
            expected_decrease=ExpectedDecrease.from_array(dv),
        )

    return run_sweeps(sweep, regularization, config, 'sqrt')
