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

"""Backward pass for a first-order hold on the controls.

Controls vary linearly between samples, so the running cost of interval k
is the Simpson rule

    dt/6 * (l(x_k, u_k) + 4 l(x_m, u_m) + l(x_{k+1}, u_{k+1}))

over the Hermite midpoint x_m. The cost-to-go at knot k is a quadratic
over the block variable [x_k; u_k], and each step yields gains for the
next control sample v = u_{k+1}:

    dv = K dx + b du + d

At knot 0 the remaining control-control curvature is eliminated into a
gain for u_0 with b forced to zero.
"""

from functools import partial
from typing import Optional, Tuple

import jax.numpy as jnp
import jax.scipy as jsp
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
    FOHLinearization,
    Unconstrained,
    validate_problem,
)
from ddpax.core.regularization import Regularization
from ddpax.core.trajectory import Trajectory
from ddpax.core.types import RegularizationMode
from ddpax.utils.psd import symmetrize


@jit
def interval_cost_expansion(
    x: Array,
    u: Array,
    y: Array,
    v: Array,
    xm: Array,
    Ac1: Array,
    Bc1: Array,
    Ac2: Array,
    Bc2: Array,
    Q: Array,
    R: Array,
    xf: Array,
    dt: float,
) -> Tuple[Tuple[Array, ...], Tuple[Array, ...]]:
    """Second-order expansion of the Simpson interval cost.

    The deviation variables are (x, u, y, v): state and control at the
    start and at the end of the interval. The midpoint state depends on
    all four through

        x_m = (x + y)/2 + dt/8 (f(x, u) - f(y, v))

    Returns:
        Tuple of:
            - gradients (Lx, Lu, Ly, Lv)
            - Hessian blocks (Lxx, Luu, Lyy, Lvv, Lxu, Lxy, Lxv, Luy, Luv, Lyv)
    """
    n = x.shape[0]
    eye = jnp.eye(n)
    h = dt / 6.0
    hm = 4.0 * dt / 6.0

    # Midpoint sensitivities
    Ex = 0.5 * eye + dt / 8.0 * Ac1
    Eu = dt / 8.0 * Bc1
    Ey = 0.5 * eye - dt / 8.0 * Ac2
    Ev = -dt / 8.0 * Bc2

    qm = Q @ (xm - xf)
    um = 0.5 * (u + v)

    Lx = h * Q @ (x - xf) + hm * Ex.T @ qm
    Lu = h * R @ u + hm * (Eu.T @ qm + 0.5 * R @ um)
    Ly = h * Q @ (y - xf) + hm * Ey.T @ qm
    Lv = h * R @ v + hm * (Ev.T @ qm + 0.5 * R @ um)

    Lxx = h * Q + hm * Ex.T @ Q @ Ex
    Luu = h * R + hm * (Eu.T @ Q @ Eu + 0.25 * R)
    Lyy = h * Q + hm * Ey.T @ Q @ Ey
    Lvv = h * R + hm * (Ev.T @ Q @ Ev + 0.25 * R)

    Lxu = hm * Ex.T @ Q @ Eu
    Lxy = hm * Ex.T @ Q @ Ey
    Lxv = hm * Ex.T @ Q @ Ev
    Luy = hm * Eu.T @ Q @ Ey
    Luv = hm * (Eu.T @ Q @ Ev + 0.25 * R)
    Lyv = hm * Ey.T @ Q @ Ev

    return ((Lx, Lu, Ly, Lv),
            (Lxx, Luu, Lyy, Lvv, Lxu, Lxy, Lxv, Luy, Luv, Lyv))


@partial(jit, static_argnames=('state_regularization',))
def foh_step(
    S: Array,
    s: Array,
    gradients: Tuple[Array, ...],
    hessians: Tuple[Array, ...],
    Ad: Array,
    Bd: Array,
    Cd: Array,
    rho: float,
    augmentation: Tuple[Array, Array, Array, Array, Array],
    state_regularization: bool = False,
) -> Tuple[Array, ...]:
    """Eliminate the next control sample over one interval.

    Args:
        S: Next block cost-to-go Hessian over [y; v], (n+m, n+m).
        s: Next block cost-to-go gradient, (n+m,).
        gradients: (Lx, Lu, Ly, Lv) of the interval cost.
        hessians: The ten Hessian blocks of the interval cost.
        Ad, Bd, Cd: Discrete Jacobians of y wrt x, u and v.
        rho: Damping value.
        augmentation: Constraint terms at the interval end, (gy, gv, Hyy,
            Hvv, Hvy).
        state_regularization: Inflate Syy instead of Qvv.

    Returns:
        Tuple of:
            - K: Feedback on the state at the interval start (m, n)
            - b: Feedback on the control at the interval start (m, m)
            - d: Feedforward term (m,)
            - S_prev: Block Hessian over [x; u] (n+m, n+m)
            - s_prev: Block gradient over [x; u] (n+m,)
            - dv: Contribution to Delta-v
            - ok: False if the regularized Qvv is not positive definite
    """
    Lx, Lu, Ly, Lv = gradients
    Lxx, Luu, Lyy, Lvv, Lxu, Lxy, Lxv, Luy, Luv, Lyv = hessians
    gy, gv, Hyy, Hvv, Hvy = augmentation
    n = Ad.shape[0]
    m = Bd.shape[1]

    Ly = Ly + gy
    Lv = Lv + gv
    Lyy = Lyy + Hyy
    Lvv = Lvv + Hvv
    Lyv = Lyv + Hvy.T

    Sy, Sv = s[:n], s[n:]
    Syy, Svv, Syv = S[:n, :n], S[n:, n:], S[:n, n:]

    # Substitute y = Ad x + Bd u + Cd v
    Qx = Lx + Ad.T @ Ly + Ad.T @ Sy
    Qu = Lu + Bd.T @ Ly + Bd.T @ Sy
    Qv = Lv + Cd.T @ Ly + Cd.T @ Sy + Sv

    Qxx = Lxx + Lxy @ Ad + Ad.T @ Lxy.T + Ad.T @ Lyy @ Ad + Ad.T @ Syy @ Ad
    Quu = Luu + Luy @ Bd + Bd.T @ Luy.T + Bd.T @ Lyy @ Bd + Bd.T @ Syy @ Bd
    Qvv = (Lvv + Lyv.T @ Cd + Cd.T @ Lyv + Cd.T @ Lyy @ Cd + Cd.T @ Syy @ Cd
           + Cd.T @ Syv + Syv.T @ Cd + Svv)
    Qxu = Lxu + Lxy @ Bd + Ad.T @ Luy.T + Ad.T @ Lyy @ Bd + Ad.T @ Syy @ Bd
    Qxv = Lxv + Lxy @ Cd + Ad.T @ Lyv + Ad.T @ Lyy @ Cd + Ad.T @ Syy @ Cd + Ad.T @ Syv
    Quv = Luv + Luy @ Cd + Bd.T @ Lyv + Bd.T @ Lyy @ Cd + Bd.T @ Syy @ Cd + Bd.T @ Syv

    if state_regularization:
        Qvv_reg = Qvv + rho * Cd.T @ Cd
        Qxv_reg = Qxv + rho * Ad.T @ Cd
        Quv_reg = Quv + rho * Bd.T @ Cd
    else:
        Qvv_reg = Qvv + rho * jnp.eye(m)
        Qxv_reg = Qxv
        Quv_reg = Quv

    L = jnp.linalg.cholesky(symmetrize(Qvv_reg))
    ok = jnp.all(jnp.isfinite(L))

    K = -jsp.linalg.cho_solve((L, True), Qxv_reg.T)
    b = -jsp.linalg.cho_solve((L, True), Quv_reg.T)
    d = -jsp.linalg.cho_solve((L, True), Qv)

    # Reduced terms from the unregularized blocks
    Qx_ = Qx + K.T @ Qv + Qxv @ d + K.T @ Qvv @ d
    Qu_ = Qu + b.T @ Qv + Quv @ d + b.T @ Qvv @ d
    Qxx_ = symmetrize(Qxx + Qxv @ K + K.T @ Qxv.T + K.T @ Qvv @ K)
    Quu_ = symmetrize(Quu + Quv @ b + b.T @ Quv.T + b.T @ Qvv @ b)
    Qxu_ = Qxu + K.T @ Quv.T + Qxv @ b + K.T @ Qvv @ b

    S_prev = jnp.block([[Qxx_, Qxu_], [Qxu_.T, Quu_]])
    s_prev = jnp.concatenate([Qx_, Qu_])

    dv = jnp.array([Qv @ d, 0.5 * d @ Qvv @ d])

    return K, b, d, S_prev, s_prev, dv, ok


@jit
def foh_first_control_step(
    S: Array,
    s: Array,
    rho: float,
    augmentation: Tuple[Array, Array, Array, Array, Array],
) -> Tuple[Array, ...]:
    """Eliminate the first control sample u_0.

    Args:
        S: Block Hessian over [x_0; u_0], (n+m, n+m).
        s: Block gradient over [x_0; u_0], (n+m,).
        rho: Damping value, added to the control-control block.
        augmentation: Constraint terms at knot 0.

    Returns:
        Tuple of:
            - K: Feedback gain for u_0 (m, n)
            - d: Feedforward term for u_0 (m,)
            - S0: Augmented block Hessian at knot 0
            - s0: Augmented block gradient at knot 0
            - gradient: Cost-to-go gradient wrt x_0 (n,)
            - dv: Contribution to Delta-v
            - ok: False if the regularized block is not positive definite
    """
    gx, gu, Hxx, Huu, Hux = augmentation
    n = gx.shape[0]
    m = gu.shape[0]

    Qx = s[:n] + gx
    Qu = s[n:] + gu
    Qxx = S[:n, :n] + Hxx
    Quu = S[n:, n:] + Huu
    Qxu = S[:n, n:] + Hux.T

    Quu_reg = Quu + rho * jnp.eye(m)
    L = jnp.linalg.cholesky(symmetrize(Quu_reg))
    ok = jnp.all(jnp.isfinite(L))

    K = -jsp.linalg.cho_solve((L, True), Qxu.T)
    d = -jsp.linalg.cho_solve((L, True), Qu)

    gradient = Qx + Qxu @ d
    S0 = jnp.block([[Qxx, Qxu], [Qxu.T, Quu]])
    s0 = jnp.concatenate([Qx, Qu])
    dv = jnp.array([Qu @ d, 0.5 * d @ Quu @ d])

    return K, d, S0, s0, gradient, dv, ok


def backward_pass(
    trajectory: Trajectory,
    linearization: FOHLinearization,
    weights: CostWeights,
    constraints: Optional[ConstraintAugmentation] = None,
    regularization: Optional[Regularization] = None,
    config: BackwardPassConfig = BackwardPassConfig(),
) -> BackwardPassResult:
    """First-order-hold iLQR backward pass.

    Args:
        trajectory: Nominal trajectory with N states and N controls.
        linearization: FOHLinearization along the trajectory.
        weights: Quadratic cost weights.
        constraints: Constraint augmentation indexed like the N controls;
            defaults to Unconstrained().
        regularization: Damping controller, mutated in place.
        config: Regularization mode and restart cap.

    Returns:
        BackwardPassResult with K (N, m, n), b (N, m, m), d (N, m), block
        cost-to-go S (N, n+m, n+m), s (N, n+m), and the state gradient at
        knot 0 in cost_to_go.initial_gradient.

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
    lin = linearization

    def terminal_block():
        S_N, s_N = terminal_cost_to_go(X[N - 1], weights, constraints)
        S = jnp.zeros((n + m, n + m)).at[:n, :n].set(S_N)
        s = jnp.zeros(n + m).at[:n].set(s_N)
        return S, s

    def sweep(rho: float):
        S_k, s_k = terminal_block()
        K = [None] * N
        b = [None] * N
        d = [None] * N
        S = [None] * N
        s = [None] * N
        S[N - 1], s[N - 1] = S_k, s_k
        dv = jnp.zeros(2)

        for k in reversed(range(N - 1)):
            gradients, hessians = interval_cost_expansion(
                X[k], U[k], X[k + 1], U[k + 1], lin.xmid[k],
                lin.Ac[k], lin.Bc[k], lin.Ac[k + 1], lin.Bc[k + 1],
                weights.Q, weights.R, weights.xf, weights.dt,
            )
            K_v, b_v, d_v, S_k, s_k, dv_k, ok = foh_step(
                S_k, s_k, gradients, hessians, lin.fx[k], lin.fu[k], lin.fv[k],
                rho, constraints.stage_expansion(k + 1, n, m),
                state_regularization=state_regularization,
            )
            if not bool(ok):
                return SweepFailure(knot=k + 1, reason='Qvv not positive definite')
            K[k + 1], b[k + 1], d[k + 1] = K_v, b_v, d_v
            S[k], s[k] = S_k, s_k
            dv = dv + dv_k

        K_0, d_0, S_0, s_0, gradient, dv_0, ok = foh_first_control_step(
            S_k, s_k, rho, constraints.stage_expansion(0, n, m),
        )
        if not bool(ok):
            return SweepFailure(knot=0, reason='Quu not positive definite')
        K[0], b[0], d[0] = K_0, jnp.zeros((m, m)), d_0
        S[0], s[0] = S_0, s_0
        dv = dv + dv_0

        return BackwardPassResult(
            gains=GainSchedule(K=jnp.stack(K), d=jnp.stack(d), b=jnp.stack(b)),
            cost_to_go=CostToGo(S=jnp.stack(S), s=jnp.stack(s),
                                initial_gradient=gradient),
            expected_decrease=ExpectedDecrease.from_array(dv),
        )

    return run_sweeps(sweep, regularization, config, 'foh')
