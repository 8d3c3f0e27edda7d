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

"""Dense discrete-time Riccati backward pass.

Computes feedback gains K, feedforward terms d, the cost-to-go (S, s) and
the expected cost change Delta-v by sweeping backward from the terminal
knot. Two versions of the control blocks are formed at each knot: the
regularized pair is used only for the gains, the unregularized pair for
the value recursion and Delta-v.
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
    Linearization,
    Unconstrained,
    validate_problem,
)
from ddpax.core.regularization import Regularization
from ddpax.core.trajectory import Trajectory
from ddpax.core.types import RegularizationMode
from ddpax.utils.psd import symmetrize


@partial(jit, static_argnames=('state_regularization',))
def dense_step(
    S: Array,
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
    augmentation: Tuple[Array, Array, Array, Array, Array],
    state_regularization: bool = False,
) -> Tuple[Array, Array, Array, Array, Array, Array]:
    """Single backward step of the dense recursion.

    Value function: V(dx) = 0.5 dx' S dx + s' dx
    Optimal control: du = K dx + d

    Args:
        S: Next cost-to-go Hessian (n, n).
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
        augmentation: Constraint terms (gx, gu, Hxx, Huu, Hux).
        state_regularization: Inflate S instead of Quu.

    Returns:
        Tuple of:
            - K: Feedback gain (m, n)
            - d: Feedforward term (m,)
            - S_prev: Cost-to-go Hessian at this knot (n, n)
            - s_prev: Cost-to-go gradient at this knot (n,)
            - dv: Contribution to Delta-v, (d'Qu, 0.5 d'Quu d)
            - ok: False if the regularized Quu is not positive definite
    """
    gx, gu, Cxx, Cuu, Cux = augmentation
    m = R.shape[0]

    # Stage cost expansion
    lx = dt * Q @ (x - xf)
    lu = dt * R @ u
    lxx = dt * Q
    luu = dt * R

    # Action-value expansion
    Qx = lx + fx.T @ s + gx
    Qu = lu + fu.T @ s + gu
    Qxx = lxx + fx.T @ S @ fx + Cxx
    Quu = luu + fu.T @ S @ fu + Cuu
    Qux = fu.T @ S @ fx + Cux

    if state_regularization:
        S_reg = S + rho * jnp.eye(S.shape[0])
        Quu_reg = luu + fu.T @ S_reg @ fu + Cuu
        Qux_reg = fu.T @ S_reg @ fx + Cux
    else:
        Quu_reg = Quu + rho * jnp.eye(m)
        Qux_reg = Qux

    L = jnp.linalg.cholesky(symmetrize(Quu_reg))
    ok = jnp.all(jnp.isfinite(L))

    K = -jsp.linalg.cho_solve((L, True), Qux_reg)
    d = -jsp.linalg.cho_solve((L, True), Qu)

    # Cost-to-go from the unregularized blocks
    s_prev = Qx + K.T @ Quu @ d + K.T @ Qu + Qux.T @ d
    S_prev = symmetrize(Qxx + K.T @ Quu @ K + K.T @ Qux + Qux.T @ K)

    dv = jnp.array([d @ Qu, 0.5 * d @ Quu @ d])

    return K, d, S_prev, s_prev, dv, ok


def backward_pass(
    trajectory: Trajectory,
    linearization: Linearization,
    weights: CostWeights,
    constraints: Optional[ConstraintAugmentation] = None,
    regularization: Optional[Regularization] = None,
    config: BackwardPassConfig = BackwardPassConfig(),
) -> BackwardPassResult:
    """Dense iLQR backward pass.

    Args:
        trajectory: Nominal trajectory with N states and N-1 controls.
        linearization: Discrete Jacobians fx, fu along the trajectory.
        weights: Quadratic cost weights.
        constraints: Constraint augmentation; defaults to Unconstrained().
        regularization: Damping controller, mutated in place. A fresh
            controller with default settings is used if None.
        config: Regularization mode and restart cap.

    Returns:
        BackwardPassResult with K (N-1, m, n), d (N-1, m), S (N, n, n),
        s (N, n) and Delta-v.

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

    def sweep(rho: float):
        S_k, s_k = terminal_cost_to_go(X[N - 1], weights, constraints)
        K = [None] * (N - 1)
        d = [None] * (N - 1)
        S = [None] * N
        s = [None] * N
        S[N - 1], s[N - 1] = S_k, s_k
        dv = jnp.zeros(2)

        for k in reversed(range(N - 1)):
            K_k, d_k, S_k, s_k, dv_k, ok = dense_step(
                S_k, s_k, X[k], U[k], linearization.fx[k], linearization.fu[k],
                weights.Q, weights.R, weights.xf, weights.dt, rho,
                constraints.stage_expansion(k, n, m),
                state_regularization=state_regularization,
            )
            if not bool(ok):
                return SweepFailure(knot=k, reason='Quu not positive definite')
            K[k], d[k], S[k], s[k] = K_k, d_k, S_k, s_k
            dv = dv + dv_k

        return BackwardPassResult(
            gains=GainSchedule(K=jnp.stack(K), d=jnp.stack(d)),
            cost_to_go=CostToGo(S=jnp.stack(S), s=jnp.stack(s)),
            expected_decrease=ExpectedDecrease.from_array(dv),
        )

    return run_sweeps(sweep, regularization, config, 'dense')
