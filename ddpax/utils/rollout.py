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

"""Closed-loop rollouts used by the line search."""

from functools import partial
from typing import Tuple, Union

import jax.numpy as jnp
from jax import Array, jit, lax

from ddpax.backward.base import GainSchedule
from ddpax.core.trajectory import Trajectory
from ddpax.core.types import DynamicsFn, FOHDynamicsFn, RolloutFn


def rollout(dynamics: DynamicsFn, U: Array, x0: Array, dt: float) -> Array:
    """Open-loop rollout: x[k+1] = dynamics(x[k], U[k], dt).

    Args:
        dynamics: Discrete dynamics (x, u, dt) -> x_next.
        U: Control sequence of shape (T, m).
        x0: Initial state of shape (n,).
        dt: Timestep.

    Returns:
        X: State trajectory of shape (T+1, n).
    """
    def step(x, u):
        x_next = dynamics(x, u, dt)
        return x_next, x_next

    _, X_rest = lax.scan(step, x0, U)
    return jnp.vstack((x0, X_rest))


def foh_rollout_open_loop(dynamics: FOHDynamicsFn, U: Array, x0: Array, dt: float) -> Array:
    """Open-loop rollout with linearly interpolated controls U of shape (N, m)."""
    def step(x, uv):
        u, v = uv
        x_next = dynamics(x, u, v, dt)
        return x_next, x_next

    _, X_rest = lax.scan(step, x0, (U[:-1], U[1:]))
    return jnp.vstack((x0, X_rest))


@partial(jit, static_argnums=(0,))
def ddp_rollout(
    dynamics: DynamicsFn,
    X: Array,
    U: Array,
    K: Array,
    d: Array,
    alpha: float,
    dt: float,
) -> Tuple[Array, Array]:
    """Zero-order-hold closed-loop rollout.

        u_new[k] = U[k] + alpha * d[k] + K[k] @ (x_new[k] - X[k])
        x_new[k+1] = dynamics(x_new[k], u_new[k], dt)

    Args:
        dynamics: Discrete dynamics (x, u, dt) -> x_next.
        X: Nominal states (N, n).
        U: Nominal controls (N-1, m).
        K: Feedback gains (N-1, m, n).
        d: Feedforward terms (N-1, m).
        alpha: Step size scaling the feedforward terms.
        dt: Timestep.

    Returns:
        X_new: States (N, n).
        U_new: Controls (N-1, m).
    """
    T, m = U.shape
    X_new = jnp.zeros_like(X).at[0].set(X[0])
    U_new = jnp.zeros((T, m))

    def body(k, inputs):
        X_new, U_new = inputs
        u = U[k] + alpha * d[k] + K[k] @ (X_new[k] - X[k])
        x = dynamics(X_new[k], u, dt)
        return X_new.at[k + 1].set(x), U_new.at[k].set(u)

    return lax.fori_loop(0, T, body, (X_new, U_new))


@partial(jit, static_argnums=(0,))
def foh_rollout(
    dynamics: FOHDynamicsFn,
    X: Array,
    U: Array,
    K: Array,
    b: Array,
    d: Array,
    alpha: float,
    dt: float,
) -> Tuple[Array, Array]:
    """First-order-hold closed-loop rollout.

    The first control sample only sees the feedforward term (the initial
    state is fixed). Every later sample also feeds back the previous
    interval's start state and control sample:

        du[0] = alpha * d[0]
        du[k+1] = K[k+1] dx[k] + b[k+1] du[k] + alpha * d[k+1]
        x_new[k+1] = dynamics(x_new[k], u_new[k], u_new[k+1], dt)

    Args:
        dynamics: Discrete dynamics (x, u, v, dt) -> x_next.
        X: Nominal states (N, n).
        U: Nominal control samples (N, m).
        K: Feedback gains (N, m, n).
        b: Control feedback gains (N, m, m).
        d: Feedforward terms (N, m).
        alpha: Step size scaling the feedforward terms.
        dt: Timestep.

    Returns:
        X_new: States (N, n).
        U_new: Control samples (N, m).
    """
    N = X.shape[0]
    X_new = jnp.zeros_like(X).at[0].set(X[0])
    U_new = jnp.zeros_like(U).at[0].set(U[0] + alpha * d[0])

    def body(k, inputs):
        X_new, U_new = inputs
        dx = X_new[k] - X[k]
        du = U_new[k] - U[k]
        v = U[k + 1] + K[k + 1] @ dx + b[k + 1] @ du + alpha * d[k + 1]
        x = dynamics(X_new[k], U_new[k], v, dt)
        return X_new.at[k + 1].set(x), U_new.at[k + 1].set(v)

    return lax.fori_loop(0, N - 1, body, (X_new, U_new))


def make_rollout_fn(
    dynamics: Union[DynamicsFn, FOHDynamicsFn],
    trajectory: Trajectory,
    gains: GainSchedule,
    dt: float,
) -> RolloutFn:
    """Build the rollout_fn(alpha) closure consumed by forward_pass().

    First-order hold is selected when the gain schedule carries b; the
    dynamics must then take (x, u, v, dt).

    Returns:
        Function alpha -> (candidate, success), success being False when
        the candidate contains NaN or Inf.
    """
    X, U = trajectory.X, trajectory.U

    if gains.is_first_order_hold:
        def simulate(alpha):
            return foh_rollout(dynamics, X, U, gains.K, gains.b, gains.d, alpha, dt)
    else:
        def simulate(alpha):
            return ddp_rollout(dynamics, X, U, gains.K, gains.d, alpha, dt)

    def rollout_fn(alpha: float) -> Tuple[Trajectory, bool]:
        X_new, U_new = simulate(alpha)
        candidate = Trajectory(X=X_new, U=U_new, info={'step_size': alpha})
        return candidate, candidate.is_finite()

    return rollout_fn
