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

"""Trajectory cost evaluation matching the backward pass cost models.

Zero-order hold:

    J = sum_k dt * l(x_k, u_k) + 1/2 (x_N - xf)' Qf (x_N - xf)

First-order hold (Simpson rule over every interval):

    J = sum_k dt/6 (l(x_k, u_k) + 4 l(x_m, u_m) + l(x_{k+1}, u_{k+1}))
        + 1/2 (x_N - xf)' Qf (x_N - xf)

with l(x, u) = 1/2 (x - xf)' Q (x - xf) + 1/2 u' R u.
"""

from typing import Callable, Optional

import jax.numpy as jnp
from jax import Array, jit, vmap

from ddpax.core.problem import CostWeights
from ddpax.core.trajectory import Trajectory
from ddpax.core.types import ContinuousDynamicsFn, TrajectoryCostFn
from ddpax.utils.linearize import hermite_midpoints


@jit
def stage_cost(x: Array, u: Array, Q: Array, R: Array, xf: Array) -> Array:
    """l(x, u) = 1/2 (x - xf)' Q (x - xf) + 1/2 u' R u (not scaled by dt)."""
    dx = x - xf
    return 0.5 * dx @ Q @ dx + 0.5 * u @ R @ u


@jit
def terminal_cost(x: Array, Qf: Array, xf: Array) -> Array:
    dx = x - xf
    return 0.5 * dx @ Qf @ dx


_stage_costs = vmap(stage_cost, in_axes=(0, 0, None, None, None))


def quadratic_cost(trajectory: Trajectory, weights: CostWeights) -> float:
    """Zero-order-hold cost of a trajectory with N-1 controls."""
    X, U = trajectory.X, trajectory.U
    T = trajectory.horizon
    w = weights
    running = w.dt * jnp.sum(_stage_costs(X[:T], U[:T], w.Q, w.R, w.xf))
    return float(running + terminal_cost(X[-1], w.Qf, w.xf))


def foh_quadratic_cost(
    trajectory: Trajectory,
    weights: CostWeights,
    dynamics_continuous: ContinuousDynamicsFn,
) -> float:
    """First-order-hold cost of a trajectory with N controls.

    The midpoint state of every interval is the cubic Hermite interpolant
    of the knot states and their time derivatives.
    """
    X, U = trajectory.X, trajectory.U
    w = weights
    Xm = hermite_midpoints(dynamics_continuous, X, U, w.dt)
    Um = 0.5 * (U[:-1] + U[1:])

    knots = _stage_costs(X, U, w.Q, w.R, w.xf)
    midpoints = _stage_costs(Xm, Um, w.Q, w.R, w.xf)
    running = w.dt / 6.0 * jnp.sum(knots[:-1] + 4.0 * midpoints + knots[1:])
    return float(running + terminal_cost(X[-1], w.Qf, w.xf))


def augmented_lagrangian_penalty(c: Array, penalty: Array, multiplier: Array) -> Array:
    """lambda' c + 1/2 c' I_mu c, summed over all leading axes.

    Args:
        c: Constraint values (..., p).
        penalty: Diagonal of the active-penalty matrix I_mu, same shape.
        multiplier: Lagrange multipliers, same shape.
    """
    return jnp.sum(multiplier * c) + 0.5 * jnp.sum(penalty * c * c)


def make_cost_fn(
    weights: CostWeights,
    dynamics_continuous: Optional[ContinuousDynamicsFn] = None,
    penalty_fn: Optional[Callable[[Trajectory], float]] = None,
) -> TrajectoryCostFn:
    """Build the cost_fn(trajectory) closure consumed by forward_pass().

    Args:
        weights: Quadratic cost weights.
        dynamics_continuous: Required for first-order-hold trajectories,
            whose midpoint states depend on the dynamics.
        penalty_fn: Optional extra term, e.g. the augmented Lagrangian
            penalty of constraints re-evaluated on the candidate.

    Returns:
        Function trajectory -> total cost. The hold is taken from the
        trajectory shape.
    """
    def cost_fn(trajectory: Trajectory) -> float:
        if trajectory.is_first_order_hold:
            if dynamics_continuous is None:
                raise ValueError(
                    "First-order-hold cost requires the continuous dynamics"
                )
            J = foh_quadratic_cost(trajectory, weights, dynamics_continuous)
        else:
            J = quadratic_cost(trajectory, weights)
        if penalty_fn is not None:
            J += float(penalty_fn(trajectory))
        return J

    return cost_fn
