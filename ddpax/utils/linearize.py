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

"""Dynamics linearization along a trajectory.

Produces the Linearization / FOHLinearization tables consumed by the
backward passes, using vmapped jax.jacobian over the knots.
"""

from typing import Callable

import jax.numpy as jnp
from jax import Array, jacobian, vmap

from ddpax.core.problem import FOHLinearization, Linearization
from ddpax.core.trajectory import Trajectory
from ddpax.core.types import ContinuousDynamicsFn, DynamicsFn
from ddpax.utils.integrators import rk3_foh


def vectorize(fun: Callable, argnums: int = 2) -> Callable:
    """Returns a vectorized version of the input function.

    The first `argnums` arguments carry a leading batch axis; the remaining
    arguments (the timestep, typically) are broadcast.

    Args:
        fun: A function f(*args) to be mapped over.
        argnums: Number of leading arguments of fun to vectorize.

    Returns:
        Batched function with the same signature as fun.
    """
    def vfun(*args):
        in_axes = (0,) * argnums + (None,) * (len(args) - argnums)
        return vmap(fun, in_axes=in_axes)(*args)

    return vfun


def hermite_midpoints(
    dynamics_continuous: ContinuousDynamicsFn,
    X: Array,
    U: Array,
    dt: float,
) -> Array:
    """Cubic Hermite midpoint of every interval.

        x_m = (x_k + x_{k+1})/2 + dt/8 (f(x_k, u_k) - f(x_{k+1}, u_{k+1}))

    Args:
        dynamics_continuous: Continuous-time dynamics (x, u) -> dx/dt.
        X: States (N, n).
        U: Control samples (N, m).
        dt: Timestep.

    Returns:
        Midpoint states of shape (N-1, n).
    """
    F = vectorize(dynamics_continuous)(X, U)
    return 0.5 * (X[:-1] + X[1:]) + dt / 8.0 * (F[:-1] - F[1:])


def linearize_dynamics(
    dynamics: DynamicsFn,
    trajectory: Trajectory,
    dt: float,
) -> Linearization:
    """Linearize zero-order-hold dynamics along a trajectory.

    Args:
        dynamics: Discrete dynamics (x, u, dt) -> x_next.
        trajectory: Trajectory with N states and N-1 controls.
        dt: Timestep.

    Returns:
        Linearization with fx (N-1, n, n) and fu (N-1, n, m).
    """
    X, U = trajectory.X, trajectory.U
    T = trajectory.horizon

    fx, fu = _zoh_jacobians(dynamics)(X[:T], U[:T], dt)
    return Linearization(fx=fx, fu=fu)


def _zoh_jacobians(dynamics: DynamicsFn) -> Callable:
    jacobian_x = jacobian(dynamics, argnums=0)
    jacobian_u = jacobian(dynamics, argnums=1)

    def linearizer(x, u, dt):
        return jacobian_x(x, u, dt), jacobian_u(x, u, dt)

    return vectorize(linearizer)


def linearize_foh(
    dynamics_continuous: ContinuousDynamicsFn,
    trajectory: Trajectory,
    dt: float,
) -> FOHLinearization:
    """Linearize first-order-hold dynamics along a trajectory.

    The discrete Jacobians are those of the rk3_foh discretization of
    dynamics_continuous; the continuous Jacobians are evaluated at every
    knot, including the last.

    Args:
        dynamics_continuous: Continuous-time dynamics (x, u) -> dx/dt.
        trajectory: Trajectory with N states and N controls.
        dt: Timestep.

    Returns:
        FOHLinearization along the trajectory.

    Raises:
        ValueError: If the trajectory does not hold a final control sample.
    """
    if not trajectory.is_first_order_hold:
        raise ValueError("linearize_foh requires a trajectory with N controls")
    X, U = trajectory.X, trajectory.U

    Ac = vectorize(jacobian(dynamics_continuous, argnums=0))(X, U)
    Bc = vectorize(jacobian(dynamics_continuous, argnums=1))(X, U)

    discrete = rk3_foh(dynamics_continuous)
    jacobians = [jacobian(discrete, argnums=i) for i in range(3)]

    def linearizer(x, u, v, dt):
        return tuple(jac(x, u, v, dt) for jac in jacobians)

    fx, fu, fv = vectorize(linearizer, argnums=3)(X[:-1], U[:-1], U[1:], dt)
    xmid = hermite_midpoints(dynamics_continuous, X, U, dt)

    return FOHLinearization(
        fx=fx, fu=fu, fv=fv, Ac=Ac, Bc=Bc, xmid=jnp.asarray(xmid),
    )
