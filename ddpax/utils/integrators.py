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

"""Discretization of continuous-time dynamics.

The passes consume discrete dynamics with the timestep as an explicit
argument:

    zero-order hold:  x_next = f_d(x, u, dt)
    first-order hold: x_next = f_d(x, u, v, dt)

where v is the control sample at the end of the interval. These factories
build them from continuous dynamics dx/dt = f(x, u).
"""

from typing import Callable

from ddpax.core.types import ContinuousDynamicsFn, DynamicsFn, FOHDynamicsFn


def euler(dynamics_continuous: ContinuousDynamicsFn) -> DynamicsFn:
    """Forward Euler: x_next = x + dt * f(x, u)."""
    def dynamics(x, u, dt):
        return x + dt * dynamics_continuous(x, u)

    return dynamics


def midpoint(dynamics_continuous: ContinuousDynamicsFn) -> DynamicsFn:
    """Explicit midpoint rule.

        k1 = f(x, u)
        k2 = f(x + dt/2 * k1, u)
        x_next = x + dt * k2
    """
    def dynamics(x, u, dt):
        k1 = dynamics_continuous(x, u)
        k2 = dynamics_continuous(x + 0.5 * dt * k1, u)
        return x + dt * k2

    return dynamics


def rk4(dynamics_continuous: ContinuousDynamicsFn) -> DynamicsFn:
    """Fourth-order Runge-Kutta with the control held constant.

        k1 = f(x, u)
        k2 = f(x + dt/2 * k1, u)
        k3 = f(x + dt/2 * k2, u)
        k4 = f(x + dt * k3, u)
        x_next = x + dt/6 * (k1 + 2*k2 + 2*k3 + k4)

    Args:
        dynamics_continuous: Continuous-time dynamics (x, u) -> dx/dt.

    Returns:
        Discrete dynamics (x, u, dt) -> x_next.

    Example:
        >>> def double_integrator(x, u):
        ...     return jnp.array([x[1], u[0]])
        ...
        >>> f = rk4(double_integrator)
        >>> x_next = f(jnp.zeros(2), jnp.ones(1), 0.1)
    """
    def dynamics(x, u, dt):
        k1 = dynamics_continuous(x, u)
        k2 = dynamics_continuous(x + 0.5 * dt * k1, u)
        k3 = dynamics_continuous(x + 0.5 * dt * k2, u)
        k4 = dynamics_continuous(x + dt * k3, u)
        return x + dt / 6.0 * (k1 + 2.0 * k2 + 2.0 * k3 + k4)

    return dynamics


def rk3_foh(dynamics_continuous: ContinuousDynamicsFn) -> FOHDynamicsFn:
    """Third-order Runge-Kutta with a linearly interpolated control.

    The control moves from u at the start of the interval to v at its end:

        k1 = f(x, u) dt
        k2 = f(x + k1/2, (u + v)/2) dt
        k3 = f(x - k1 + 2 k2, v) dt
        x_next = x + (k1 + 4 k2 + k3) / 6

    Args:
        dynamics_continuous: Continuous-time dynamics (x, u) -> dx/dt.

    Returns:
        Discrete dynamics (x, u, v, dt) -> x_next.
    """
    def dynamics(x, u, v, dt):
        k1 = dynamics_continuous(x, u) * dt
        k2 = dynamics_continuous(x + 0.5 * k1, 0.5 * (u + v)) * dt
        k3 = dynamics_continuous(x - k1 + 2.0 * k2, v) * dt
        return x + (k1 + 4.0 * k2 + k3) / 6.0

    return dynamics


_INTEGRATORS = {
    'euler': euler,
    'midpoint': midpoint,
    'rk4': rk4,
}


def discretize(dynamics_continuous: ContinuousDynamicsFn, method: str = 'rk4') -> DynamicsFn:
    """Zero-order-hold discretization by name ('euler', 'midpoint', 'rk4')."""
    try:
        integrator: Callable = _INTEGRATORS[method]
    except KeyError:
        raise ValueError(
            f"Unknown integrator: {method}. Available: {sorted(_INTEGRATORS)}"
        ) from None
    return integrator(dynamics_continuous)
