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

"""Type definitions for the iLQR/DDP local passes."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Callable, Protocol, Tuple

from jax import Array

if TYPE_CHECKING:
    from ddpax.core.trajectory import Trajectory


# Type aliases for common shapes
# State: (n,) array
# Control: (m,) array
# StateTrajectory: (N, n) array
# ControlTrajectory: (N-1, m) array, or (N, m) under first-order hold


class RegularizationMode(Enum):
    """Where the damping term enters the backward pass.

    STATE inflates the propagated cost-to-go Hessian (S + rho*I) before the
    control blocks of the action-value function are formed. CONTROL adds
    rho*I directly to the control-control block.
    """
    STATE = "state"
    CONTROL = "control"


class BackwardPassKind(Enum):
    """Backward pass formulations sharing one contract."""
    DENSE = "dense"
    SQRT = "sqrt"
    FOH = "foh"


class ErrorCode(Enum):
    """Error codes carried by DDPError and its subclasses."""
    DIMENSION_MISMATCH = "DimensionMismatch"
    BACKWARD_PASS_FAILED = "BackwardPassFailed"
    CHOLESKY_FAILED = "CholeskyFailed"
    INVALID_CONFIGURATION = "InvalidConfiguration"


# Function type protocols

class DynamicsFn(Protocol):
    """Protocol for discrete zero-order-hold dynamics.

    Signature: dynamics(x, u, dt) -> x_next
    """
    def __call__(self, x: Array, u: Array, dt: float) -> Array:
        ...


class FOHDynamicsFn(Protocol):
    """Protocol for discrete first-order-hold dynamics.

    Signature: dynamics(x, u, v, dt) -> x_next, where u and v are the
    control samples at the start and end of the interval.
    """
    def __call__(self, x: Array, u: Array, v: Array, dt: float) -> Array:
        ...


class ContinuousDynamicsFn(Protocol):
    """Protocol for continuous-time dynamics: f(x, u) -> dx/dt."""
    def __call__(self, x: Array, u: Array) -> Array:
        ...


class RolloutFn(Protocol):
    """Closed-loop rollout at a given step size.

    Signature: rollout(alpha) -> (candidate, success). success is False
    when the simulation produced non-finite values.
    """
    def __call__(self, alpha: float) -> Tuple['Trajectory', bool]:
        ...


# Scalar cost of a whole trajectory, including any constraint penalties.
TrajectoryCostFn = Callable[['Trajectory'], float]
