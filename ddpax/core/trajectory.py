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

"""Trajectory data structures for the local passes."""

from dataclasses import dataclass, field
from typing import Any, Dict

import jax.numpy as jnp
from jax import Array


@dataclass
class Trajectory:
    """Nominal or candidate state/control trajectory.

    Attributes:
        X: State trajectory of shape (N, n). X[k] is the state at knot k.
        U: Control trajectory of shape (N-1, m) under zero-order hold, or
            (N, m) under first-order hold where U[N-1] is the final control
            sample.
        info: Free-form metadata (e.g. the step size that produced it).

    Example:
        >>> traj = Trajectory(X=jnp.zeros((21, 2)), U=jnp.zeros((20, 1)))
        >>> traj.num_knots, traj.is_first_order_hold
        (21, False)
    """

    X: Array
    U: Array
    info: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.X = jnp.asarray(self.X)
        self.U = jnp.asarray(self.U)
        if self.X.ndim != 2 or self.U.ndim != 2:
            raise ValueError(
                f"X and U must be 2-D, got shapes {self.X.shape} and {self.U.shape}"
            )
        if self.U.shape[0] not in (self.X.shape[0] - 1, self.X.shape[0]):
            raise ValueError(
                f"U must hold N-1 or N controls for N={self.X.shape[0]} states, "
                f"got {self.U.shape[0]}"
            )

    @property
    def num_knots(self) -> int:
        """Return the number of states N."""
        return self.X.shape[0]

    @property
    def horizon(self) -> int:
        """Return the number of intervals N-1."""
        return self.X.shape[0] - 1

    @property
    def state_dim(self) -> int:
        """Return the state dimension n."""
        return self.X.shape[1]

    @property
    def control_dim(self) -> int:
        """Return the control dimension m."""
        return self.U.shape[1]

    @property
    def is_first_order_hold(self) -> bool:
        """True when the trajectory holds a final control sample."""
        return self.U.shape[0] == self.X.shape[0]

    def is_finite(self) -> bool:
        """True when neither states nor controls contain NaN or Inf."""
        return bool(jnp.all(jnp.isfinite(self.X)) & jnp.all(jnp.isfinite(self.U)))
