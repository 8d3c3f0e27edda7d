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

"""Problem data consumed by one backward pass.

Everything here is computed by outside collaborators (dynamics model,
constraint bookkeeping) and is read-only to the passes:

- CostWeights: quadratic stage/terminal weights and the reference state
- Linearization / FOHLinearization: per-interval dynamics Jacobians
- ConstraintAugmentation: either Unconstrained() or ActiveConstraints(...)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Tuple

import jax.numpy as jnp
from jax import Array

from ddpax.core.exceptions import DimensionError
from ddpax.core.trajectory import Trajectory


def _freeze_arrays(obj, names) -> None:
    for name in names:
        # frozen dataclass
        object.__setattr__(obj, name, jnp.asarray(getattr(obj, name)))


@dataclass(frozen=True)
class CostWeights:
    """Quadratic tracking cost.

    Stage cost:    dt * (0.5 (x - xf)' Q (x - xf) + 0.5 u' R u)
    Terminal cost: 0.5 (x_N - xf)' Qf (x_N - xf)

    Attributes:
        Q: State weight (n, n).
        R: Control weight (m, m).
        Qf: Terminal state weight (n, n).
        xf: Reference (target) state (n,).
        dt: Timestep scaling the stage cost.
    """
    Q: Array
    R: Array
    Qf: Array
    xf: Array
    dt: float

    def __post_init__(self):
        _freeze_arrays(self, ('Q', 'R', 'Qf', 'xf'))
        if self.dt <= 0:
            raise ValueError("dt must be positive")
        n = self.xf.shape[0]
        if self.Q.shape != (n, n) or self.Qf.shape != (n, n):
            raise DimensionError(
                f"Q and Qf must be ({n}, {n}), got {self.Q.shape} and {self.Qf.shape}"
            )
        if self.R.ndim != 2 or self.R.shape[0] != self.R.shape[1]:
            raise DimensionError(f"R must be square, got {self.R.shape}")

    @property
    def state_dim(self) -> int:
        return self.xf.shape[0]

    @property
    def control_dim(self) -> int:
        return self.R.shape[0]


@dataclass(frozen=True)
class Linearization:
    """Discrete zero-order-hold dynamics Jacobians.

    Attributes:
        fx: d x_{k+1} / d x_k of shape (N-1, n, n).
        fu: d x_{k+1} / d u_k of shape (N-1, n, m).
    """
    fx: Array
    fu: Array

    def __post_init__(self):
        _freeze_arrays(self, ('fx', 'fu'))

    @property
    def num_intervals(self) -> int:
        return self.fx.shape[0]


@dataclass(frozen=True)
class FOHLinearization:
    """Dynamics Jacobians for a first-order hold on the controls.

    Attributes:
        fx: d x_{k+1} / d x_k of shape (N-1, n, n).
        fu: d x_{k+1} / d u_k of shape (N-1, n, m).
        fv: d x_{k+1} / d u_{k+1} of shape (N-1, n, m).
        Ac: Continuous-time df/dx at every knot, shape (N, n, n).
        Bc: Continuous-time df/du at every knot, shape (N, n, m).
        xmid: Hermite midpoint state of every interval, shape (N-1, n).
    """
    fx: Array
    fu: Array
    fv: Array
    Ac: Array
    Bc: Array
    xmid: Array

    def __post_init__(self):
        _freeze_arrays(self, ('fx', 'fu', 'fv', 'Ac', 'Bc', 'xmid'))

    @property
    def num_intervals(self) -> int:
        return self.fx.shape[0]


class ConstraintAugmentation(ABC):
    """Augmented-Lagrangian terms added to the cost expansion.

    Exactly two variants exist: Unconstrained, which contributes exact
    zeros, and ActiveConstraints. The backward passes add these terms
    unconditionally, so the variant is dispatched once through these
    methods.
    """

    @abstractmethod
    def stage_expansion(self, k: int, n: int, m: int) -> Tuple[Array, Array, Array, Array, Array]:
        """Return (gx, gu, Hxx, Huu, Hux) of the penalty at stage k."""

    @abstractmethod
    def terminal_expansion(self, n: int) -> Tuple[Array, Array]:
        """Return (gx, Hxx) of the terminal penalty."""

    @abstractmethod
    def stage_sqrt_rows(self, k: int, n: int, m: int) -> Tuple[Array, Array]:
        """Return (sqrt(Imu) Cx, sqrt(Imu) Cu) row blocks at stage k."""

    @abstractmethod
    def terminal_sqrt_rows(self, n: int) -> Array:
        """Return sqrt(Imu_N) Cx_N."""

    def validate(self, num_controls: int, n: int, m: int) -> None:
        """Raise DimensionError if shapes disagree with the trajectory."""


class Unconstrained(ConstraintAugmentation):
    """No constraint data: every augmentation term is zero."""

    def stage_expansion(self, k, n, m):
        return (jnp.zeros(n), jnp.zeros(m), jnp.zeros((n, n)),
                jnp.zeros((m, m)), jnp.zeros((m, n)))

    def terminal_expansion(self, n):
        return jnp.zeros(n), jnp.zeros((n, n))

    def stage_sqrt_rows(self, k, n, m):
        return jnp.zeros((0, n)), jnp.zeros((0, m))

    def terminal_sqrt_rows(self, n):
        return jnp.zeros((0, n))

    def __repr__(self) -> str:
        return "Unconstrained()"


@dataclass(frozen=True)
class ActiveConstraints(ConstraintAugmentation):
    """Constraint values, Jacobians, active penalties and multipliers.

    The stage arrays are indexed like the trajectory controls (N-1 entries
    under zero-order hold, N under first-order hold). `penalty` holds the
    diagonal of the active-penalty matrix I_mu: zero for inactive
    inequality constraints, mu otherwise.

    Attributes:
        C: Constraint values (K, p).
        Cx: Jacobians wrt state (K, p, n).
        Cu: Jacobians wrt control (K, p, m).
        penalty: Active-penalty weights (K, p).
        multiplier: Lagrange multipliers (K, p).
        C_N: Terminal constraint values (p_N,).
        Cx_N: Terminal Jacobian (p_N, n).
        penalty_N: Terminal active-penalty weights (p_N,).
        multiplier_N: Terminal multipliers (p_N,).
    """
    C: Array
    Cx: Array
    Cu: Array
    penalty: Array
    multiplier: Array
    C_N: Optional[Array] = None
    Cx_N: Optional[Array] = None
    penalty_N: Optional[Array] = None
    multiplier_N: Optional[Array] = None

    def __post_init__(self):
        _freeze_arrays(self, ('C', 'Cx', 'Cu', 'penalty', 'multiplier'))
        n = self.Cx.shape[2]
        if self.C_N is None:
            # no terminal constraint
            object.__setattr__(self, 'C_N', jnp.zeros(0))
            object.__setattr__(self, 'Cx_N', jnp.zeros((0, n)))
            object.__setattr__(self, 'penalty_N', jnp.zeros(0))
            object.__setattr__(self, 'multiplier_N', jnp.zeros(0))
        _freeze_arrays(self, ('C_N', 'Cx_N', 'penalty_N', 'multiplier_N'))

    def stage_expansion(self, k, n, m):
        Cx, Cu, w = self.Cx[k], self.Cu[k], self.penalty[k]
        weighted = w * self.C[k] + self.multiplier[k]
        wCx = w[:, None] * Cx
        return (Cx.T @ weighted, Cu.T @ weighted, Cx.T @ wCx,
                Cu.T @ (w[:, None] * Cu), Cu.T @ wCx)

    def terminal_expansion(self, n):
        w = self.penalty_N
        weighted = w * self.C_N + self.multiplier_N
        return self.Cx_N.T @ weighted, self.Cx_N.T @ (w[:, None] * self.Cx_N)

    def stage_sqrt_rows(self, k, n, m):
        sqrt_w = jnp.sqrt(self.penalty[k])[:, None]
        return sqrt_w * self.Cx[k], sqrt_w * self.Cu[k]

    def terminal_sqrt_rows(self, n):
        return jnp.sqrt(self.penalty_N)[:, None] * self.Cx_N

    def validate(self, num_controls, n, m):
        K, p = self.C.shape
        if K != num_controls:
            raise DimensionError(
                f"Constraint data covers {K} stages, trajectory has {num_controls} controls"
            )
        expected = {
            'Cx': (K, p, n), 'Cu': (K, p, m),
            'penalty': (K, p), 'multiplier': (K, p),
        }
        for name, shape in expected.items():
            if getattr(self, name).shape != shape:
                raise DimensionError(
                    f"{name} must have shape {shape}, got {getattr(self, name).shape}"
                )
        p_N = self.C_N.shape[0]
        if (self.Cx_N.shape != (p_N, n) or self.penalty_N.shape != (p_N,)
                or self.multiplier_N.shape != (p_N,)):
            raise DimensionError("Terminal constraint data has inconsistent shapes")


def validate_problem(
    trajectory: Trajectory,
    linearization,
    weights: CostWeights,
    constraints: ConstraintAugmentation,
) -> None:
    """Check that trajectory, Jacobians, weights and constraints agree.

    Raises:
        DimensionError: On the first inconsistent shape.
    """
    N, n, m = trajectory.num_knots, trajectory.state_dim, trajectory.control_dim
    if N < 2:
        raise DimensionError(f"Trajectory needs at least 2 knots, got {N}")
    if (weights.state_dim, weights.control_dim) != (n, m):
        raise DimensionError(
            f"Cost weights are sized for (n={weights.state_dim}, m={weights.control_dim}), "
            f"trajectory has (n={n}, m={m})"
        )
    if linearization.fx.shape != (N - 1, n, n):
        raise DimensionError(
            f"fx must have shape {(N - 1, n, n)}, got {linearization.fx.shape}"
        )
    if linearization.fu.shape != (N - 1, n, m):
        raise DimensionError(
            f"fu must have shape {(N - 1, n, m)}, got {linearization.fu.shape}"
        )
    if isinstance(linearization, FOHLinearization):
        if not trajectory.is_first_order_hold:
            raise DimensionError("First-order hold requires N controls")
        if linearization.fv.shape != (N - 1, n, m):
            raise DimensionError(
                f"fv must have shape {(N - 1, n, m)}, got {linearization.fv.shape}"
            )
        if linearization.Ac.shape != (N, n, n) or linearization.Bc.shape != (N, n, m):
            raise DimensionError("Continuous Jacobians must be given at every knot")
        if linearization.xmid.shape != (N - 1, n):
            raise DimensionError(
                f"xmid must have shape {(N - 1, n)}, got {linearization.xmid.shape}"
            )
    elif trajectory.is_first_order_hold:
        raise DimensionError("Zero-order hold requires N-1 controls")
    constraints.validate(trajectory.U.shape[0], n, m)
