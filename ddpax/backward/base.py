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

"""Shared contract of the backward pass formulations.

Every formulation (dense, square-root, first-order hold) has the signature

    backward_pass(trajectory, linearization, weights, constraints,
                  regularization, config) -> BackwardPassResult

and shares the retry policy implemented by run_sweeps(): an attempt that
hits an ill-conditioned control block is discarded entirely, damping is
increased and the sweep restarts from the terminal boundary condition.
Gains are committed only from a fully successful sweep.
"""

from dataclasses import dataclass, replace
from typing import Callable, Optional, Protocol, Tuple, Union

import jax.numpy as jnp
from absl import logging
from jax import Array

from ddpax.core.config import BackwardPassConfig
from ddpax.core.exceptions import BackwardPassError
from ddpax.core.problem import ConstraintAugmentation, CostWeights
from ddpax.core.regularization import Regularization
from ddpax.core.trajectory import Trajectory
from ddpax.core.types import BackwardPassKind


@dataclass(frozen=True)
class GainSchedule:
    """Time-indexed affine feedback law.

    Zero-order hold: du[k] = d[k] + K[k] dx[k].
    First-order hold: du[k] = d[k] + K[k] dx[k-1] + b[k] du[k-1], with the
    first sample using K[0] dx[0] and b[0] = 0.

    Attributes:
        K: Feedback gains (T, m, n).
        d: Feedforward terms (T, m).
        b: Feedback on the previous control sample (T, m, m), first-order
            hold only.
    """
    K: Array
    d: Array
    b: Optional[Array] = None

    @property
    def is_first_order_hold(self) -> bool:
        return self.b is not None


@dataclass(frozen=True)
class CostToGo:
    """Quadratic model of the cost-to-go along the trajectory.

    Attributes:
        S: Hessians (N, n, n); upper-triangular factors with S[k]'S[k]
            equal to the Hessian when `is_factored`; blocks over
            [state; held control] of shape (N, n+m, n+m) under first-order
            hold.
        s: Gradients (N, n) or (N, n+m).
        is_factored: True for the square-root formulation.
        initial_gradient: First-order hold only: state gradient at knot 0
            after the final control sample has been eliminated.
    """
    S: Array
    s: Array
    is_factored: bool = False
    initial_gradient: Optional[Array] = None

    def hessians(self) -> Array:
        """Dense Hessians, reconstructing them from factors if needed."""
        if self.is_factored:
            return jnp.einsum('kji,kjl->kil', self.S, self.S)
        return self.S


@dataclass(frozen=True)
class ExpectedDecrease:
    """Expected cost change model accumulated by a backward sweep.

    The predicted change for step size alpha is
    alpha * linear + alpha**2 * quadratic; its negation is the predicted
    decrease used in the line-search ratio.
    """
    linear: float = 0.0
    quadratic: float = 0.0

    @classmethod
    def from_array(cls, dv: Array) -> 'ExpectedDecrease':
        return cls(linear=float(dv[0]), quadratic=float(dv[1]))

    def predicted(self, alpha: float) -> float:
        """Predicted decrease -alpha * (linear + alpha * quadratic)."""
        return -alpha * (self.linear + alpha * self.quadratic)

    def __iter__(self):
        yield self.linear
        yield self.quadratic


@dataclass(frozen=True)
class BackwardPassResult:
    """Output of a successful backward sweep.

    Attributes:
        gains: Gain schedule of the accepted sweep.
        cost_to_go: Cost-to-go model of the accepted sweep.
        expected_decrease: Delta-v accumulated by the accepted sweep.
        restarts: Number of discarded attempts before it.
    """
    gains: GainSchedule
    cost_to_go: CostToGo
    expected_decrease: ExpectedDecrease
    restarts: int = 0


@dataclass(frozen=True)
class SweepFailure:
    """An attempt that stopped at an ill-conditioned knot."""
    knot: int
    reason: str


SweepOutcome = Union[BackwardPassResult, SweepFailure]


class BackwardPassFn(Protocol):
    """Protocol implemented by every backward pass formulation."""

    def __call__(
        self,
        trajectory: Trajectory,
        linearization,
        weights: CostWeights,
        constraints: Optional[ConstraintAugmentation] = None,
        regularization: Optional[Regularization] = None,
        config: BackwardPassConfig = BackwardPassConfig(),
    ) -> BackwardPassResult:
        ...


def terminal_cost_to_go(
    x_N: Array,
    weights: CostWeights,
    constraints: ConstraintAugmentation,
) -> Tuple[Array, Array]:
    """Boundary condition S_N = Qf, s_N = Qf (x_N - xf), plus penalties."""
    n = weights.state_dim
    gx, Hxx = constraints.terminal_expansion(n)
    S = weights.Qf + Hxx
    s = weights.Qf @ (x_N - weights.xf) + gx
    return S, s


def run_sweeps(
    sweep: Callable[[float], SweepOutcome],
    regularization: Regularization,
    config: BackwardPassConfig,
    name: str,
) -> BackwardPassResult:
    """Run sweep attempts under the regularize-and-restart policy.

    Args:
        sweep: Function of the current damping value performing one full
            backward sweep from the terminal boundary.
        regularization: Damping controller, increased after each failed
            attempt and decreased after the successful one.
        config: Provides the restart cap.
        name: Formulation name used in log and error messages.

    Returns:
        The result of the first successful attempt.

    Raises:
        BackwardPassError: When more than config.max_restarts attempts fail.
    """
    restarts = 0
    while True:
        outcome = sweep(regularization.value)
        if isinstance(outcome, SweepFailure):
            logging.debug('Regularized (%s backward pass) at knot %d: %s, rho=%g',
                          name, outcome.knot, outcome.reason, regularization.value)
            regularization.increase()
            if restarts >= config.max_restarts:
                raise BackwardPassError(
                    f"{name} backward pass failed at knot {outcome.knot} after "
                    f"{restarts} restarts ({outcome.reason})",
                    restarts=restarts,
                    regularization=regularization.value,
                )
            restarts += 1
            continue
        regularization.decrease()
        return replace(outcome, restarts=restarts)


def get_backward_pass(kind: Union[BackwardPassKind, str]) -> BackwardPassFn:
    """Factory function returning a backward pass formulation.

    Args:
        kind: BackwardPassKind or one of 'dense', 'sqrt', 'foh'.

    Returns:
        The backward_pass callable of that formulation.

    Raises:
        ValueError: If kind is not recognized.
    """
    from ddpax.backward import dense, foh, sqrt

    _PASSES = {
        BackwardPassKind.DENSE: dense.backward_pass,
        BackwardPassKind.SQRT: sqrt.backward_pass,
        BackwardPassKind.FOH: foh.backward_pass,
    }

    if isinstance(kind, str):
        try:
            kind = BackwardPassKind(kind.lower())
        except ValueError:
            available = [k.value for k in BackwardPassKind]
            raise ValueError(
                f"Unknown backward pass: {kind}. Available: {available}"
            ) from None

    return _PASSES[kind]
