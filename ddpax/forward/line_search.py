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

"""Backtracking line search over the closed-loop rollout.

Step sizes alpha = 1, 1/2, 1/4, ... are tried until the ratio of actual to
predicted cost decrease

    z = (J_prev - J) / (-alpha (dv_1 + alpha dv_2))

falls in (lower_bound, upper_bound]. The rollout and the cost are supplied
by the caller, so the same search serves zero- and first-order hold.
"""

from dataclasses import dataclass

import numpy as np
from absl import logging

from ddpax.backward.base import ExpectedDecrease
from ddpax.core.config import LineSearchConfig
from ddpax.core.regularization import Regularization
from ddpax.core.trajectory import Trajectory
from ddpax.core.types import RolloutFn, TrajectoryCostFn


@dataclass(frozen=True)
class LineSearchResult:
    """Outcome of forward_pass().

    Attributes:
        trajectory: Accepted candidate, or the nominal trajectory when no
            step size was accepted.
        cost: Cost of `trajectory`.
        step_size: Accepted alpha, 0.0 on exhaustion.
        ratio: Decrease ratio z of the accepted step (0.0 on exhaustion).
        iterations: Number of step sizes tried.
    """
    trajectory: Trajectory
    cost: float
    step_size: float
    ratio: float
    iterations: int

    @property
    def accepted(self) -> bool:
        return self.step_size > 0.0


def decrease_ratio(
    baseline_cost: float,
    cost: float,
    expected_decrease: ExpectedDecrease,
    alpha: float,
) -> float:
    """Actual over predicted decrease.

    A zero prediction gives NaN when the cost is also unchanged and +-inf
    otherwise; neither lies in an acceptance interval with finite bounds.
    """
    predicted = expected_decrease.predicted(alpha)
    with np.errstate(divide='ignore', invalid='ignore'):
        return float(np.float64(baseline_cost - cost) / np.float64(predicted))


def forward_pass(
    trajectory: Trajectory,
    expected_decrease: ExpectedDecrease,
    baseline_cost: float,
    rollout_fn: RolloutFn,
    cost_fn: TrajectoryCostFn,
    config: LineSearchConfig,
    regularization: Regularization,
) -> LineSearchResult:
    """Search for a step size along the backward pass feedback law.

    Args:
        trajectory: Nominal trajectory the gains were computed about. It is
            never modified.
        expected_decrease: Delta-v from the backward pass.
        baseline_cost: Cost of the nominal trajectory.
        rollout_fn: rollout_fn(alpha) -> (candidate, success).
        cost_fn: Total cost of a candidate trajectory.
        config: Acceptance bounds and iteration cap.
        regularization: Damping controller, increased if no step size is
            accepted.

    Returns:
        LineSearchResult. On exhaustion it holds the nominal trajectory,
        step_size 0.0 and cost equal to baseline_cost.
    """
    alpha = 1.0
    for iteration in range(1, config.max_iterations + 1):
        candidate, success = rollout_fn(alpha)
        if not success or not candidate.is_finite():
            logging.debug('Non-finite values in rollout (alpha=%g)', alpha)
            alpha /= 2.0
            continue

        cost = float(cost_fn(candidate))
        z = decrease_ratio(baseline_cost, cost, expected_decrease, alpha)
        logging.debug('Line search: alpha=%g, J=%g, expected=%g, z=%g',
                      alpha, cost, expected_decrease.predicted(alpha), z)

        # NaN fails both comparisons
        if config.lower_bound < z <= config.upper_bound:
            return LineSearchResult(
                trajectory=candidate,
                cost=cost,
                step_size=alpha,
                ratio=z,
                iterations=iteration,
            )
        alpha /= 2.0

    logging.info('Line search exhausted after %d iterations, no improvement made',
                 config.max_iterations)
    regularization.increase()
    return LineSearchResult(
        trajectory=trajectory,
        cost=float(baseline_cost),
        step_size=0.0,
        ratio=0.0,
        iterations=config.max_iterations,
    )
