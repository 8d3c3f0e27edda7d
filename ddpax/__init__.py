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

"""Local passes of an iterative LQR / DDP trajectory solver.

Given a nominal trajectory and its dynamics linearization, a backward pass
computes a time-varying affine feedback law and the expected cost change;
the forward pass applies that law under a backtracking line search.

Example:
    >>> from ddpax import backward, forward, utils
    >>> reg = Regularization()
    >>> result = backward.dense.backward_pass(traj, lin, weights, regularization=reg)
    >>> rollout_fn = utils.make_rollout_fn(dynamics, traj, result.gains, dt)
    >>> step = forward.forward_pass(traj, result.expected_decrease, J,
    ...                             rollout_fn, cost_fn, line_search_config, reg)
"""

from . import core
from . import backward
from . import forward
from . import utils

from ddpax.core import (
    ActiveConstraints,
    BackwardPassConfig,
    CostWeights,
    FOHLinearization,
    Linearization,
    LineSearchConfig,
    Regularization,
    RegularizationConfig,
    SolverConfig,
    Trajectory,
    Unconstrained,
)
from ddpax.backward import get_backward_pass
from ddpax.forward import forward_pass

__version__ = '0.1.0'
