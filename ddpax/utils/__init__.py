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

"""Utility functions for the local passes.

- PSD helpers and Cholesky factor updates for the square-root pass
- Integrators turning continuous dynamics into discrete dynamics
- Linearization of dynamics along a trajectory
- Closed-loop rollouts and trajectory costs for the line search
"""

# PSD utilities
from ddpax.utils.psd import (
    symmetrize,
    is_positive_definite,
    cholesky_factor,
    psd_sqrt,
    project_psd_cone,
    chol_plus,
    cholesky_downdate,
    chol_minus,
)

# Integrators
from ddpax.utils.integrators import (
    euler,
    midpoint,
    rk4,
    rk3_foh,
    discretize,
)

# Linearization utilities
from ddpax.utils.linearize import (
    vectorize,
    hermite_midpoints,
    linearize_dynamics,
    linearize_foh,
)

# Rollout utilities
from ddpax.utils.rollout import (
    rollout,
    foh_rollout_open_loop,
    ddp_rollout,
    foh_rollout,
    make_rollout_fn,
)

# Costs
from ddpax.utils.costs import (
    stage_cost,
    terminal_cost,
    quadratic_cost,
    foh_quadratic_cost,
    augmented_lagrangian_penalty,
    make_cost_fn,
)

__all__ = [
    # PSD
    'symmetrize',
    'is_positive_definite',
    'cholesky_factor',
    'psd_sqrt',
    'project_psd_cone',
    'chol_plus',
    'cholesky_downdate',
    'chol_minus',
    # Integrators
    'euler',
    'midpoint',
    'rk4',
    'rk3_foh',
    'discretize',
    # Linearization
    'vectorize',
    'hermite_midpoints',
    'linearize_dynamics',
    'linearize_foh',
    # Rollout
    'rollout',
    'foh_rollout_open_loop',
    'ddp_rollout',
    'foh_rollout',
    'make_rollout_fn',
    # Costs
    'stage_cost',
    'terminal_cost',
    'quadratic_cost',
    'foh_quadratic_cost',
    'augmented_lagrangian_penalty',
    'make_cost_fn',
]
