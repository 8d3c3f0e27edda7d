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

"""Core data structures for the local passes.

- Trajectory: nominal / candidate states and controls
- CostWeights, Linearization, FOHLinearization: read-only problem data
- Unconstrained / ActiveConstraints: constraint augmentation variants
- Regularization: the damping controller shared by both passes
- Configuration dataclasses and the DDPError hierarchy
"""

from ddpax.core.types import (
    RegularizationMode,
    BackwardPassKind,
    ErrorCode,
    DynamicsFn,
    FOHDynamicsFn,
    ContinuousDynamicsFn,
    RolloutFn,
    TrajectoryCostFn,
)

from ddpax.core.exceptions import (
    DDPError,
    DimensionError,
    BackwardPassError,
    FactorizationError,
    ConfigurationError,
)

from ddpax.core.config import (
    RegularizationConfig,
    BackwardPassConfig,
    LineSearchConfig,
    SolverConfig,
)

from ddpax.core.trajectory import Trajectory

from ddpax.core.problem import (
    CostWeights,
    Linearization,
    FOHLinearization,
    ConstraintAugmentation,
    Unconstrained,
    ActiveConstraints,
    validate_problem,
)

from ddpax.core.regularization import Regularization

__all__ = [
    # Types
    'RegularizationMode',
    'BackwardPassKind',
    'ErrorCode',
    'DynamicsFn',
    'FOHDynamicsFn',
    'ContinuousDynamicsFn',
    'RolloutFn',
    'TrajectoryCostFn',
    # Errors
    'DDPError',
    'DimensionError',
    'BackwardPassError',
    'FactorizationError',
    'ConfigurationError',
    # Configuration
    'RegularizationConfig',
    'BackwardPassConfig',
    'LineSearchConfig',
    'SolverConfig',
    # Data structures
    'Trajectory',
    'CostWeights',
    'Linearization',
    'FOHLinearization',
    'ConstraintAugmentation',
    'Unconstrained',
    'ActiveConstraints',
    'validate_problem',
    'Regularization',
]
