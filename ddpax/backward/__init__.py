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

"""Backward pass formulations.

Three formulations share one contract (see base.py):
- dense: Riccati-like recursion on dense cost-to-go Hessians
- sqrt: the same recursion on upper-triangular Cholesky factors
- foh: first-order hold on the controls with Simpson-rule stage costs

Example:
    >>> from ddpax.backward import get_backward_pass
    >>> backward_pass = get_backward_pass('sqrt')
    >>> result = backward_pass(traj, lin, weights, regularization=reg)
"""

from ddpax.backward.base import (
    GainSchedule,
    CostToGo,
    ExpectedDecrease,
    BackwardPassResult,
    SweepFailure,
    BackwardPassFn,
    terminal_cost_to_go,
    run_sweeps,
    get_backward_pass,
)

from ddpax.backward import dense
from ddpax.backward import sqrt
from ddpax.backward import foh

__all__ = [
    'GainSchedule',
    'CostToGo',
    'ExpectedDecrease',
    'BackwardPassResult',
    'SweepFailure',
    'BackwardPassFn',
    'terminal_cost_to_go',
    'run_sweeps',
    'get_backward_pass',
    'dense',
    'sqrt',
    'foh',
]
