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

"""Configuration classes for the backward and forward passes.

Provides nested dataclass configuration. The line-search acceptance bounds
and iteration cap have no defaults: they must be chosen by the caller.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Union

from ddpax.core.exceptions import ConfigurationError
from ddpax.core.types import RegularizationMode


@dataclass(frozen=True)
class RegularizationConfig:
    """Configuration for the damping controller.

    Attributes:
        initial: Starting damping value (raised to `minimum` if lower).
        minimum: Floor on the damping value.
        factor: Geometric growth factor of the rate multiplier, > 1.
    """
    initial: float = 0.0
    minimum: float = 1e-6
    factor: float = 1.6

    def __post_init__(self):
        if self.minimum <= 0:
            raise ConfigurationError("minimum must be positive")
        if self.initial < 0:
            raise ConfigurationError("initial must be non-negative")
        if self.factor <= 1:
            raise ConfigurationError("factor must be greater than 1")


@dataclass(frozen=True)
class BackwardPassConfig:
    """Configuration for the backward sweep.

    Attributes:
        regularization_mode: Where damping is injected ('state' or
            'control'). Strings are converted to RegularizationMode.
        max_restarts: Number of full-sweep restarts allowed after an
            ill-conditioned control block before BackwardPassError.
    """
    regularization_mode: Union[RegularizationMode, str] = RegularizationMode.CONTROL
    max_restarts: int = 100

    def __post_init__(self):
        if isinstance(self.regularization_mode, str):
            try:
                mode = RegularizationMode(self.regularization_mode.lower())
            except ValueError:
                available = [m.value for m in RegularizationMode]
                raise ConfigurationError(
                    f"Unknown regularization mode: {self.regularization_mode}. "
                    f"Available: {available}"
                ) from None
            # frozen dataclass
            object.__setattr__(self, 'regularization_mode', mode)
        if self.max_restarts < 0:
            raise ConfigurationError("max_restarts must be non-negative")


@dataclass(frozen=True)
class LineSearchConfig:
    """Configuration for the backtracking line search.

    A step is accepted when lower_bound < z <= upper_bound, where z is the
    ratio of actual to predicted cost decrease.

    Attributes:
        lower_bound: Minimum acceptable decrease ratio (exclusive).
        upper_bound: Maximum acceptable decrease ratio (inclusive).
        max_iterations: Number of step sizes tried before giving up.
    """
    lower_bound: float
    upper_bound: float
    max_iterations: int

    def __post_init__(self):
        if self.upper_bound <= self.lower_bound:
            raise ConfigurationError("upper_bound must be greater than lower_bound")
        if self.max_iterations <= 0:
            raise ConfigurationError("max_iterations must be positive")


@dataclass
class SolverConfig:
    """Complete configuration of one backward/forward pass pair.

    Attributes:
        line_search: Line-search configuration (required).
        backward_pass: Backward sweep configuration.
        regularization: Damping controller configuration.
    """
    line_search: LineSearchConfig
    backward_pass: BackwardPassConfig = field(default_factory=BackwardPassConfig)
    regularization: RegularizationConfig = field(default_factory=RegularizationConfig)

    def __post_init__(self):
        """Convert nested dicts to their config classes if needed."""
        if isinstance(self.line_search, dict):
            self.line_search = LineSearchConfig(**self.line_search)
        if isinstance(self.backward_pass, dict):
            self.backward_pass = BackwardPassConfig(**self.backward_pass)
        if isinstance(self.regularization, dict):
            self.regularization = RegularizationConfig(**self.regularization)

    @classmethod
    def from_dict(cls, options: Dict[str, Any]) -> 'SolverConfig':
        """Build from a flat or nested options dictionary.

        Flat keys follow the option names used by the passes:
        lower_bound, upper_bound, max_iterations, regularization_mode,
        max_restarts. Nested 'line_search', 'backward_pass' and
        'regularization' dicts are also accepted.
        """
        options = dict(options)
        line_search = options.pop('line_search', {})
        backward_pass = options.pop('backward_pass', {})
        regularization = options.pop('regularization', {})
        for key in ('lower_bound', 'upper_bound', 'max_iterations'):
            if key in options:
                line_search = {**line_search, key: options.pop(key)}
        for key in ('regularization_mode', 'max_restarts'):
            if key in options:
                backward_pass = {**backward_pass, key: options.pop(key)}
        if options:
            raise ConfigurationError(f"Unknown options: {sorted(options)}")
        return cls(
            line_search=line_search,
            backward_pass=backward_pass,
            regularization=regularization,
        )
