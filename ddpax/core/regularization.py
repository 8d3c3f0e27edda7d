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

"""Damping controller shared by the backward and forward passes.

The damping value rho and its growth rate are owned by one Regularization
object which is passed explicitly into every pass of an outer iteration
and carried forward to the next one.
"""

from absl import logging

from ddpax.core.config import RegularizationConfig


class Regularization:
    """Levenberg-Marquardt style damping with geometric growth and decay.

    The rate multiplier is clamped so that increase() always grows the
    damping by at least `factor` and decrease() always shrinks it by at
    least `factor`. The damping value never drops below `minimum`.

    Attributes:
        config: The RegularizationConfig this controller was built from.
        value: Current damping value rho.
        rate: Current growth-rate multiplier.

    Example:
        >>> reg = Regularization(RegularizationConfig(minimum=1e-6))
        >>> reg.increase()
        >>> reg.value >= 1e-6
        True
    """

    def __init__(self, config: RegularizationConfig = RegularizationConfig()):
        self.config = config
        self.reset()

    @property
    def minimum(self) -> float:
        return self.config.minimum

    @property
    def factor(self) -> float:
        return self.config.factor

    def reset(self) -> None:
        """Restore the initial damping value and a unit rate."""
        self.value = max(self.config.initial, self.config.minimum)
        self.rate = 1.0

    def increase(self) -> None:
        """Grow the damping after ill-conditioning or a failed line search."""
        self.rate = max(self.rate * self.factor, self.factor)
        self.value = max(self.value * self.rate, self.minimum)
        logging.debug('Regularization increased: rho=%g, rate=%g',
                      self.value, self.rate)

    def decrease(self) -> None:
        """Shrink the damping after a fully successful backward sweep."""
        self.rate = min(self.rate / self.factor, 1.0 / self.factor)
        self.value = max(self.value * self.rate, self.minimum)
        logging.debug('Regularization decreased: rho=%g, rate=%g',
                      self.value, self.rate)

    def __repr__(self) -> str:
        return f"Regularization(value={self.value!r}, rate={self.rate!r})"
