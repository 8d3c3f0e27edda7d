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

"""Tests for the damping controller."""

from absl.testing import absltest
from absl.testing import parameterized

from ddpax.core import Regularization, RegularizationConfig


class RegularizationTest(parameterized.TestCase):

    def test_initial_value_floored(self):
        reg = Regularization(RegularizationConfig(initial=0.0, minimum=1e-4))
        self.assertEqual(reg.value, 1e-4)
        self.assertEqual(reg.rate, 1.0)

    @parameterized.parameters(0.0, 1e-3, 10.0)
    def test_increase_non_decreasing(self, initial):
        reg = Regularization(RegularizationConfig(initial=initial))
        values = [reg.value]
        for _ in range(20):
            reg.increase()
            values.append(reg.value)
        for before, after in zip(values, values[1:]):
            self.assertGreaterEqual(after, before)
        self.assertGreater(values[-1], values[0])

    def test_increase_after_decreases_still_grows(self):
        reg = Regularization(RegularizationConfig(initial=1.0, minimum=1e-8))
        for _ in range(3):
            reg.decrease()
        before = reg.value
        reg.increase()
        self.assertGreaterEqual(reg.rate, reg.factor)
        self.assertGreater(reg.value, before)

    def test_decrease_never_below_floor(self):
        config = RegularizationConfig(initial=5.0, minimum=1e-3, factor=2.0)
        reg = Regularization(config)
        for _ in range(100):
            reg.decrease()
            self.assertGreaterEqual(reg.value, config.minimum)
        self.assertEqual(reg.value, config.minimum)

    def test_growth_accelerates(self):
        reg = Regularization(RegularizationConfig(initial=1.0, factor=2.0))
        reg.increase()
        self.assertEqual((reg.rate, reg.value), (2.0, 2.0))
        reg.increase()
        self.assertEqual((reg.rate, reg.value), (4.0, 8.0))

    def test_reset(self):
        reg = Regularization(RegularizationConfig(initial=0.5))
        reg.increase()
        reg.increase()
        reg.reset()
        self.assertEqual((reg.value, reg.rate), (0.5, 1.0))
        self.assertIn('Regularization(value=0.5', repr(reg))


if __name__ == '__main__':
    absltest.main()
