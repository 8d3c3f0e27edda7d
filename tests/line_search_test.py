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

"""Tests for the backtracking line search."""

from absl.testing import absltest
from absl.testing import parameterized

import jax.numpy as jnp
from jax import config
import numpy as np

from ddpax.backward import ExpectedDecrease
from ddpax.core import LineSearchConfig, Regularization, Trajectory
from ddpax.forward import decrease_ratio, forward_pass

config.update('jax_enable_x64', True)


def nominal_trajectory():
    return Trajectory(X=jnp.zeros((5, 2)), U=jnp.zeros((4, 1)))


def shifted(trajectory, alpha):
    return Trajectory(X=trajectory.X + alpha, U=trajectory.U + alpha,
                      info={'alpha': alpha})


class ForwardPassTest(parameterized.TestCase):

    def setUp(self):
        super().setUp()
        self.nominal = nominal_trajectory()
        self.config = LineSearchConfig(lower_bound=1e-4, upper_bound=10.0,
                                       max_iterations=8)

    def test_quadratic_model_accepted_first_iteration(self):
        dv = ExpectedDecrease(linear=-3.0, quadratic=1.25)
        baseline = 7.0

        def rollout_fn(alpha):
            return shifted(self.nominal, alpha), True

        def cost_fn(traj):
            alpha = traj.info['alpha']
            return baseline + alpha * dv.linear + alpha**2 * dv.quadratic

        reg = Regularization()
        before = reg.value
        result = forward_pass(self.nominal, dv, baseline, rollout_fn, cost_fn,
                              self.config, reg)
        self.assertTrue(result.accepted)
        self.assertEqual(result.step_size, 1.0)
        self.assertEqual(result.iterations, 1)
        self.assertAlmostEqual(result.ratio, 1.0, places=12)
        self.assertAlmostEqual(result.cost, baseline - 1.75, places=12)
        self.assertEqual(result.trajectory.info, {'alpha': 1.0})
        self.assertEqual(reg.value, before)

    def test_non_finite_rollout_exhausts(self):
        attempts = []

        def rollout_fn(alpha):
            attempts.append(alpha)
            bad = Trajectory(X=jnp.full((5, 2), jnp.nan), U=self.nominal.U)
            return bad, False

        def cost_fn(traj):
            raise AssertionError('cost evaluated for a failed rollout')

        reg = Regularization()
        before = reg.value
        result = forward_pass(self.nominal, ExpectedDecrease(-1.0, 0.5), 3.0,
                              rollout_fn, cost_fn, self.config, reg)

        self.assertEqual(attempts, [0.5**i for i in range(8)])
        self.assertFalse(result.accepted)
        self.assertEqual(result.step_size, 0.0)
        self.assertIs(result.trajectory, self.nominal)
        self.assertEqual(result.cost, 3.0)
        self.assertGreater(reg.value, before)

    def test_non_finite_above_threshold_then_accepts(self):
        dv = ExpectedDecrease(linear=-2.0, quadratic=1.0)

        def rollout_fn(alpha):
            traj = shifted(self.nominal, alpha)
            if alpha > 0.3:
                return Trajectory(X=traj.X * jnp.inf, U=traj.U), True
            return traj, True

        def cost_fn(traj):
            alpha = traj.info['alpha']
            return 5.0 + alpha * dv.linear + alpha**2 * dv.quadratic

        result = forward_pass(self.nominal, dv, 5.0, rollout_fn, cost_fn,
                              self.config, Regularization())
        self.assertEqual(result.step_size, 0.25)
        self.assertEqual(result.iterations, 3)

    @parameterized.named_parameters(
        ('at_upper_bound_accepted', 2.0, True),
        ('at_lower_bound_rejected', 0.5, False),
        ('above_upper_bound_rejected', 4.0, False),
        ('cost_increase_rejected', -1.0, False),
    )
    def test_acceptance_bounds(self, ratio, accepted):
        dv = ExpectedDecrease(linear=-2.0, quadratic=0.0)
        baseline = 10.0

        def rollout_fn(alpha):
            return shifted(self.nominal, alpha), True

        def cost_fn(traj):
            return baseline - ratio * dv.predicted(traj.info['alpha'])

        bounds = LineSearchConfig(lower_bound=0.5, upper_bound=2.0, max_iterations=4)
        result = forward_pass(self.nominal, dv, baseline, rollout_fn, cost_fn,
                              bounds, Regularization())
        self.assertEqual(result.accepted, accepted)
        if not accepted:
            self.assertEqual(result.iterations, 4)
            self.assertEqual(result.cost, baseline)

    @parameterized.named_parameters(
        ('unchanged_cost', 1.0, np.nan),
        ('cost_decrease', 0.5, np.inf),
        ('cost_increase', 1.5, -np.inf),
    )
    def test_zero_prediction_rejected(self, cost, expected_ratio):
        np.testing.assert_equal(
            decrease_ratio(1.0, cost, ExpectedDecrease(), 1.0), expected_ratio)

        def rollout_fn(alpha):
            return shifted(self.nominal, alpha), True

        result = forward_pass(self.nominal, ExpectedDecrease(), 1.0, rollout_fn,
                              lambda traj: cost, self.config, Regularization())
        self.assertFalse(result.accepted)
        self.assertEqual(result.iterations, self.config.max_iterations)

    def test_nominal_not_modified(self):
        X0 = np.asarray(self.nominal.X).copy()

        def rollout_fn(alpha):
            return shifted(self.nominal, alpha), True

        forward_pass(self.nominal, ExpectedDecrease(-1.0, 0.0), 0.0, rollout_fn,
                     lambda traj: 100.0, self.config, Regularization())
        np.testing.assert_array_equal(self.nominal.X, X0)


if __name__ == '__main__':
    absltest.main()
