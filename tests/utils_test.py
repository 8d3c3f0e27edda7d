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

"""Tests for integrators, linearization, rollouts and costs."""

from absl.testing import absltest
from absl.testing import parameterized

import jax.numpy as jnp
from jax import config
import numpy as np

from ddpax.backward import GainSchedule
from ddpax.core import CostWeights, Trajectory
from ddpax.utils import (
    augmented_lagrangian_penalty,
    ddp_rollout,
    discretize,
    euler,
    foh_quadratic_cost,
    foh_rollout,
    foh_rollout_open_loop,
    hermite_midpoints,
    linearize_dynamics,
    linearize_foh,
    make_cost_fn,
    make_rollout_fn,
    midpoint,
    quadratic_cost,
    rk3_foh,
    rk4,
    rollout,
)

config.update('jax_enable_x64', True)

DT = 0.1


def double_integrator(x, u):
    return jnp.array([x[1], u[0]])


def pendulum(x, u):
    return jnp.array([x[1], -jnp.sin(x[0]) - 0.1 * x[1] + u[0]])


class IntegratorTest(parameterized.TestCase):

    @parameterized.named_parameters(
        ('midpoint', midpoint),
        ('rk4', rk4),
    )
    def test_exact_for_double_integrator(self, integrator):
        x, u = jnp.array([0.3, -1.0]), jnp.array([2.0])
        x_next = integrator(double_integrator)(x, u, DT)
        expected = [0.3 - DT + 0.5 * DT**2 * 2.0, -1.0 + DT * 2.0]
        np.testing.assert_allclose(x_next, expected, rtol=1e-12)

    def test_euler(self):
        x_next = euler(double_integrator)(jnp.array([0.3, -1.0]), jnp.array([2.0]), DT)
        np.testing.assert_allclose(x_next, [0.3 - DT, -1.0 + 2.0 * DT], rtol=1e-12)

    def test_rk3_foh_exact_for_ramp_control(self):
        x, u, v = jnp.array([0.0, 1.0]), jnp.array([1.0]), jnp.array([4.0])
        x_next = rk3_foh(double_integrator)(x, u, v, DT)
        expected = [DT + DT**2 * (2.0 * 1.0 + 4.0) / 6.0, 1.0 + DT * (1.0 + 4.0) / 2.0]
        np.testing.assert_allclose(x_next, expected, rtol=1e-12)

    def test_rk3_foh_reduces_to_constant_hold(self):
        x, u = jnp.array([0.4, 0.2]), jnp.array([0.7])
        np.testing.assert_allclose(rk3_foh(double_integrator)(x, u, u, DT),
                                   rk4(double_integrator)(x, u, DT), rtol=1e-12)

    def test_discretize(self):
        self.assertEqual(
            float(discretize(double_integrator, 'euler')(jnp.zeros(2), jnp.ones(1), DT)[1]),
            DT)
        with self.assertRaises(ValueError):
            discretize(double_integrator, 'backward_euler')


class LinearizeTest(absltest.TestCase):

    def test_linearize_dynamics(self):
        U = jnp.ones((5, 1))
        X = rollout(rk4(double_integrator), U, jnp.zeros(2), DT)
        lin = linearize_dynamics(rk4(double_integrator), Trajectory(X=X, U=U), DT)
        self.assertEqual(lin.fx.shape, (5, 2, 2))
        self.assertEqual(lin.fu.shape, (5, 2, 1))
        np.testing.assert_allclose(lin.fx[3], [[1.0, DT], [0.0, 1.0]], rtol=1e-12)
        np.testing.assert_allclose(lin.fu[3], [[0.5 * DT**2], [DT]], rtol=1e-12)

    def test_linearize_foh(self):
        U = jnp.linspace(-1.0, 1.0, 6)[:, None]
        X = foh_rollout_open_loop(rk3_foh(double_integrator), U, jnp.zeros(2), DT)
        traj = Trajectory(X=X, U=U)
        lin = linearize_foh(double_integrator, traj, DT)

        self.assertEqual(lin.Ac.shape, (6, 2, 2))
        self.assertEqual(lin.Bc.shape, (6, 2, 1))
        self.assertEqual(lin.fv.shape, (5, 2, 1))
        np.testing.assert_allclose(lin.Ac[-1], [[0.0, 1.0], [0.0, 0.0]])
        np.testing.assert_allclose(lin.fu[0], [[DT**2 / 3.0], [DT / 2.0]], rtol=1e-12)
        np.testing.assert_allclose(lin.fv[0], [[DT**2 / 6.0], [DT / 2.0]], rtol=1e-12)

        F = np.stack([np.asarray(double_integrator(x, u)) for x, u in zip(X, U)])
        X = np.asarray(X)
        expected = 0.5 * (X[:-1] + X[1:]) + DT / 8.0 * (F[:-1] - F[1:])
        np.testing.assert_allclose(lin.xmid, expected, rtol=1e-12, atol=1e-14)

    def test_linearize_foh_requires_final_sample(self):
        traj = Trajectory(X=jnp.zeros((3, 2)), U=jnp.zeros((2, 1)))
        with self.assertRaises(ValueError):
            linearize_foh(double_integrator, traj, DT)

    def test_pendulum_jacobians_match_finite_differences(self):
        U = 0.5 * jnp.ones((4, 1))
        f = rk4(pendulum)
        X = rollout(f, U, jnp.array([0.5, 0.0]), DT)
        lin = linearize_dynamics(f, Trajectory(X=X, U=U), DT)
        eps = 1e-6
        for i in range(2):
            e = jnp.zeros(2).at[i].set(eps)
            column = (f(X[1] + e, U[1], DT) - f(X[1] - e, U[1], DT)) / (2 * eps)
            np.testing.assert_allclose(lin.fx[1][:, i], column, rtol=1e-6, atol=1e-9)


class RolloutTest(absltest.TestCase):

    def setUp(self):
        super().setUp()
        rng = np.random.RandomState(0)
        self.K = jnp.asarray(rng.randn(6, 1, 2))
        self.b = jnp.asarray(rng.randn(6, 1, 1))
        self.d = jnp.asarray(rng.randn(6, 1))

    def test_ddp_rollout_zero_step_reproduces_nominal(self):
        f = rk4(pendulum)
        U = 0.1 * jnp.ones((5, 1))
        X = rollout(f, U, jnp.array([0.2, 0.0]), DT)
        X_new, U_new = ddp_rollout(f, X, U, self.K[:5], self.d[:5], 0.0, DT)
        np.testing.assert_allclose(X_new, X, rtol=1e-12)
        np.testing.assert_allclose(U_new, U, rtol=1e-12)

    def test_ddp_rollout_feedforward(self):
        f = rk4(double_integrator)
        U = jnp.zeros((5, 1))
        X = rollout(f, U, jnp.zeros(2), DT)
        X_new, U_new = ddp_rollout(f, X, U, jnp.zeros((5, 1, 2)), self.d[:5], 0.5, DT)
        np.testing.assert_allclose(U_new, 0.5 * self.d[:5], rtol=1e-12)
        np.testing.assert_allclose(X_new, rollout(f, U_new, jnp.zeros(2), DT),
                                   rtol=1e-12, atol=1e-14)

    def test_foh_rollout_zero_step_reproduces_nominal(self):
        f = rk3_foh(pendulum)
        U = jnp.linspace(0.0, 1.0, 6)[:, None]
        X = foh_rollout_open_loop(f, U, jnp.array([0.2, 0.0]), DT)
        X_new, U_new = foh_rollout(f, X, U, self.K, self.b, self.d, 0.0, DT)
        np.testing.assert_allclose(X_new, X, rtol=1e-12)
        np.testing.assert_allclose(U_new, U, rtol=1e-12)

    def test_foh_rollout_first_sample_feedforward_only(self):
        f = rk3_foh(double_integrator)
        U = jnp.zeros((6, 1))
        X = foh_rollout_open_loop(f, U, jnp.zeros(2), DT)
        _, U_new = foh_rollout(f, X, U, self.K, self.b, self.d, 1.0, DT)
        np.testing.assert_allclose(U_new[0], self.d[0], rtol=1e-12)
        # dx[0] = 0, so the second sample only adds b[1] du[0]
        np.testing.assert_allclose(U_new[1], self.b[1] @ self.d[0] + self.d[1], rtol=1e-12)

    def test_make_rollout_fn_flags_non_finite(self):
        U = jnp.zeros((5, 1))
        traj = Trajectory(X=jnp.zeros((6, 2)), U=U)
        gains = GainSchedule(K=jnp.zeros((5, 1, 2)), d=jnp.full((5, 1), jnp.nan))
        rollout_fn = make_rollout_fn(rk4(double_integrator), traj, gains, DT)
        candidate, success = rollout_fn(1.0)
        self.assertFalse(success)
        self.assertEqual(candidate.info['step_size'], 1.0)

    def test_make_rollout_fn_selects_foh(self):
        U = jnp.zeros((6, 1))
        traj = Trajectory(X=jnp.zeros((6, 2)), U=U)
        gains = GainSchedule(K=self.K, d=self.d, b=self.b)
        rollout_fn = make_rollout_fn(rk3_foh(double_integrator), traj, gains, DT)
        candidate, success = rollout_fn(0.5)
        self.assertTrue(success)
        self.assertTrue(candidate.is_first_order_hold)


class CostTest(absltest.TestCase):

    def setUp(self):
        super().setUp()
        self.weights = CostWeights(Q=2.0 * np.eye(2), R=np.eye(1), Qf=10.0 * np.eye(2),
                                   xf=np.array([1.0, 0.0]), dt=DT)

    def test_quadratic_cost(self):
        X = np.array([[0.0, 0.0], [1.0, 1.0], [1.0, 0.0]])
        U = np.array([[1.0], [2.0]])
        # stage 0: Q term 1.0, R term 0.5; stage 1: Q term 1.0, R term 2.0
        expected = DT * (1.5 + 3.0)
        self.assertAlmostEqual(quadratic_cost(Trajectory(X=X, U=U), self.weights),
                               expected, places=12)

    def test_terminal_cost(self):
        X = np.array([[1.0, 0.0], [2.0, 0.0]])
        U = np.zeros((1, 1))
        self.assertAlmostEqual(quadratic_cost(Trajectory(X=X, U=U), self.weights),
                               5.0, places=12)

    def test_foh_cost_constant_control(self):
        weights = CostWeights(Q=np.zeros((2, 2)), R=np.eye(1), Qf=np.zeros((2, 2)),
                              xf=np.zeros(2), dt=DT)
        U = jnp.ones((5, 1))
        X = foh_rollout_open_loop(rk3_foh(double_integrator), U, jnp.zeros(2), DT)
        J = foh_quadratic_cost(Trajectory(X=X, U=U), weights, double_integrator)
        self.assertAlmostEqual(J, 4 * DT * 0.5, places=12)

    def test_foh_cost_uses_hermite_midpoints(self):
        U = jnp.linspace(-1.0, 1.0, 4)[:, None]
        X = foh_rollout_open_loop(rk3_foh(double_integrator), U, jnp.zeros(2), DT)
        Xm = hermite_midpoints(double_integrator, X, U, DT)
        w = self.weights

        def l(x, u):
            dx = np.asarray(x) - w.xf
            return 0.5 * dx @ w.Q @ dx + 0.5 * np.asarray(u) @ w.R @ np.asarray(u)

        expected = sum(
            DT / 6.0 * (l(X[k], U[k]) + 4.0 * l(Xm[k], 0.5 * (U[k] + U[k + 1]))
                        + l(X[k + 1], U[k + 1]))
            for k in range(3)
        )
        dxN = np.asarray(X[-1]) - w.xf
        expected += 0.5 * dxN @ w.Qf @ dxN
        J = foh_quadratic_cost(Trajectory(X=X, U=U), w, double_integrator)
        self.assertAlmostEqual(J, float(expected), places=10)

    def test_augmented_lagrangian_penalty(self):
        c = jnp.array([[1.0, -2.0], [0.5, 0.0]])
        penalty = jnp.array([[2.0, 0.0], [4.0, 1.0]])
        multiplier = jnp.array([[0.5, 1.0], [0.0, 3.0]])
        # lambda'c = 0.5 - 2.0 = -1.5; 1/2 c'Ic = 0.5 * (2.0 + 1.0) = 1.5
        self.assertAlmostEqual(float(augmented_lagrangian_penalty(c, penalty, multiplier)),
                               0.0, places=12)

    def test_make_cost_fn(self):
        traj = Trajectory(X=np.array([[1.0, 0.0], [2.0, 0.0]]), U=np.zeros((1, 1)))
        cost_fn = make_cost_fn(self.weights, penalty_fn=lambda t: 1.0)
        self.assertAlmostEqual(cost_fn(traj), 6.0, places=12)

        foh_traj = Trajectory(X=traj.X, U=np.zeros((2, 1)))
        with self.assertRaises(ValueError):
            make_cost_fn(self.weights)(foh_traj)


if __name__ == '__main__':
    absltest.main()
