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

"""Tests for PSD and Cholesky factor utilities."""

from absl.testing import absltest
from absl.testing import parameterized

import jax.numpy as jnp
from jax import config
import numpy as np

from ddpax.core import FactorizationError
from ddpax.utils import (
    chol_minus,
    chol_plus,
    cholesky_downdate,
    cholesky_factor,
    is_positive_definite,
    project_psd_cone,
    psd_sqrt,
    symmetrize,
)

config.update('jax_enable_x64', True)


class CholPlusTest(parameterized.TestCase):

    @parameterized.parameters((3, 3, 2), (4, 1, 4), (2, 3, 0))
    def test_factor_of_sum(self, r1, c, r2):
        rng = np.random.RandomState(r1 + c + r2)
        A = rng.randn(r1, c)
        B = rng.randn(r2, c)
        R = np.asarray(chol_plus(A, B))
        self.assertEqual(R.shape, (c, c))
        np.testing.assert_allclose(R.T @ R, A.T @ A + B.T @ B, rtol=1e-10, atol=1e-12)
        np.testing.assert_array_equal(np.tril(R, -1), 0.0)
        self.assertTrue(np.all(np.diag(R) >= 0.0))

    def test_identity_blocks(self):
        R = chol_plus(jnp.eye(2), 2.0 * jnp.eye(2))
        np.testing.assert_allclose(R, np.sqrt(5.0) * np.eye(2), rtol=1e-12, atol=1e-12)


class CholMinusTest(absltest.TestCase):

    def test_downdate(self):
        rng = np.random.RandomState(0)
        R = chol_plus(rng.randn(3, 3), 2.0 * jnp.eye(3))
        B = 0.3 * rng.randn(2, 3)
        R1, ok = chol_minus(R, B)
        self.assertTrue(bool(ok))
        R, R1 = np.asarray(R), np.asarray(R1)
        np.testing.assert_allclose(R1.T @ R1, R.T @ R - B.T @ B, rtol=1e-10, atol=1e-12)
        np.testing.assert_array_equal(np.tril(R1, -1), 0.0)

    def test_single_row_downdate(self):
        R = jnp.array([[2.0, 1.0], [0.0, 3.0]])
        x = jnp.array([1.0, 1.0])
        R1, ok = cholesky_downdate(R, x)
        self.assertTrue(bool(ok))
        np.testing.assert_allclose(R1.T @ R1, R.T @ R - jnp.outer(x, x), rtol=1e-12)

    def test_indefinite_downdate_fails(self):
        _, ok = chol_minus(jnp.eye(2), jnp.array([[2.0, 0.0]]))
        self.assertFalse(bool(ok))


class PSDTest(absltest.TestCase):

    def test_symmetrize(self):
        A = jnp.array([[1.0, 2.0], [4.0, 3.0]])
        np.testing.assert_array_equal(symmetrize(A), [[1.0, 3.0], [3.0, 3.0]])

    def test_is_positive_definite(self):
        self.assertTrue(bool(is_positive_definite(jnp.eye(3))))
        self.assertFalse(bool(is_positive_definite(jnp.diag(jnp.array([1.0, -1.0])))))
        self.assertFalse(bool(is_positive_definite(jnp.zeros((2, 2)))))

    def test_cholesky_factor(self):
        Q = jnp.array([[4.0, 2.0], [2.0, 3.0]])
        U = cholesky_factor(Q)
        np.testing.assert_allclose(U.T @ U, Q, rtol=1e-12)
        self.assertEqual(float(U[1, 0]), 0.0)

    def test_cholesky_factor_raises(self):
        with self.assertRaises(FactorizationError):
            cholesky_factor(jnp.diag(jnp.array([1.0, -1.0])), raise_on_failure=True)

    def test_psd_sqrt_singular(self):
        Q = jnp.diag(jnp.array([2.0, 0.0, 1.0]))
        W = psd_sqrt(Q)
        np.testing.assert_allclose(W.T @ W, Q, atol=1e-12)

    def test_project_psd_cone(self):
        Q = jnp.array([[1.0, 2.0], [2.0, 1.0]])  # eigenvalues 3, -1
        P = project_psd_cone(Q, delta=0.1)
        self.assertGreaterEqual(float(jnp.min(jnp.linalg.eigvalsh(P))), 0.1 - 1e-12)


if __name__ == '__main__':
    absltest.main()
