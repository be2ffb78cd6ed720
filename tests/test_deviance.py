"""Tests for the Gamma-Poisson deviance."""

import numpy as np
import pytest

import gampoi as gp


# ── Unit deviance ───────────────────────────────────────────────────

class TestUnitDeviance:

    @pytest.mark.parametrize("theta", [0, 1e-8, 1e-3, 0.1, 2.5, 50])
    @pytest.mark.parametrize("mu", [1e-3, 0.5, 3, 1234.5])
    def test_zero_at_saturated_fit(self, mu, theta):
        assert gp.unit_deviance(mu, mu, theta) == pytest.approx(0, abs=1e-10)

    def test_poisson_zero_count(self):
        assert gp.compute_gp_deviance(0, 2.5, 0.0) == pytest.approx(5.0)

    def test_poisson_positive_count(self):
        y, mu = 4.0, 2.0
        expected = 2 * (y * np.log(y / mu) - (y - mu))
        assert gp.compute_gp_deviance(y, mu, 0.0) == pytest.approx(expected)

    def test_nb_zero_count(self):
        mu, theta = 3.0, 0.5
        expected = 2 / theta * np.log(1 + mu * theta)
        assert gp.unit_deviance(0, mu, theta) == pytest.approx(expected)

    def test_nb_matches_log_likelihood_ratio(self):
        from scipy.stats import nbinom
        y, mu, theta = 7, 3.2, 0.4
        size = 1 / theta

        def logf(m):
            return nbinom.logpmf(y, size, size / (size + m))

        expected = 2 * (logf(y) - logf(mu))
        assert gp.unit_deviance(y, mu, theta) == pytest.approx(expected, rel=1e-8)

    @pytest.mark.parametrize("y", [0, 1, 5, 40])
    def test_poisson_limit(self, y):
        mu = 6.0
        poisson = gp.unit_deviance(y, mu, 0.0)
        near = gp.unit_deviance(y, mu, 1e-5)
        assert near == pytest.approx(poisson, rel=1e-3, abs=1e-6)

    def test_nonnegative(self, rng):
        y = rng.poisson(5, 500).astype(float)
        mu = rng.gamma(2, 3, 500)
        theta = rng.choice([0, 1e-4, 0.05, 1.0, 10.0], 500)
        dev = gp.unit_deviance(y, mu, theta)
        assert dev.shape == (500,)
        assert np.all(dev >= -1e-10)

    def test_broadcasts(self):
        dev = gp.unit_deviance(np.array([[0, 1, 2]]), np.array([[1], [2]]), 0.1)
        assert dev.shape == (2, 3)

    def test_integer_counts(self):
        assert gp.compute_gp_deviance(3, 2.0, 0.2) == pytest.approx(
            gp.compute_gp_deviance(3.0, 2.0, 0.2))


# ── Row deviance ────────────────────────────────────────────────────

class TestRowDeviance:

    def test_all_zero_poisson(self):
        assert gp.row_deviance([0, 0, 0], [1.0, 1.0, 1.0], 0) == pytest.approx(6.0)

    @pytest.mark.parametrize("theta", [0, 0.01, 1.0])
    def test_saturated_row(self, theta):
        y = np.array([2, 3, 5])
        assert gp.row_deviance(y, y.astype(float), theta) == pytest.approx(0, abs=1e-10)

    def test_sum_of_units(self, rng):
        y = rng.poisson(4, 20)
        mu = rng.gamma(2, 2, 20)
        expected = np.sum(gp.unit_deviance(y, mu, 0.3))
        assert gp.row_deviance(y, mu, 0.3) == pytest.approx(expected)

    def test_per_element_theta(self):
        y = np.array([1, 4, 0, 2])
        mu = np.array([2.0, 3.0, 1.0, 2.5])
        theta = np.array([0.1, 0.5, 0.0, 2.0])
        expected = sum(gp.compute_gp_deviance(a, b, c) for a, b, c in zip(y, mu, theta))
        assert gp.row_deviance(y, mu, theta) == pytest.approx(expected)

    def test_theta_indexed_cyclically(self):
        y = np.array([1, 4, 0, 2, 3, 1])
        mu = np.array([2.0, 3.0, 1.0, 2.5, 1.5, 0.5])
        theta = np.array([0.1, 0.5, 2.0])
        expected = sum(gp.compute_gp_deviance(y[i], mu[i], theta[i % 3])
                       for i in range(6))
        assert gp.row_deviance(y, mu, theta) == pytest.approx(expected)

    def test_matrix_uses_theta_per_row(self):
        y = np.array([[1, 4, 0], [2, 3, 1]])
        mu = np.array([[2.0, 3.0, 1.0], [2.5, 1.5, 0.5]])
        theta = np.array([0.1, 2.0])
        expected = (gp.row_deviance(y[0], mu[0], 0.1)
                    + gp.row_deviance(y[1], mu[1], 2.0))
        assert gp.row_deviance(y, mu, theta) == pytest.approx(expected)

    def test_matrix_rejects_theta_per_column(self):
        y = np.array([[1, 4, 0], [2, 3, 1]])
        mu = np.ones((2, 3))
        with pytest.raises(ValueError, match="number of rows of y"):
            gp.row_deviance(y, mu, [0.1, 0.2, 0.3])
        with pytest.raises(ValueError, match="number of rows of y"):
            gp.row_deviance(y, mu, [0.1, 0.2, 0.3, 0.4, 0.5, 0.6])

    def test_bad_theta_length(self):
        with pytest.raises(ValueError, match="length of theta"):
            gp.row_deviance([1, 2, 3], [1.0, 2.0, 3.0], [0.1, 0.2])

    def test_shape_mismatch(self):
        with pytest.raises(ValueError, match="same shape"):
            gp.row_deviance([1, 2, 3], [1.0, 2.0], 0.1)


# ── Deviance matrix ─────────────────────────────────────────────────

class TestDevianceMatrix:

    def test_matches_row_deviance(self, rng):
        y = rng.poisson(5, (4, 6))
        mu = rng.gamma(3, 2, (4, 6))
        thetas = np.array([0, 0.1, 1, 5])
        dev = gp.deviance_matrix(y, mu, thetas)
        expected = [gp.row_deviance(y[g], mu[g], thetas[g]) for g in range(4)]
        np.testing.assert_allclose(dev, expected)

    def test_scalar_theta(self, rng):
        y = rng.poisson(5, (3, 5)).astype(float)
        dev = gp.deviance_matrix(y, y, 0.2)
        np.testing.assert_allclose(dev, 0, atol=1e-10)

    def test_bad_thetas(self):
        with pytest.raises(ValueError):
            gp.deviance_matrix(np.ones((3, 2)), np.ones((3, 2)), [0.1, 0.2])
