"""Tests for the intercept-only Newton-Raphson solver."""

import numpy as np
import pytest

import gampoi as gp
from gampoi import FitStatus


class TestOneGroupRow:

    def test_poisson_closed_form(self):
        y = np.array([4, 9, 3, 12, 7])
        offset = np.log([0.5, 1.0, 1.5, 2.0, 1.2])
        beta, it, dev, status = gp.one_group_row(y, offset, 0.0, 1.0, tolerance=1e-12)
        assert status == FitStatus.CONVERGED
        assert beta == pytest.approx(np.log(y.sum() / np.exp(offset).sum()), abs=1e-10)

    def test_nb_score_vanishes(self):
        y = np.array([0, 15, 3, 40, 7, 1])
        offset = np.zeros(6)
        theta = 0.8
        beta, it, dev, status = gp.one_group_row(y, offset, theta, np.log(y.mean()),
                                                 tolerance=1e-12, max_iter=100)
        assert status == FitStatus.CONVERGED
        mu = np.exp(beta + offset)
        assert np.sum((y - mu) / (1 + theta * mu)) == pytest.approx(0, abs=1e-8)
        assert dev == pytest.approx(gp.row_deviance(y, np.full(6, mu), theta))

    def test_all_zero_row(self):
        beta, it, dev, status = gp.one_group_row(np.zeros(4, dtype=int), np.zeros(4),
                                                 0.5, 2.0)
        assert beta == -np.inf
        assert it == 0
        assert status == FitStatus.ALL_ZERO
        assert dev == 0

    def test_iteration_limit(self):
        y = np.array([100, 120, 90])
        beta, it, dev, status = gp.one_group_row(y, np.zeros(3), 0.1, 8.0,
                                                 tolerance=1e-12, max_iter=2)
        assert it == 2
        assert status == FitStatus.MAX_ITER

    def test_iteration_count_of_immediate_convergence(self):
        # starting at the Poisson MLE the first step is ~0
        y = np.array([2.0, 4.0, 6.0])
        beta, it, dev, status = gp.one_group_row(y, np.zeros(3), 0.0, np.log(4.0),
                                                 tolerance=1e-6)
        assert status == FitStatus.CONVERGED
        assert it == 0

    def test_integer_and_real_counts_agree(self):
        y = np.array([5, 0, 8, 13])
        offset = np.log([1.0, 0.8, 1.1, 1.3])
        a = gp.one_group_row(y, offset, 0.3, 1.0)
        b = gp.one_group_row(y.astype(float), offset, 0.3, 1.0)
        assert a[0] == pytest.approx(b[0], abs=1e-12)
        assert a[1] == b[1]
