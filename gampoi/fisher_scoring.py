"""
Fisher scoring for one row of a negative binomial GLM with log link.

Coefficients are on the natural-log scale: ``mu = exp_offset * exp(X @ beta)``.
Each iteration computes a Fisher-scoring step and then searches along it
for a speeding factor that does not increase the deviance, so accepted
iterations never make the fit worse. The speeding factor is halved on
every rejected trial and recovers by a factor 1.5 (up to 1) whenever a
step is accepted on the first try.

Two step rules share this loop:

* :func:`fisher_scoring_row` uses the full expected information through
  a QR decomposition of the weighted design (see Dunn & Smyth, GLM book,
  eq. 6.16).
* :func:`diagonal_fisher_scoring_row` keeps only the diagonal of the
  information matrix, which makes an iteration linear instead of cubic in
  the number of coefficients (Townes 2019, Generalized Principal
  Component Analysis). It is meant for designs with many columns.
"""

import numpy as np
from scipy import linalg as sla

from ._config import (MU_LOWER, MU_UPPER, MAX_LINE_SEARCH,
                      MIN_SPEEDING_FACTOR)
from .classes import FitStatus
from .deviance import _as_counts, _deviance_sum
from .utils import clamp_inplace


def _fitted_mu(exp_offset, design, beta):
    mu = exp_offset * np.exp(design @ beta)
    return clamp_inplace(mu, MU_LOWER, MU_UPPER)


def _full_step(counts, mu, design, theta):
    w_sqrt = np.sqrt(mu / (1.0 + theta * mu))
    q, r = sla.qr(design * w_sqrt[:, None], mode='economic', check_finite=False)
    # Not quite the score vector, but related
    score = ((counts - mu) / mu) @ (q * w_sqrt[:, None])
    return sla.solve_triangular(r, score, lower=False, check_finite=False)


def _diagonal_step(counts, mu, design, theta):
    w = mu / (1.0 + theta * mu)
    score = ((counts - mu) / mu) @ (design * w[:, None])
    # diag(X^T W X) without forming the p x p matrix
    info = np.sum(design ** 2 * w[:, None], axis=0)
    return score / info


def _fisher_scoring_loop(step_rule, counts, exp_offset, design, theta, beta,
                         tolerance, max_iter, min_speeding_factor):
    """Shared iteration; returns ``(beta, iterations, deviance, status)``."""
    beta = np.array(beta, dtype=np.float64)
    mu = _fitted_mu(exp_offset, design, beta)
    dev = _deviance_sum(counts, mu, theta)
    dev_old = dev
    speeding_factor = 1.0
    status = FitStatus.MAX_ITER

    iterations = 0
    for t in range(max_iter):
        iterations += 1
        try:
            step = step_rule(counts, mu, design, theta)
        except np.linalg.LinAlgError:
            step = None

        conv_test = np.nan
        beta_prop = beta
        line_iter = 0
        while step is not None:
            beta_prop = beta + speeding_factor * step
            mu = _fitted_mu(exp_offset, design, beta_prop)
            dev = _deviance_sum(counts, mu, theta)
            conv_test = abs(dev - dev_old) / (abs(dev) + 0.1)
            if dev < dev_old or conv_test < tolerance:
                break
            elif line_iter >= MAX_LINE_SEARCH or speeding_factor < min_speeding_factor:
                # speeding factor is tiny, something is going wrong
                conv_test = np.nan
                break
            speeding_factor /= 2.0
            line_iter += 1

        if line_iter == 0 and speeding_factor < 1.0:
            speeding_factor = min(speeding_factor * 1.5, 1.0)
        beta = beta_prop

        if np.isnan(conv_test):
            beta = np.full_like(beta, np.nan)
            return beta, max_iter, np.nan, FitStatus.DIVERGED
        if t > 0 and conv_test < tolerance:
            status = FitStatus.CONVERGED
            break
        dev_old = dev

    return beta, iterations, dev, status


def fisher_scoring_row(counts, exp_offset, design, theta, beta,
                       tolerance=1e-8, max_iter=100):
    """Fit one row by Fisher scoring with a deviance line search.

    Parameters
    ----------
    counts : ndarray
        Counts of the row (length n_samples), integer or real.
    exp_offset : ndarray
        Multiplicative offsets (length n_samples), e.g. size factors.
    design : ndarray
        Design matrix (n_samples x p).
    theta : float
        Overdispersion; values below 1e-6 give a Poisson fit.
    beta : ndarray
        Starting coefficients (length p). Not modified.
    tolerance : float
        Threshold on the relative deviance change
        ``|dev - dev_old| / (|dev| + 0.1)``.
    max_iter : int
        Maximum number of Fisher-scoring iterations.

    Returns
    -------
    tuple of (beta, iterations, deviance, status). A diverged row has
    beta filled with NaN, ``iterations == max_iter`` and status
    ``FitStatus.DIVERGED``.
    """
    return _fisher_scoring_loop(
        _full_step, _as_counts(counts), np.asarray(exp_offset, dtype=np.float64),
        np.asarray(design, dtype=np.float64), float(theta), beta,
        tolerance, max_iter, 0.0)


def diagonal_fisher_scoring_row(counts, exp_offset, design, theta, beta,
                                tolerance=1e-8, max_iter=100):
    """Fit one row with a diagonal approximation of the Fisher information.

    Same arguments and return value as :func:`fisher_scoring_row`. The
    line search additionally gives up once the speeding factor falls
    below 1e-6.
    """
    return _fisher_scoring_loop(
        _diagonal_step, _as_counts(counts), np.asarray(exp_offset, dtype=np.float64),
        np.asarray(design, dtype=np.float64), float(theta), beta,
        tolerance, max_iter, MIN_SPEEDING_FACTOR)
