"""
Intercept-only negative binomial fit.

If there is only one group there is no need for the full Fisher-scoring
machinery: the single log-scale coefficient is found by Newton-Raphson on
the log likelihood. Offsets enter additively on the log scale,
``mu = exp(beta + offset)``.
"""

import numpy as np
from numba import njit

from .classes import FitStatus
from .deviance import _as_counts, _deviance_sum

_CONVERGED = int(FitStatus.CONVERGED)
_MAX_ITER = int(FitStatus.MAX_ITER)
_ALL_ZERO = int(FitStatus.ALL_ZERO)


@njit(cache=True, error_model="numpy")
def _newton_one_group(counts, offset, theta, beta, tolerance, max_iter):
    n = counts.shape[0]
    it = 0
    while it < max_iter:
        dl = 0.0
        ddl = 0.0
        all_zero = True
        for i in range(n):
            count = counts[i]
            all_zero = all_zero and count == 0
            mu = np.exp(beta + offset[i])
            denom = 1.0 + mu * theta
            dl += (count - mu) / denom
            # edgeR uses mu / denom here (expected information)
            ddl += mu * (1.0 + count * theta) / denom / denom
        if all_zero:
            return -np.inf, it, _ALL_ZERO
        step = dl / ddl
        beta += step
        if abs(step) < tolerance:
            return beta, it, _CONVERGED
        it += 1
    return beta, it, _MAX_ITER


def one_group_row(counts, offset, theta, beta, tolerance=1e-8, max_iter=100):
    """Fit the intercept of one row by Newton-Raphson.

    Parameters
    ----------
    counts : ndarray
        Counts of the row, integer or real.
    offset : ndarray
        Log-scale offsets, one per sample.
    theta : float
        Overdispersion.
    beta : float
        Starting value.
    tolerance : float
        Stop once the absolute Newton step is below this value.
    max_iter : int
        Maximum number of Newton iterations.

    Returns
    -------
    tuple of (beta, iterations, deviance, status). A row of zeros returns
    ``-inf`` with status ``FitStatus.ALL_ZERO`` without taking a step.
    The iteration count is the index of the iteration that met the
    tolerance, or ``max_iter`` if none did. A vanishing second derivative
    is not guarded against; such rows run out of iterations and report
    ``FitStatus.MAX_ITER``.
    """
    counts = _as_counts(counts)
    offset = np.ascontiguousarray(offset, dtype=np.float64)
    theta = float(theta)
    beta, iterations, code = _newton_one_group(counts, offset, theta, float(beta),
                                               float(tolerance), int(max_iter))
    with np.errstate(over='ignore', invalid='ignore'):
        dev = _deviance_sum(counts, np.exp(beta + offset), theta)
    return beta, iterations, dev, FitStatus(code)
