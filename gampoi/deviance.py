"""
Gamma-Poisson deviance.

The unit deviance is ``2 * (log f(y | y, theta) - log f(y | mu, theta))``
for the negative binomial density with mean ``mu`` and overdispersion
``theta`` (variance ``mu + theta * mu^2``). Below ``theta = 1e-6`` the
Poisson limit is used.

The scalar kernels are compiled with numba; integer and real counts get
their own specialisations.
"""

import numpy as np
from numba import njit

from ._config import POISSON_THETA


@njit(cache=True, error_model="numpy")
def compute_gp_deviance(y, mu, theta):
    """Unit deviance of a single observation."""
    if theta < POISSON_THETA:
        if y == 0:
            return 2.0 * mu
        return 2.0 * (y * np.log(y / mu) - (y - mu))
    if y == 0:
        return 2.0 / theta * np.log(1.0 + mu * theta)
    s1 = y * np.log((mu + y * mu * theta) / (y + y * mu * theta))
    s2 = 1.0 / theta * np.log((1.0 + mu * theta) / (1.0 + y * theta))
    return -2.0 * (s1 - s2)


@njit(cache=True, error_model="numpy")
def _deviance_sum(y, mu, theta):
    dev = 0.0
    for i in range(y.shape[0]):
        dev += compute_gp_deviance(y[i], mu[i], theta)
    return dev


@njit(cache=True, error_model="numpy")
def _deviance_sum_indexed(y, mu, thetas):
    # element i uses thetas[i % len(thetas)]
    dev = 0.0
    n = thetas.shape[0]
    for i in range(y.shape[0]):
        dev += compute_gp_deviance(y[i], mu[i], thetas[i % n])
    return dev


@njit(cache=True, error_model="numpy")
def _unit_deviance_kernel(y, mu, theta, out):
    for i in range(y.shape[0]):
        out[i] = compute_gp_deviance(y[i], mu[i], theta[i])


@njit(cache=True, error_model="numpy")
def _deviance_rows(y, mu, thetas, out):
    for g in range(y.shape[0]):
        out[g] = _deviance_sum(y[g], mu[g], thetas[g])


def _as_counts(y):
    """Contiguous counts, keeping integer counts integer."""
    y = np.asarray(y)
    if np.issubdtype(y.dtype, np.integer):
        return np.ascontiguousarray(y, dtype=np.int64)
    return np.ascontiguousarray(y, dtype=np.float64)


def unit_deviance(y, mu, theta=0.0):
    """Elementwise Gamma-Poisson unit deviance.

    Parameters
    ----------
    y : scalar or ndarray
        Observed counts.
    mu : scalar or ndarray
        Fitted means, broadcastable against ``y``.
    theta : scalar or ndarray
        Overdispersion, broadcastable against ``y``.

    Returns
    -------
    float if all inputs are scalars, otherwise an ndarray of the broadcast
    shape.
    """
    y, mu, theta = np.broadcast_arrays(np.asarray(y, dtype=np.float64),
                                       np.asarray(mu, dtype=np.float64),
                                       np.asarray(theta, dtype=np.float64))
    shape = y.shape
    out = np.empty(y.size)
    _unit_deviance_kernel(np.ascontiguousarray(y).ravel(),
                          np.ascontiguousarray(mu).ravel(),
                          np.ascontiguousarray(theta).ravel(), out)
    if shape == ():
        return float(out[0])
    return out.reshape(shape)


def row_deviance(y, mu, theta=0.0):
    """Summed deviance of one row.

    ``theta`` is either a scalar shared by every element, or an array of
    per-element dispersions indexed cyclically: element ``i`` uses
    ``theta[i % len(theta)]``. A 2-D ``y`` is read in column-major order
    and takes either a scalar or one theta per row of ``y``.
    """
    y = np.asarray(y)
    mu = np.asarray(mu, dtype=np.float64)
    if y.shape != mu.shape:
        raise ValueError("y and mu must have the same shape")
    theta = np.asarray(theta, dtype=np.float64)
    if y.ndim == 2 and theta.ndim > 0 and theta.size != y.shape[0]:
        raise ValueError("length of theta must equal the number of rows of y")
    if y.ndim > 1:
        y = y.ravel(order='F')
        mu = mu.ravel(order='F')
    y = _as_counts(y)
    mu = np.ascontiguousarray(mu)

    if theta.ndim == 0:
        return float(_deviance_sum(y, mu, float(theta)))
    theta = np.ascontiguousarray(theta.ravel())
    if theta.size == 0 or y.size % theta.size != 0:
        raise ValueError("length of theta must divide the number of observations")
    return float(_deviance_sum_indexed(y, mu, theta))


def deviance_matrix(y, mu, thetas=0.0):
    """Row-wise deviances of a count matrix.

    Parameters
    ----------
    y : ndarray
        Count matrix (genes x samples).
    mu : ndarray
        Fitted means, same shape as ``y``.
    thetas : float or ndarray
        One overdispersion per gene, or a single shared value.

    Returns
    -------
    ndarray of length ``n_genes``.
    """
    y = np.asarray(y)
    if y.ndim == 1:
        y = y.reshape(1, -1)
    mu = np.asarray(mu, dtype=np.float64).reshape(y.shape)
    ngenes = y.shape[0]
    thetas = np.asarray(thetas, dtype=np.float64)
    if thetas.ndim == 0:
        thetas = np.full(ngenes, float(thetas))
    elif thetas.shape != (ngenes,):
        raise ValueError("thetas must be a scalar or have one entry per row")
    out = np.empty(ngenes)
    _deviance_rows(_as_counts(y), np.ascontiguousarray(mu),
                   np.ascontiguousarray(thetas), out)
    return out
