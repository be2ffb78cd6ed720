"""
Shared helpers: clamping of fitted means, count element-type dispatch and
argument checking for the batch fitters.
"""

import numpy as np

from .errors import UnsupportedElementTypeError


def clamp_inplace(v, lo, hi):
    """Bound ``v`` elementwise into ``[lo, hi]``, in place.

    NaN entries are left untouched.
    """
    np.clip(v, lo, hi, out=v)
    return v


def resolve_count_dtype(dtype):
    """Buffer dtype for a count element type.

    Integer counts are read into ``int64`` buffers, real counts into
    ``float64``. Anything else (bool, complex, object, strings) is
    rejected.
    """
    dtype = np.dtype(dtype)
    if np.issubdtype(dtype, np.integer):
        return np.dtype(np.int64)
    if np.issubdtype(dtype, np.floating):
        return np.dtype(np.float64)
    raise UnsupportedElementTypeError(dtype)


def check_design(design, nsamples):
    """Validate a design matrix (samples x coefficients)."""
    design = np.asarray(design, dtype=np.float64)
    if design.ndim == 1:
        design = design.reshape(-1, 1)
    if design.ndim != 2:
        raise ValueError("design must be a matrix")
    if design.shape[0] != nsamples:
        raise ValueError("nrow(design) disagrees with ncol(counts)")
    if design.shape[1] == 0:
        raise ValueError("design must have at least one column")
    if not np.all(np.isfinite(design)):
        raise ValueError("design must contain finite values")
    return np.ascontiguousarray(design)


def check_thetas(thetas, ngenes):
    """Expand and validate per-gene overdispersions."""
    thetas = np.asarray(thetas, dtype=np.float64)
    if thetas.ndim == 0 or thetas.size == 1:
        thetas = np.full(ngenes, thetas.ravel()[0])
    thetas = thetas.ravel()
    if len(thetas) != ngenes:
        raise ValueError("length of thetas must equal number of rows")
    if np.any(np.isnan(thetas)):
        raise ValueError("NA thetas not allowed")
    if np.any(thetas < 0):
        raise ValueError("Negative thetas not allowed")
    return thetas


def check_beta_init(beta_init, ngenes, ncoefs=None):
    """Copy starting coefficients into a fresh result array.

    With ``ncoefs=None`` one coefficient per gene is expected (one-group
    fits) and a 1-D array is returned.
    """
    beta = np.array(beta_init, dtype=np.float64)
    if ncoefs is None:
        if beta.ndim == 0 or beta.size == 1:
            return np.full(ngenes, beta.ravel()[0])
        beta = beta.ravel()
        if len(beta) != ngenes:
            raise ValueError("length of beta_init must equal number of rows")
        return beta
    if beta.ndim == 1 and len(beta) == ncoefs:
        beta = np.tile(beta, (ngenes, 1))
    if beta.shape != (ngenes, ncoefs):
        raise ValueError(f"beta_init must have shape ({ngenes}, {ncoefs})")
    return beta


def check_control(tolerance, max_iter):
    tolerance = float(tolerance)
    if not tolerance > 0:
        raise ValueError("tolerance must be positive")
    if int(max_iter) != max_iter or max_iter < 0:
        raise ValueError("max_iter must be a non-negative integer")
    return tolerance, int(max_iter)


def is_intercept_only(design):
    """True if the design is a single column of ones."""
    design = np.asarray(design)
    if design.ndim == 1:
        design = design.reshape(-1, 1)
    return design.shape[1] == 1 and np.all(design[:, 0] == 1)
