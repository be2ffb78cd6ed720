"""
Batch fitting of negative binomial GLM coefficients, one row at a time.

The fitters pull each row's counts and offsets from a
:class:`~gampoi.row_source.RowSource`, run the per-row solver and write
the coefficients, iteration count, deviance and status into that row's
slot of the result. Rows are independent, so blocks of rows can run on a
thread pool; each block owns its scratch buffers and writes only its own
rows.

Counts may be integer or real. The element type is resolved once per
batch, before any row is read.
"""

import threading
import warnings
from concurrent.futures import ThreadPoolExecutor, as_completed

import numpy as np

from . import _config
from ._config import CHECK_INTERVAL, MIN_SPEEDING_FACTOR
from .classes import BetaFit, FitStatus
from .errors import FitCancelledError, FitDivergenceWarning
from .fisher_scoring import _diagonal_step, _fisher_scoring_loop, _full_step
from .one_group import one_group_row
from .row_source import CompressedMatrix, TransformedRowSource, as_row_source
from .utils import (check_beta_init, check_control, check_design, check_thetas,
                    is_intercept_only, resolve_count_dtype)


class CancellationToken:
    """Cooperative cancellation flag for batch fits.

    Fits poll the token once per block of 100 rows. Cancelling never
    interrupts a row in progress.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self):
        return self._event.is_set()


def _new_result(beta, ngenes, method, tolerance, max_iter):
    return BetaFit(
        beta=beta,
        iter=np.zeros(ngenes, dtype=np.int64),
        deviance=np.full(ngenes, np.nan),
        status=np.full(ngenes, int(FitStatus.NOT_FITTED), dtype=np.int8),
        method=method,
        tolerance=tolerance,
        max_iter=max_iter,
    )


def _run_blocks(fit_block, result, ngenes, n_workers, cancel_token, verbose):
    """Run ``fit_block(start, stop)`` over all row blocks.

    Raises FitCancelledError once the token is seen at a block boundary.
    """
    starts = range(0, ngenes, CHECK_INTERVAL)
    nblocks = len(starts)
    report_every = max(1, nblocks // 10)

    def _checked(start):
        if cancel_token is not None and cancel_token.cancelled:
            return start
        with np.errstate(all='ignore'):
            fit_block(start, min(start + CHECK_INTERVAL, ngenes))
        return None

    if n_workers > 1 and nblocks > 1:
        skipped = []
        with ThreadPoolExecutor(max_workers=n_workers) as executor:
            futures = [executor.submit(_checked, start) for start in starts]
            for done, future in enumerate(as_completed(futures), 1):
                start = future.result()
                if start is not None:
                    skipped.append(start)
                if verbose and nblocks > 10 and done % report_every == 0:
                    print(f"  Block {done}/{nblocks} done...")
        if skipped:
            raise FitCancelledError(result, min(skipped))
    else:
        for b, start in enumerate(starts):
            if verbose and nblocks > 10 and b % report_every == 0:
                print(f"  Row {start + 1}/{ngenes}...")
            if _checked(start) is not None:
                raise FitCancelledError(result, start)


def _warn_unfinished(result):
    status = result['status']
    ndiv = int(np.sum(status == FitStatus.DIVERGED))
    if ndiv:
        warnings.warn(
            f"{ndiv} rows diverged in the line search; "
            "their coefficients are set to NaN", FitDivergenceWarning)
    nmax = int(np.sum(status == FitStatus.MAX_ITER))
    if nmax:
        warnings.warn(
            f"{nmax} rows did not converge within {result['max_iter']} iterations",
            FitDivergenceWarning)


def _resolve_workers(n_workers):
    if n_workers is None:
        return _config.get_num_workers()
    return _config._parse_num_workers(n_workers)


def _fit_fisher_family(step_rule, min_speeding_factor, method, counts, design,
                       exp_offsets, thetas, beta_init, tolerance, max_iter,
                       n_workers, cancel_token, verbose):
    counts = as_row_source(counts)
    count_dtype = resolve_count_dtype(counts.dtype)
    ngenes, nsamples = counts.shape
    design = check_design(design, nsamples)
    exp_offsets = as_row_source(exp_offsets, shape=counts.shape)
    thetas = check_thetas(thetas, ngenes)
    beta = check_beta_init(beta_init, ngenes, design.shape[1])
    tolerance, max_iter = check_control(tolerance, max_iter)
    n_workers = _resolve_workers(n_workers)

    result = _new_result(beta, ngenes, method, tolerance, max_iter)
    if verbose:
        print(f"Fitting {ngenes} rows with {design.shape[1]} coefficients "
              f"({method}, {n_workers} workers).")

    def fit_block(start, stop):
        y = np.empty(nsamples, dtype=count_dtype)
        off = np.empty(nsamples, dtype=np.float64)
        for g in range(start, stop):
            counts.read_row(g, y)
            exp_offsets.read_row(g, off)
            b, it, dev, status = _fisher_scoring_loop(
                step_rule, y, off, design, thetas[g], beta[g],
                tolerance, max_iter, min_speeding_factor)
            beta[g] = b
            result['iter'][g] = it
            result['deviance'][g] = dev
            result['status'][g] = status

    _run_blocks(fit_block, result, ngenes, n_workers, cancel_token, verbose)
    _warn_unfinished(result)
    return result


def fit_fisher_scoring(counts, design, exp_offsets, thetas, beta_init,
                       tolerance=1e-8, max_iter=100, n_workers=None,
                       cancel_token=None, verbose=False):
    """Fit row-wise negative binomial GLMs by Fisher scoring.

    Parameters
    ----------
    counts : ndarray, sparse matrix, h5py.Dataset or RowSource
        Count matrix (genes x samples), integer or real.
    design : ndarray
        Design matrix (samples x coefficients).
    exp_offsets : scalar, ndarray or RowSource
        Multiplicative offsets (e.g. size factors). A vector holds one
        value per sample.
    thetas : float or ndarray
        Overdispersion per gene.
    beta_init : ndarray
        Starting coefficients (genes x coefficients), natural-log scale.
        Not modified.
    tolerance : float
        Convergence threshold on the relative deviance change.
    max_iter : int
        Maximum Fisher-scoring iterations per row.
    n_workers : int, optional
        Worker threads; defaults to :func:`gampoi.get_num_workers`.
    cancel_token : CancellationToken, optional
        Polled every 100 rows.
    verbose : bool
        Print progress.

    Returns
    -------
    BetaFit with 'beta', 'iter', 'deviance', 'status'.

    Raises
    ------
    UnsupportedElementTypeError
        If the counts are neither integer nor real.
    FitCancelledError
        If ``cancel_token`` was cancelled; carries the partial result.
    """
    return _fit_fisher_family(_full_step, 0.0, 'fisher', counts, design,
                              exp_offsets, thetas, beta_init, tolerance,
                              max_iter, n_workers, cancel_token, verbose)


def fit_diagonal_fisher_scoring(counts, design, exp_offsets, thetas, beta_init,
                                tolerance=1e-8, max_iter=100, n_workers=None,
                                cancel_token=None, verbose=False):
    """Fit row-wise GLMs with a diagonal approximation of the information.

    Same arguments and result as :func:`fit_fisher_scoring`. Each
    iteration is linear in the number of coefficients, which pays off for
    designs with many columns.
    """
    return _fit_fisher_family(_diagonal_step, MIN_SPEEDING_FACTOR, 'diagonal',
                              counts, design, exp_offsets, thetas, beta_init,
                              tolerance, max_iter, n_workers, cancel_token,
                              verbose)


def _one_group_start(y, off):
    """log(sum(y) / sum(exp(offset))) for one row, -20 for an empty row."""
    total_y = np.sum(y)
    total_lib = np.sum(np.exp(off))
    if total_y > 0 and total_lib > 0:
        return np.log(total_y / total_lib)
    return -20.0


def fit_one_group(counts, offsets, thetas, beta_init=None, tolerance=1e-8,
                  max_iter=100, n_workers=None, cancel_token=None,
                  verbose=False):
    """Fit intercept-only negative binomial GLMs by Newton-Raphson.

    Parameters
    ----------
    counts : ndarray, sparse matrix, h5py.Dataset or RowSource
        Count matrix (genes x samples), integer or real.
    offsets : scalar, ndarray or RowSource
        Log-scale offsets. A vector holds one value per sample.
    thetas : float or ndarray
        Overdispersion per gene.
    beta_init : float or ndarray, optional
        Starting value per gene. If None, each row starts from
        ``log(sum(y) / sum(exp(offset)))`` (-20 for an empty row),
        computed from the same row read that feeds the fit.
    tolerance : float
        Convergence threshold on the absolute Newton step.
    max_iter : int
        Maximum iterations per row.

    Returns
    -------
    BetaFit whose 'beta' has one entry per gene; rows of zeros get
    ``-inf`` and status ``ALL_ZERO``. Without ``beta_init``, rows left
    unfitted by a cancellation hold NaN.
    """
    counts = as_row_source(counts)
    count_dtype = resolve_count_dtype(counts.dtype)
    ngenes, nsamples = counts.shape
    offsets = as_row_source(offsets, shape=counts.shape)
    thetas = check_thetas(thetas, ngenes)
    start_from_data = beta_init is None
    if start_from_data:
        beta = np.full(ngenes, np.nan)
    else:
        beta = check_beta_init(beta_init, ngenes)
    tolerance, max_iter = check_control(tolerance, max_iter)
    n_workers = _resolve_workers(n_workers)

    result = _new_result(beta, ngenes, 'one_group', tolerance, max_iter)
    if verbose:
        print(f"Fitting {ngenes} rows (one_group, {n_workers} workers).")

    def fit_block(start, stop):
        y = np.empty(nsamples, dtype=count_dtype)
        off = np.empty(nsamples, dtype=np.float64)
        for g in range(start, stop):
            counts.read_row(g, y)
            offsets.read_row(g, off)
            b0 = _one_group_start(y, off) if start_from_data else beta[g]
            b, it, dev, status = one_group_row(y, off, thetas[g], b0,
                                               tolerance, max_iter)
            beta[g] = b
            result['iter'][g] = it
            result['deviance'][g] = dev
            result['status'][g] = status

    _run_blocks(fit_block, result, ngenes, n_workers, cancel_token, verbose)
    _warn_unfinished(result)
    return result


_METHODS = ('auto', 'fisher', 'diagonal', 'one_group')


def fit_beta(counts, design=None, offsets=0.0, thetas=0.0, beta_init=None,
             method='auto', tolerance=1e-8, max_iter=100, n_workers=None,
             cancel_token=None, verbose=False):
    """Fit negative binomial GLM coefficients for each row.

    Front door over the three solvers, taking log-scale offsets like the
    rest of the pipeline.

    Parameters
    ----------
    counts : ndarray, sparse matrix, h5py.Dataset or RowSource
        Count matrix (genes x samples).
    design : ndarray, optional
        Design matrix (samples x coefficients). Defaults to an intercept.
    offsets : scalar, ndarray or RowSource
        Log-scale offsets.
    thetas : float or ndarray
        Overdispersion per gene.
    beta_init : ndarray, optional
        Starting coefficients. Defaults to zeros for Fisher scoring and to
        the offset-adjusted log mean for the one-group solver.
    method : str
        'auto' uses the one-group solver for an intercept-only design and
        full Fisher scoring otherwise. 'fisher', 'diagonal' and
        'one_group' force a solver.

    Returns
    -------
    BetaFit; 'beta' is always genes x coefficients.
    """
    if method not in _METHODS:
        raise ValueError(f"method must be one of {_METHODS}")
    counts = as_row_source(counts)
    resolve_count_dtype(counts.dtype)
    ngenes, nsamples = counts.shape
    if design is None:
        design = np.ones((nsamples, 1))
    design = check_design(design, nsamples)
    offsets = as_row_source(offsets, shape=counts.shape)

    if method == 'auto':
        method = 'one_group' if is_intercept_only(design) else 'fisher'

    if method == 'one_group':
        if not is_intercept_only(design):
            raise ValueError("method 'one_group' requires an intercept-only design")
        if beta_init is not None:
            beta_init = np.asarray(beta_init, dtype=np.float64).reshape(-1)
        fit = fit_one_group(counts, offsets, thetas, beta_init,
                            tolerance=tolerance, max_iter=max_iter,
                            n_workers=n_workers, cancel_token=cancel_token,
                            verbose=verbose)
        fit['beta'] = fit['beta'].reshape(-1, 1)
        return fit

    if isinstance(offsets, CompressedMatrix):
        exp_offsets = offsets.map(np.exp)
    else:
        exp_offsets = TransformedRowSource(offsets, np.exp)
    if beta_init is None:
        beta_init = np.zeros((ngenes, design.shape[1]))

    fitter = fit_fisher_scoring if method == 'fisher' else fit_diagonal_fisher_scoring
    return fitter(counts, design, exp_offsets, thetas, beta_init,
                  tolerance=tolerance, max_iter=max_iter, n_workers=n_workers,
                  cancel_token=cancel_token, verbose=verbose)
