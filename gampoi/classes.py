"""
Result containers for gampoi.

Fits are returned as dicts with attribute access, so both
``fit['beta']`` and ``fit.beta`` work. Every row carries an explicit
:class:`FitStatus` next to its numeric coefficients.
"""

from enum import IntEnum

import numpy as np
import pandas as pd


class FitStatus(IntEnum):
    """Outcome of one row's fit."""

    NOT_FITTED = 0
    CONVERGED = 1
    MAX_ITER = 2
    DIVERGED = 3
    ALL_ZERO = 4


class _GampoiBase(dict):
    """Base class providing dict-like access with attribute lookup."""

    def __getattr__(self, name):
        try:
            return self[name]
        except KeyError:
            raise AttributeError(f"'{type(self).__name__}' has no attribute '{name}'")

    def __setattr__(self, name, value):
        self[name] = value

    def __delattr__(self, name):
        try:
            del self[name]
        except KeyError:
            raise AttributeError(f"'{type(self).__name__}' has no attribute '{name}'")


class BetaFit(_GampoiBase):
    """Coefficients fitted row by row.

    Keys
    ----
    beta : ndarray
        ``n_genes x p`` coefficients (``n_genes`` for one-group fits),
        natural-log scale. NaN for diverged rows, ``-inf`` for all-zero
        rows of a one-group fit.
    iter : ndarray of int
        Iterations used per row.
    deviance : ndarray
        Deviance at the final coefficients (NaN when diverged or not
        fitted).
    status : ndarray of int
        :class:`FitStatus` code per row.
    method : str
        Solver used.
    """

    @property
    def shape(self):
        return np.shape(self['beta'])

    @property
    def converged(self):
        """Boolean mask of rows that met the tolerance."""
        return self['status'] == FitStatus.CONVERGED

    def summary(self):
        """Number of rows per status."""
        codes = np.asarray(self['status'])
        return {s.name: int(np.sum(codes == s)) for s in FitStatus}

    def to_frame(self, row_names=None, coef_names=None):
        """One row per gene: coefficients, iterations, deviance, status."""
        beta = np.asarray(self['beta'])
        if beta.ndim == 1:
            beta = beta.reshape(-1, 1)
        if coef_names is None:
            coef_names = [f"beta{j}" for j in range(beta.shape[1])]
        df = pd.DataFrame(beta, index=row_names, columns=list(coef_names))
        df['iter'] = self['iter']
        df['deviance'] = self['deviance']
        df['status'] = [FitStatus(s).name for s in self['status']]
        return df

    def head(self, n=5):
        """Show first n rows."""
        return self.to_frame().head(n)

    def __repr__(self):
        counts = ", ".join(f"{k.lower()}={v}" for k, v in self.summary().items() if v)
        return (f"{type(self).__name__} ({self.get('method')}) with "
                f"{len(self['status'])} rows\nStatus: {counts}")
