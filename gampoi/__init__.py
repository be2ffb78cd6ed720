"""
gampoi: row-wise Gamma-Poisson (negative binomial) GLM fitting.

Fits the coefficients of a log-link negative binomial GLM independently
for every row of a count matrix, by Fisher scoring with a deviance line
search, its diagonal-information variant, or Newton-Raphson for
intercept-only designs.
"""

__version__ = "0.1.0"

# --- Configuration ---
from ._config import get_num_workers, set_num_workers

# --- Results & errors ---
from .classes import BetaFit, FitStatus
from .errors import (UnsupportedElementTypeError, FitCancelledError,
                     FitDivergenceWarning)

# --- Deviance ---
from .deviance import compute_gp_deviance, unit_deviance, row_deviance, deviance_matrix

# --- Row sources ---
from .row_source import (
    RowSource,
    DenseRowSource,
    SparseRowSource,
    CompressedMatrix,
    HDF5RowSource,
    TransformedRowSource,
    as_row_source,
)

# --- Per-row solvers ---
from .fisher_scoring import fisher_scoring_row, diagonal_fisher_scoring_row
from .one_group import one_group_row
from .utils import clamp_inplace

# --- Batch fitting ---
from .beta_fit import (
    CancellationToken,
    fit_beta,
    fit_fisher_scoring,
    fit_diagonal_fisher_scoring,
    fit_one_group,
)
