"""
Configuration for gampoi.

Numerical constants shared by the solvers, and the default number of
worker threads used by the batch fitters.

The worker count resolves in this order (first match wins):

1. Programmatic override via :func:`set_num_workers`.
2. The ``GAMPOI_NUM_WORKERS`` environment variable.
3. ``1`` (sequential).

Examples
--------
Use four threads for every batch fit from the shell::

    export GAMPOI_NUM_WORKERS=4

Or programmatically::

    import gampoi
    gampoi.set_num_workers(4)

Restore the default resolution order::

    gampoi.set_num_workers("auto")
"""

import operator
import os

# Fitted means are kept inside this range after every update.
MU_LOWER = 1e-50
MU_UPPER = 1e50

# Below this dispersion the Poisson deviance is used.
POISSON_THETA = 1e-6

# Line search
MAX_LINE_SEARCH = 100
MIN_SPEEDING_FACTOR = 1e-6

# Rows per block; cancellation is polled once per block.
CHECK_INTERVAL = 100

_ENV_VAR = "GAMPOI_NUM_WORKERS"

_num_workers_override = None


def _parse_num_workers(value):
    """Positive integer worker count from an int or a decimal string.

    Bools, floats and other non-integral values are rejected.
    """
    message = f"number of workers must be a positive integer, got {value!r}"
    if isinstance(value, bool):
        raise ValueError(message)
    if isinstance(value, str):
        try:
            n = int(value.strip())
        except ValueError:
            raise ValueError(message)
    else:
        try:
            n = operator.index(value)
        except TypeError:
            raise ValueError(message)
    if n < 1:
        raise ValueError(message)
    return int(n)


def get_num_workers():
    """Return the default number of worker threads for batch fits.

    Raises
    ------
    ValueError
        If ``GAMPOI_NUM_WORKERS`` is set to something that is not a
        positive integer.
    """
    if _num_workers_override is not None:
        return _num_workers_override

    env = os.environ.get(_ENV_VAR, "").strip()
    if env:
        return _parse_num_workers(env)

    return 1


def set_num_workers(n):
    """Override the default number of worker threads.

    Parameters
    ----------
    n : int or str
        A positive integer, or ``"auto"`` to clear the override and go
        back to the environment variable / default.
    """
    global _num_workers_override
    if isinstance(n, str) and n.strip().lower() == "auto":
        _num_workers_override = None
        return
    _num_workers_override = _parse_num_workers(n)
