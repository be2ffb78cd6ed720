"""
Exceptions and warnings raised by gampoi.

Row-level numerical failure is not an exception: a diverged row is
reported through its status tag and a NaN coefficient vector. The classes
here cover the conditions that stop a batch (bad element type,
cancellation) and the summary warning emitted after a batch.
"""


class UnsupportedElementTypeError(TypeError):
    """Counts are neither integer nor real valued."""

    def __init__(self, dtype):
        self.dtype = dtype
        super().__init__(
            f"unsupported count element type '{dtype}': "
            "counts must be integer or real valued")


class FitCancelledError(RuntimeError):
    """A batch fit was cancelled at a row-block checkpoint.

    ``result`` holds the partial :class:`~gampoi.classes.BetaFit`: rows
    fitted before the checkpoint are final, the rest keep their starting
    values and the ``NOT_FITTED`` status.
    """

    def __init__(self, result, row):
        self.result = result
        self.row = row
        super().__init__(f"fit cancelled before row {row}")


class FitDivergenceWarning(RuntimeWarning):
    """Some rows diverged or stopped at the iteration limit."""
