"""
Row-wise access to count and offset matrices.

The solvers never hold a whole matrix: they pull one row at a time through
the :class:`RowSource` interface. Adapters cover dense arrays (including
``np.memmap``), scipy sparse matrices, compressed scalar / vector storage
(:class:`CompressedMatrix`, after edgeR's makeCompressedMatrix) and HDF5
datasets read in chunk-sized row blocks.
"""

import threading
from collections import OrderedDict

import numpy as np
import scipy.sparse as sp


class RowSource:
    """Read-only row-wise view of a ``n_genes x n_samples`` matrix.

    Subclasses implement :meth:`read_row` and set ``_dims``.
    """

    _dims = (0, 0)

    @property
    def shape(self):
        """Logical dimensions of the full matrix."""
        return self._dims

    @property
    def dtype(self):
        return np.dtype(np.float64)

    def row_count(self):
        return self._dims[0]

    def column_count(self):
        return self._dims[1]

    def read_row(self, index, out):
        """Copy row ``index`` into the length-``n_samples`` buffer ``out``."""
        raise NotImplementedError

    def _check_row(self, index, out):
        nr, nc = self._dims
        if index < 0 or index >= nr:
            raise IndexError(f"row index {index} out of range for {nr} rows")
        if out.shape != (nc,):
            raise ValueError(f"row buffer must have length {nc}")

    def __repr__(self):
        return f"{type(self).__name__}(shape={self._dims}, dtype={self.dtype})"


class DenseRowSource(RowSource):
    """Rows of an in-memory or memory-mapped 2-D array."""

    def __init__(self, x):
        if not isinstance(x, np.ndarray):
            x = np.asarray(x)
        if x.ndim != 2:
            raise ValueError("x must be a 2-D array")
        self._x = x
        self._dims = (int(x.shape[0]), int(x.shape[1]))

    @property
    def dtype(self):
        return self._x.dtype

    def read_row(self, index, out):
        self._check_row(index, out)
        out[:] = self._x[index]
        return out


class SparseRowSource(RowSource):
    """Rows of a scipy sparse matrix, stored as CSR.

    The matrix is copied and duplicate entries are summed, so each stored
    index appears once per row.
    """

    def __init__(self, x):
        self._x = sp.csr_matrix(x, copy=True)
        self._x.sum_duplicates()
        self._dims = (int(self._x.shape[0]), int(self._x.shape[1]))

    @property
    def dtype(self):
        return self._x.dtype

    def read_row(self, index, out):
        self._check_row(index, out)
        start, end = self._x.indptr[index], self._x.indptr[index + 1]
        out[:] = 0
        out[self._x.indices[start:end]] = self._x.data[start:end]
        return out


class CompressedMatrix(RowSource):
    """Memory-efficient matrix that stores repeated rows/columns compactly.

    A CompressedMatrix stores a scalar, row vector, column vector, or full
    matrix along with flags indicating which dimensions are repeated. The
    typical use is an offset matrix built from one size factor per sample.

    Parameters
    ----------
    x : scalar, 1-D array, or 2-D array
        The data to store.
    dims : tuple of (int, int), optional
        The logical dimensions (nrow, ncol) of the full matrix.
    byrow : bool
        If True (default), a 1-D vector is treated as a row to be repeated
        down rows. If False, treated as a column to be repeated across columns.
    """

    def __init__(self, x, dims=None, byrow=True):
        x = np.asarray(x, dtype=np.float64)
        self.repeat_row = False
        self.repeat_col = False

        if x.ndim == 2:
            self._data = x
            dims = x.shape
        elif x.ndim <= 1:
            x = x.ravel()
            if x.size == 1:
                self.repeat_row = True
                self.repeat_col = True
                self._data = x.reshape(1, 1)
                if dims is None:
                    dims = (1, 1)
            else:
                if dims is None:
                    raise ValueError("dims must be provided for vector input")
                if not byrow:
                    if dims[0] != x.size:
                        raise ValueError("dims[0] should equal length of x")
                    self._data = x.reshape(-1, 1)
                    self.repeat_col = True
                else:
                    if dims[1] != x.size:
                        raise ValueError("dims[1] should equal length of x")
                    self._data = x.reshape(1, -1)
                    self.repeat_row = True
        else:
            raise ValueError("x must be scalar, 1-D, or 2-D")

        self._dims = (int(dims[0]), int(dims[1]))

    @property
    def nrow(self):
        return self._dims[0]

    @property
    def ncol(self):
        return self._dims[1]

    def as_matrix(self):
        """Expand to a full numpy matrix."""
        nr, nc = self._dims
        if self.repeat_row and self.repeat_col:
            return np.full((nr, nc), self._data[0, 0])
        elif self.repeat_row:
            return np.tile(self._data, (nr, 1))
        elif self.repeat_col:
            return np.tile(self._data, (1, nc))
        else:
            return self._data.copy()

    def __array__(self, dtype=None, copy=None):
        result = self.as_matrix()
        if dtype is not None:
            result = result.astype(dtype)
        return result

    def map(self, func):
        """Apply an elementwise function to the stored values only."""
        result = CompressedMatrix.__new__(CompressedMatrix)
        result._data = np.asarray(func(self._data), dtype=np.float64)
        result._dims = self._dims
        result.repeat_row = self.repeat_row
        result.repeat_col = self.repeat_col
        return result

    def read_row(self, index, out):
        self._check_row(index, out)
        out[:] = self._data[0 if self.repeat_row else index]
        return out

    def __repr__(self):
        return (f"CompressedMatrix(shape={self._dims}, "
                f"repeat_row={self.repeat_row}, repeat_col={self.repeat_col}, "
                f"stored_shape={self._data.shape})")


class HDF5RowSource(RowSource):
    """Rows of a 2-D HDF5 dataset, read a block of rows at a time.

    The block height follows the dataset's chunk layout so each read
    touches whole chunks. The most recently used blocks are kept in a
    small cache shared by all threads, so workers fitting rows from
    different chunks do not evict each other's block.

    Parameters
    ----------
    dataset : h5py.Dataset
        A 2-D dataset (genes x samples).
    block_rows : int, optional
        Rows per cached block. Defaults to the chunk height, or 256 for
        contiguous datasets.
    cache_blocks : int
        Number of blocks kept in memory. Should be at least twice the
        number of worker threads.
    """

    def __init__(self, dataset, block_rows=None, cache_blocks=8):
        if len(dataset.shape) != 2:
            raise ValueError("dataset must be 2-D")
        self._dataset = dataset
        self._file = None
        self._dims = (int(dataset.shape[0]), int(dataset.shape[1]))
        if block_rows is None:
            block_rows = dataset.chunks[0] if dataset.chunks else 256
        self._block_rows = max(1, int(block_rows))
        self._cache_blocks = max(1, int(cache_blocks))
        self._blocks = OrderedDict()
        self._lock = threading.Lock()

    @classmethod
    def open(cls, path, name, block_rows=None, cache_blocks=8):
        """Open ``name`` inside the HDF5 file at ``path``."""
        try:
            import h5py
        except ImportError:
            raise ImportError(
                "h5py package required for HDF5 row sources. "
                "Install with: pip install h5py"
            )
        f = h5py.File(path, 'r')
        source = cls(f[name], block_rows=block_rows, cache_blocks=cache_blocks)
        source._file = f
        return source

    def close(self):
        self._blocks.clear()
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    @property
    def dtype(self):
        return self._dataset.dtype

    def read_row(self, index, out):
        self._check_row(index, out)
        start = (index // self._block_rows) * self._block_rows
        # the lock also covers the dataset read
        with self._lock:
            block = self._blocks.get(start)
            if block is None:
                stop = min(start + self._block_rows, self._dims[0])
                block = self._dataset[start:stop]
                self._blocks[start] = block
                if len(self._blocks) > self._cache_blocks:
                    self._blocks.popitem(last=False)
            else:
                self._blocks.move_to_end(start)
            out[:] = block[index - start]
        return out


class TransformedRowSource(RowSource):
    """Apply an elementwise function to each row of another source."""

    def __init__(self, source, func):
        self._source = source
        self._func = func
        self._dims = source.shape

    def read_row(self, index, out):
        raw = np.empty(self._dims[1], dtype=self._source.dtype)
        self._source.read_row(index, raw)
        out[:] = self._func(raw)
        return out


def _is_h5py_dataset(x):
    return type(x).__module__.startswith('h5py') and hasattr(x, 'chunks')


def as_row_source(x, shape=None, byrow=True):
    """Wrap ``x`` in a :class:`RowSource`.

    Parameters
    ----------
    x : RowSource, ndarray, scipy sparse matrix, h5py.Dataset, scalar or vector
        Scalars and 1-D vectors become a :class:`CompressedMatrix`; by
        default a vector holds one value per sample, repeated down rows.
    shape : tuple of (int, int), optional
        Required logical shape. Needed for scalars and vectors.
    byrow : bool
        How a vector is repeated, see :class:`CompressedMatrix`.
    """
    if isinstance(x, RowSource):
        source = x
    elif sp.issparse(x):
        source = SparseRowSource(x)
    elif _is_h5py_dataset(x):
        source = HDF5RowSource(x)
    else:
        arr = x if isinstance(x, np.ndarray) else np.asarray(x)
        if arr.ndim == 2:
            source = DenseRowSource(arr)
        elif arr.ndim <= 1:
            if shape is None and arr.size != 1:
                raise ValueError("shape must be provided for vector input")
            source = CompressedMatrix(arr, dims=shape, byrow=byrow)
        else:
            raise ValueError("x must be scalar, 1-D, or 2-D")
    if shape is not None and tuple(source.shape) != tuple(shape):
        raise ValueError(f"expected a {shape[0]} x {shape[1]} matrix, "
                         f"got {source.shape[0]} x {source.shape[1]}")
    return source
