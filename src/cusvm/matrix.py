"""Padded dense matrices and packed symmetric storage.

A :class:`Matrix` owns a zero-padded numpy buffer. The padding reserves
trailing rows and columns so compute kernels can work on whole blocks
without bounds checks on every access; the padding is kept at zero and is
never part of :attr:`Matrix.values`.

Two physical layouts are supported. ``aos`` ("array of structures") is
row-major, ``soa`` ("structure of arrays") is column-major. Both represent
the same mathematical matrix, backends choose whichever suits their access
pattern.

The packed helpers store the upper triangle of a symmetric ``n x n`` matrix
row by row. With ``p`` padding elements per row the entry ``(i, j)``,
``i <= j``, lives at ``i*(2n-i+1)/2 + (j-i) + p*i``.
"""

from enum import Enum
from typing import Iterable, Optional, Tuple

import numpy as np

from cusvm.exceptions import check_precondition


class LayoutType(Enum):
    """Physical storage order of a :class:`Matrix`."""
    aos = "aos"
    soa = "soa"

    @property
    def order(self) -> str:
        return "C" if self is LayoutType.aos else "F"


class Matrix:
    """A dense, padded, two-dimensional matrix.

    Parameters
    ----------
    num_rows, num_cols
        Logical shape.
    padding
        Extra trailing ``(rows, cols)`` reserved in storage.
    layout
        Storage order, ``LayoutType.aos`` or ``LayoutType.soa``.
    dtype
        Element type.
    fill
        Initial value of every logical element; padding is always zero.
    """

    def __init__(
        self,
        num_rows: int,
        num_cols: int,
        padding: Tuple[int, int] = (0, 0),
        layout: LayoutType = LayoutType.aos,
        dtype=np.float64,
        fill: float = 0.0,
    ) -> None:
        check_precondition(
            num_rows >= 0 and num_cols >= 0,
            f"Matrix shape must be non-negative, got ({num_rows}, "
            f"{num_cols})!",
        )
        padding = tuple(int(p) for p in padding)
        check_precondition(
            len(padding) == 2 and min(padding) >= 0,
            f"Padding must be two non-negative integers, got {padding}!",
        )
        self.layout = LayoutType(layout)
        self._shape = (int(num_rows), int(num_cols))
        self._padding = padding
        self.data = np.zeros(
            (num_rows + padding[0], num_cols + padding[1]),
            dtype=dtype,
            order=self.layout.order,
        )
        if fill != 0.0:
            self.values[...] = fill

    @classmethod
    def from_array(
        cls,
        array,
        padding: Tuple[int, int] = (0, 0),
        layout: LayoutType = LayoutType.aos,
        dtype=None,
    ) -> "Matrix":
        """Create a padded copy of a two-dimensional array-like."""
        array = np.asarray(array)
        if array.ndim == 1:
            array = array.reshape(1, -1)
        check_precondition(
            array.ndim == 2,
            f"Matrix data must be two-dimensional, got {array.ndim} "
            "dimensions!",
        )
        if dtype is None:
            dtype = array.dtype if array.dtype.kind == "f" else np.float64
        matrix = cls(
            array.shape[0], array.shape[1], padding, layout, dtype=dtype
        )
        matrix.values[...] = array
        return matrix

    @property
    def shape(self) -> Tuple[int, int]:
        return self._shape

    @property
    def num_rows(self) -> int:
        return self._shape[0]

    @property
    def num_cols(self) -> int:
        return self._shape[1]

    @property
    def padding(self) -> Tuple[int, int]:
        return self._padding

    @property
    def dtype(self) -> np.dtype:
        return self.data.dtype

    @property
    def empty(self) -> bool:
        return self.num_rows == 0 or self.num_cols == 0

    @property
    def values(self) -> np.ndarray:
        """Writable view of the logical (unpadded) entries."""
        return self.data[: self.num_rows, : self.num_cols]

    def copy(
        self,
        padding: Optional[Tuple[int, int]] = None,
        layout: Optional[LayoutType] = None,
        dtype=None,
    ) -> "Matrix":
        """Return a deep copy, optionally with new padding/layout/dtype."""
        return Matrix.from_array(
            self.values,
            padding=self.padding if padding is None else padding,
            layout=self.layout if layout is None else layout,
            dtype=self.dtype if dtype is None else dtype,
        )

    def assign(self, other: "Matrix") -> None:
        """Overwrite the logical entries with those of ``other``."""
        check_same_shape(self, other)
        self.values[...] = other.values

    def to_numpy(self) -> np.ndarray:
        """Return an unpadded, contiguous copy."""
        return np.array(self.values, order="C")

    def __getitem__(self, key):
        return self.values[key]

    def __setitem__(self, key, value):
        self.values[key] = value

    def __iadd__(self, other: "Matrix") -> "Matrix":
        check_same_shape(self, other)
        self.values[...] += other.values
        return self

    def __isub__(self, other: "Matrix") -> "Matrix":
        check_same_shape(self, other)
        self.values[...] -= other.values
        return self

    def __add__(self, other: "Matrix") -> "Matrix":
        result = self.copy()
        result += other
        return result

    def __sub__(self, other: "Matrix") -> "Matrix":
        result = self.copy()
        result -= other
        return result

    def __repr__(self) -> str:
        return (
            f"Matrix(shape={self.shape}, padding={self.padding}, "
            f"layout={self.layout.value}, dtype={self.dtype})"
        )


def check_same_shape(first: Matrix, second: Matrix) -> None:
    check_precondition(
        first.shape == second.shape,
        f"Shape mismatch: {first.shape} != {second.shape}!",
    )


def check_same_padding(matrices: Iterable[Matrix]) -> None:
    """Ensure all ``matrices`` share the same padding."""
    matrices = list(matrices)
    paddings = {m.padding for m in matrices}
    check_precondition(
        len(paddings) <= 1,
        f"Padding mismatch between cooperating matrices: {sorted(paddings)}!",
    )


# --------------------------------------------------------------------------- #
#                           Packed symmetric storage                          #
# --------------------------------------------------------------------------- #
def packed_size(n: int, padding: int = 0) -> int:
    """Number of elements of a packed upper triangle of order ``n``.

    The padding is counted as part of the order, i.e. the storage also
    covers the padded rows and columns.
    """
    m = n + padding
    return m * (m + 1) // 2


def packed_index(i: int, j: int, n: int, padding: int = 0) -> int:
    """Return the flat index of ``(i, j)`` in packed upper storage.

    Entries below the diagonal are redirected to their mirrored position,
    so every symmetric pair is stored exactly once. All arguments are
    promoted to ``int64`` first; compiled loops hand in unsigned ``prange``
    indices, and mixing those with signed integers yields a float index.
    """
    i = np.int64(i)
    j = np.int64(j)
    n = np.int64(n)
    padding = np.int64(padding)
    row = min(i, j)
    col = max(i, j)
    return row * (2 * n - row + 1) // 2 + (col - row) + padding * row


def pack_upper(dense, padding: int = 0, dtype=None) -> np.ndarray:
    """Pack the upper triangle of a square matrix.

    Raises
    ------
    PreconditionError
        If ``dense`` is not square.
    """
    dense = np.asarray(dense)
    check_precondition(
        dense.ndim == 2 and dense.shape[0] == dense.shape[1],
        f"Only square matrices can be packed, got shape {dense.shape}!",
    )
    n = dense.shape[0]
    packed = np.zeros(
        packed_size(n, padding),
        dtype=dense.dtype if dtype is None else dtype,
    )
    for row in range(n):
        start = packed_index(row, row, n, padding)
        packed[start:start + n - row] = dense[row, row:]
    return packed


def unpack_packed(packed: np.ndarray, n: int, padding: int = 0) -> np.ndarray:
    """Expand packed upper storage into a full, mirrored square matrix."""
    check_precondition(
        packed.shape[0] >= packed_size(n, padding),
        f"Packed storage holds {packed.shape[0]} elements, expected "
        f"{packed_size(n, padding)}!",
    )
    dense = np.zeros((n, n), dtype=packed.dtype)
    for row in range(n):
        start = packed_index(row, row, n, padding)
        dense[row, row:] = packed[start:start + n - row]
    upper = np.triu(dense, 1)
    return dense + upper.T
