"""Row-wise algebra on :class:`~cusvm.matrix.Matrix` objects.

Each row of the CG matrices holds one right-hand side, so every reduction
and scaling here acts per row.
"""

import numpy as np

from cusvm.exceptions import check_precondition
from cusvm.matrix import Matrix, check_same_shape


def rowwise_dot(first: Matrix, second: Matrix) -> np.ndarray:
    """Return the dot product of every row of ``first`` with ``second``."""
    check_same_shape(first, second)
    return np.einsum("ij,ij->i", first.values, second.values)


def _check_row_vector(vector: np.ndarray, matrix: Matrix) -> np.ndarray:
    vector = np.asarray(vector)
    check_precondition(
        vector.shape == (matrix.num_rows,),
        f"Expected one value per row ({matrix.num_rows}), got shape "
        f"{vector.shape}!",
    )
    return vector


def rowwise_scale(scale: np.ndarray, matrix: Matrix) -> Matrix:
    """Return a copy of ``matrix`` with row ``i`` multiplied by ``scale[i]``."""
    scale = _check_row_vector(scale, matrix)
    result = matrix.copy()
    result.values[...] *= scale[:, np.newaxis]
    return result


def masked_rowwise_scale(
    mask: np.ndarray, scale: np.ndarray, matrix: Matrix
) -> Matrix:
    """Like :func:`rowwise_scale`, but rows with a false mask become zero.

    Masked rows are selected rather than multiplied by zero, so non-finite
    scales of excluded rows cannot leak into the result.
    """
    mask = _check_row_vector(mask, matrix).astype(bool)
    scale = _check_row_vector(scale, matrix)
    result = Matrix(
        matrix.num_rows,
        matrix.num_cols,
        padding=matrix.padding,
        layout=matrix.layout,
        dtype=matrix.dtype,
    )
    result.values[mask] = matrix.values[mask] * scale[mask, np.newaxis]
    return result
