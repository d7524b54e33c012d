"""Elimination of the bias row and column of the LS-SVM system.

The last data point is used as anchor. Its kernel values against all
other points form ``q``; its self-similarity plus the regularization term
``1 / cost`` forms ``QA_cost``. Both are folded into the reduced kernel
matrix by the assembly.
"""

from typing import Callable, Optional, Tuple

import attrs
import numpy as np
from attrs import field
from numba import njit, prange

from cusvm.JITFactory import JITCache, JITFactory
from cusvm._utils import PrecisionDType
from cusvm.exceptions import check_precondition
from cusvm.kernels.kernel_functions import (
    KernelFunction,
    KernelFunctionConfig,
    kernel_function,
    kernel_settings,
)
from cusvm.matrix import Matrix
from cusvm.parameter import Parameter
from cusvm.time_logger import TimeLogger


@attrs.define
class DimensionalReductionCache(JITCache):
    """Compiled reduction.

    Attributes
    ----------
    compute_q : callable
        ``compute_q(data, num_rows, num_features, q)`` with ``num_rows``
        the number of reduced points; row ``num_rows`` of ``data`` is the
        anchor.
    """

    compute_q: Callable = field(eq=False)


class DimensionalReduction(JITFactory):
    """Factory for the parallel computation of ``q`` on the host."""

    def __init__(self, precision: PrecisionDType, params: Parameter) -> None:
        super().__init__()
        self.kernel_function = KernelFunction(precision, params, "cpu")
        self.setup_compile_settings(
            KernelFunctionConfig(
                precision=precision, target="cpu", **kernel_settings(params)
            )
        )

    def update(self, params: Parameter) -> None:
        self.kernel_function.update(params)
        self.update_compile_settings(kernel_settings(params))

    def build(self) -> DimensionalReductionCache:
        kernel_entry = self.kernel_function.kernel_entry

        # no cover: start
        @njit(parallel=True)
        def compute_q(data, num_rows, num_features, q):
            for i in prange(num_rows):
                q[i] = kernel_entry(data, i, data, num_rows, num_features)
        # no cover: end

        return DimensionalReductionCache(compute_q=compute_q)

    @property
    def compute_q(self) -> Callable:
        return self.get_cached_output("compute_q")


def perform_dimensional_reduction(
    params: Parameter,
    A,
    logger: Optional[TimeLogger] = None,
    reduction: Optional[DimensionalReduction] = None,
) -> Tuple[np.ndarray, float]:
    """Compute the reduction vector ``q`` and the scalar ``QA_cost``.

    Parameters
    ----------
    params
        Kernel parameters, gamma must be resolved for kernels reading it.
    A
        Data matrix, one data point per row. The last row is the anchor.
    logger
        Receives the ``cg/dimensional_reduction`` timing entry.
    reduction
        Compiled reduction to reuse. A new one is built when omitted or
        when its precision differs from the data.

    Returns
    -------
    tuple[ndarray, float]
        ``q`` with one entry per reduced point, and ``QA_cost``.

    Raises
    ------
    PreconditionError
        If ``A`` has no rows or no features.
    """
    if isinstance(A, Matrix):
        data = A.to_numpy()
    else:
        data = np.asarray(A)
    check_precondition(
        data.ndim == 2 and data.shape[0] > 0 and data.shape[1] > 0,
        "The data matrix must not be empty!",
    )
    params.sanity_check()
    if data.dtype.kind != "f":
        data = data.astype(np.float64)
    data = np.ascontiguousarray(data)
    precision = data.dtype.type

    if logger is not None:
        logger.start_event("dimensional_reduction")
    num_rows, num_features = data.shape[0] - 1, data.shape[1]
    q = np.zeros(num_rows, dtype=precision)
    if num_rows > 0:
        if reduction is None or reduction.precision is not precision:
            reduction = DimensionalReduction(precision, params)
        else:
            reduction.update(params)
        reduction.compute_q(data, num_rows, num_features, q)
    QA_cost = (kernel_function(data[-1], data[-1], params)
               + 1.0 / params.cost)
    if logger is not None:
        duration = logger.stop_event("dimensional_reduction")
        logger.add_entry("cg", "dimensional_reduction", duration)
    return q, QA_cost
