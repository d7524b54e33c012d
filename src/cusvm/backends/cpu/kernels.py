"""Parallel CPU kernels compiled with :func:`numba.njit`.

All loops that write disjoint outputs run under ``prange``. The kernel
function itself comes from :class:`cusvm.kernels.KernelFunction`, so the
assembly, the implicit multiply and prediction share one compiled family.
"""

import math
from typing import Callable

import attrs
import numpy as np
from attrs import field
from numba import njit, prange

from cusvm.JITFactory import JITCache, JITFactory, target_jit
from cusvm._utils import PrecisionDType
from cusvm.kernels.kernel_functions import (
    KernelFunction,
    KernelFunctionConfig,
    kernel_settings,
)
from cusvm.matrix import packed_index
from cusvm.parameter import Parameter


@attrs.define
class CPUKernelsCache(JITCache):
    """Compiled CPU kernels.

    Attributes
    ----------
    assemble_explicit : callable
        ``(data, num_rows, num_features, q, QA_cost, cost, padding, packed)``
        writes the packed upper triangle of the reduced kernel matrix.
    symm_explicit : callable
        ``(alpha, packed, num_rows, padding, B, beta, C, num_rhs)``.
    symm_implicit : callable
        ``(alpha, data, num_rows, num_features, q, QA_cost, cost, B, beta,
        C, num_rhs)``.
    implicit_diagonal : callable
        ``(data, num_rows, num_features, q, QA_cost, cost, out)``.
    predict : callable
        ``(support_vectors, num_sv, num_features, alpha, rho, points,
        num_points, out)``.
    """

    assemble_explicit: Callable = field(eq=False)
    symm_explicit: Callable = field(eq=False)
    symm_implicit: Callable = field(eq=False)
    implicit_diagonal: Callable = field(eq=False)
    predict: Callable = field(eq=False)


class CPUKernels(JITFactory):
    """Factory for the kernel-dependent CPU kernels."""

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

    def build(self) -> CPUKernelsCache:
        precision = self.precision
        zero = precision(0.0)
        kernel_entry = self.kernel_function.kernel_entry
        idx = target_jit("cpu")(packed_index)

        # no cover: start
        @njit(parallel=True)
        def assemble_explicit(data, num_rows, num_features, q, QA_cost, cost,
                              padding, packed):
            for i in prange(num_rows):
                for j in range(i, num_rows):
                    temp = (kernel_entry(data, i, data, j, num_features)
                            + QA_cost - q[i] - q[j])
                    if i == j:
                        temp += cost
                    packed[idx(i, j, num_rows, padding)] = temp

        @njit(parallel=True)
        def symm_explicit(alpha, packed, num_rows, padding, B, beta, C,
                          num_rhs):
            for i in prange(num_rows):
                for rhs in range(num_rhs):
                    temp = zero
                    for j in range(num_rows):
                        temp += packed[idx(i, j, num_rows, padding)] * B[rhs, j]
                    C[rhs, i] = alpha * temp + beta * C[rhs, i]

        @njit(parallel=True)
        def symm_implicit(alpha, data, num_rows, num_features, q, QA_cost,
                          cost, B, beta, C, num_rhs):
            for i in prange(num_rows):
                temp = np.zeros(num_rhs, dtype=precision)
                for j in range(num_rows):
                    a_ij = (kernel_entry(data, i, data, j, num_features)
                            + QA_cost - q[i] - q[j])
                    if i == j:
                        a_ij += cost
                    for rhs in range(num_rhs):
                        temp[rhs] += a_ij * B[rhs, j]
                for rhs in range(num_rhs):
                    C[rhs, i] = alpha * temp[rhs] + beta * C[rhs, i]

        @njit(parallel=True)
        def implicit_diagonal(data, num_rows, num_features, q, QA_cost, cost,
                              out):
            for i in prange(num_rows):
                out[i] = (kernel_entry(data, i, data, i, num_features)
                          + QA_cost - 2 * q[i] + cost)

        @njit(parallel=True)
        def predict(support_vectors, num_sv, num_features, alpha, rho, points,
                    num_points, out):
            num_rhs = alpha.shape[0]
            for p in prange(num_points):
                for rhs in range(num_rhs):
                    out[rhs, p] = -rho[rhs]
                for s in range(num_sv):
                    k = kernel_entry(support_vectors, s, points, p,
                                     num_features)
                    for rhs in range(num_rhs):
                        out[rhs, p] += alpha[rhs, s] * k
        # no cover: end

        return CPUKernelsCache(
            assemble_explicit=assemble_explicit,
            symm_explicit=symm_explicit,
            symm_implicit=symm_implicit,
            implicit_diagonal=implicit_diagonal,
            predict=predict,
        )

    @property
    def assemble_explicit(self) -> Callable:
        return self.get_cached_output("assemble_explicit")

    @property
    def symm_explicit(self) -> Callable:
        return self.get_cached_output("symm_explicit")

    @property
    def symm_implicit(self) -> Callable:
        return self.get_cached_output("symm_implicit")

    @property
    def implicit_diagonal(self) -> Callable:
        return self.get_cached_output("implicit_diagonal")

    @property
    def predict(self) -> Callable:
        return self.get_cached_output("predict")


# --------------------------------------------------------------------------- #
#            Kernel independent routines, compiled once per process           #
# --------------------------------------------------------------------------- #
_packed_index = njit(inline="always")(packed_index)


@njit(parallel=True)
def cholesky_factor(packed, num_rows, padding, factor):
    """Write the upper Cholesky factor of ``packed`` into ``factor``.

    Rows are processed in order. Within a row the diagonal is finished
    first, the remaining columns only depend on it and on earlier rows.
    """
    for r in range(num_rows):
        diag = packed[_packed_index(r, r, num_rows, padding)]
        for k in range(r):
            u_kr = factor[_packed_index(k, r, num_rows, padding)]
            diag -= u_kr * u_kr
        diag = math.sqrt(diag)
        factor[_packed_index(r, r, num_rows, padding)] = diag
        for c in prange(r + 1, num_rows):
            temp = packed[_packed_index(r, c, num_rows, padding)]
            for k in range(r):
                temp -= (factor[_packed_index(k, r, num_rows, padding)]
                         * factor[_packed_index(k, c, num_rows, padding)])
            factor[_packed_index(r, c, num_rows, padding)] = temp / diag


@njit(parallel=True)
def cholesky_apply(factor, num_rows, padding, R, S, num_rhs):
    """Solve ``U^T y = r`` then ``U s = y`` for every row of ``R``."""
    for rhs in prange(num_rhs):
        y = np.empty_like(R[rhs])
        for i in range(num_rows):
            temp = R[rhs, i]
            for k in range(i):
                temp -= factor[_packed_index(k, i, num_rows, padding)] * y[k]
            y[i] = temp / factor[_packed_index(i, i, num_rows, padding)]
        for i in range(num_rows - 1, -1, -1):
            temp = y[i]
            for k in range(i + 1, num_rows):
                temp -= (factor[_packed_index(i, k, num_rows, padding)]
                         * S[rhs, k])
            S[rhs, i] = temp / factor[_packed_index(i, i, num_rows, padding)]


@njit(parallel=True)
def jacobi_apply(diagonal, num_rows, R, S, num_rhs):
    for rhs in prange(num_rhs):
        for i in range(num_rows):
            S[rhs, i] = R[rhs, i] / diagonal[i]
