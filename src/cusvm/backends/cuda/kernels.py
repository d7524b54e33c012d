"""CUDA kernels of the GPU backend.

The explicit assembly tiles the feature dimension through shared memory.
Each ``THREAD_BLOCK_SIZE x THREAD_BLOCK_SIZE`` block computes one tile of
the kernel matrix; blocks strictly below the block diagonal return
immediately, so only the upper triangle is ever evaluated.
"""

from typing import Callable

import attrs
import numpy as np
from attrs import field
from numba import cuda

from cusvm.JITFactory import JITCache, JITFactory, target_jit
from cusvm._utils import PrecisionDType
from cusvm.constants import FEATURE_BLOCK_SIZE, THREAD_BLOCK_SIZE
from cusvm.cuda_simsafe import from_dtype
from cusvm.kernels.kernel_functions import (
    KernelFunction,
    KernelFunctionConfig,
    kernel_settings,
)
from cusvm.matrix import packed_index
from cusvm.parameter import Parameter


@attrs.define
class CUDAKernelsCache(JITCache):
    """Compiled CUDA kernels.

    Attributes
    ----------
    assemble_explicit : callable
        2D launch, ``(packed, data, num_rows, num_features, q, QA_cost,
        cost, padding)``.
    symm_explicit : callable
        1D launch over ``num_rhs * num_rows`` threads.
    symm_implicit : callable
        1D launch over ``num_rhs * num_rows`` threads.
    implicit_diagonal : callable
        1D launch over ``num_rows`` threads.
    predict : callable
        1D launch over the predicted points.
    cholesky_diagonal : callable
        Single thread launch finishing ``U(r, r)``.
    cholesky_row : callable
        1D launch over the columns right of the diagonal of row ``r``.
    cholesky_apply : callable
        1D launch over the right-hand sides.
    jacobi_apply : callable
        1D launch over ``num_rhs * num_rows`` threads.
    """

    assemble_explicit: Callable = field(eq=False)
    symm_explicit: Callable = field(eq=False)
    symm_implicit: Callable = field(eq=False)
    implicit_diagonal: Callable = field(eq=False)
    predict: Callable = field(eq=False)
    cholesky_diagonal: Callable = field(eq=False)
    cholesky_row: Callable = field(eq=False)
    cholesky_apply: Callable = field(eq=False)
    jacobi_apply: Callable = field(eq=False)


class CUDAKernels(JITFactory):
    """Factory for all kernels launched by the CUDA backend."""

    def __init__(self, precision: PrecisionDType, params: Parameter) -> None:
        super().__init__()
        self.kernel_function = KernelFunction(precision, params, "cuda")
        self.setup_compile_settings(
            KernelFunctionConfig(
                precision=precision, target="cuda", **kernel_settings(params)
            )
        )

    def update(self, params: Parameter) -> None:
        self.kernel_function.update(params)
        self.update_compile_settings(kernel_settings(params))

    def build(self) -> CUDAKernelsCache:
        precision = self.precision
        numba_precision = from_dtype(np.dtype(precision))
        zero = precision(0.0)
        feature_reduce = self.kernel_function.feature_reduce
        apply_kernel = self.kernel_function.apply_kernel
        kernel_entry = self.kernel_function.kernel_entry
        idx = target_jit("cuda")(packed_index)
        tb = THREAD_BLOCK_SIZE
        fb = FEATURE_BLOCK_SIZE

        # no cover: start
        @cuda.jit
        def assemble_explicit(packed, data, num_rows, num_features, q,
                              QA_cost, cost, padding):
            tx = cuda.threadIdx.x
            ty = cuda.threadIdx.y
            bx = cuda.blockIdx.x
            by = cuda.blockIdx.y
            if bx < by:
                return
            i = bx * tb + tx
            j = by * tb + ty
            data_i = cuda.shared.array((fb, tb), dtype=numba_precision)
            data_j = cuda.shared.array((fb, tb), dtype=numba_precision)

            temp = zero
            for f_start in range(0, num_features, fb):
                # padding keeps these loads in bounds
                data_i[ty, tx] = data[bx * tb + tx, f_start + ty]
                data_j[ty, tx] = data[by * tb + tx, f_start + ty]
                cuda.syncthreads()
                for f in range(fb):
                    temp += feature_reduce(data_i[f, tx], data_j[f, ty])
                cuda.syncthreads()

            if i < num_rows and j < num_rows and i >= j:
                temp = apply_kernel(temp) + QA_cost - q[i] - q[j]
                if i == j:
                    temp += cost
                packed[idx(j, i, num_rows, padding)] = temp

        @cuda.jit
        def symm_explicit(alpha, packed, num_rows, padding, B, beta, C,
                          num_rhs):
            t = cuda.grid(1)
            if t >= num_rhs * num_rows:
                return
            rhs = t // num_rows
            i = t % num_rows
            temp = zero
            for j in range(num_rows):
                temp += packed[idx(i, j, num_rows, padding)] * B[rhs, j]
            C[rhs, i] = alpha * temp + beta * C[rhs, i]

        @cuda.jit
        def symm_implicit(alpha, data, num_rows, num_features, q, QA_cost,
                          cost, B, beta, C, num_rhs):
            t = cuda.grid(1)
            if t >= num_rhs * num_rows:
                return
            rhs = t // num_rows
            i = t % num_rows
            temp = zero
            for j in range(num_rows):
                a_ij = (kernel_entry(data, i, data, j, num_features)
                        + QA_cost - q[i] - q[j])
                if i == j:
                    a_ij += cost
                temp += a_ij * B[rhs, j]
            C[rhs, i] = alpha * temp + beta * C[rhs, i]

        @cuda.jit
        def implicit_diagonal(data, num_rows, num_features, q, QA_cost, cost,
                              out):
            i = cuda.grid(1)
            if i < num_rows:
                out[i] = (kernel_entry(data, i, data, i, num_features)
                          + QA_cost - 2 * q[i] + cost)

        @cuda.jit
        def predict(support_vectors, num_sv, num_features, alpha, rho,
                    points, num_points, out):
            p = cuda.grid(1)
            if p >= num_points:
                return
            num_rhs = alpha.shape[0]
            for rhs in range(num_rhs):
                out[rhs, p] = -rho[rhs]
            for s in range(num_sv):
                k = kernel_entry(support_vectors, s, points, p, num_features)
                for rhs in range(num_rhs):
                    out[rhs, p] += alpha[rhs, s] * k

        @cuda.jit
        def cholesky_diagonal(packed, factor, r, num_rows, padding):
            if cuda.grid(1) != 0:
                return
            diag = packed[idx(r, r, num_rows, padding)]
            for k in range(r):
                u_kr = factor[idx(k, r, num_rows, padding)]
                diag -= u_kr * u_kr
            factor[idx(r, r, num_rows, padding)] = diag ** 0.5

        @cuda.jit
        def cholesky_row(packed, factor, r, num_rows, padding):
            c = r + 1 + cuda.grid(1)
            if c >= num_rows:
                return
            temp = packed[idx(r, c, num_rows, padding)]
            for k in range(r):
                temp -= (factor[idx(k, r, num_rows, padding)]
                         * factor[idx(k, c, num_rows, padding)])
            factor[idx(r, c, num_rows, padding)] = (
                temp / factor[idx(r, r, num_rows, padding)]
            )

        @cuda.jit
        def cholesky_apply(factor, num_rows, padding, R, Y, S, num_rhs):
            rhs = cuda.grid(1)
            if rhs >= num_rhs:
                return
            for i in range(num_rows):
                temp = R[rhs, i]
                for k in range(i):
                    temp -= factor[idx(k, i, num_rows, padding)] * Y[rhs, k]
                Y[rhs, i] = temp / factor[idx(i, i, num_rows, padding)]
            for i in range(num_rows - 1, -1, -1):
                temp = Y[rhs, i]
                for k in range(i + 1, num_rows):
                    temp -= factor[idx(i, k, num_rows, padding)] * S[rhs, k]
                S[rhs, i] = temp / factor[idx(i, i, num_rows, padding)]

        @cuda.jit
        def jacobi_apply(diagonal, num_rows, R, S, num_rhs):
            t = cuda.grid(1)
            if t >= num_rhs * num_rows:
                return
            rhs = t // num_rows
            i = t % num_rows
            S[rhs, i] = R[rhs, i] / diagonal[i]
        # no cover: end

        return CUDAKernelsCache(
            assemble_explicit=assemble_explicit,
            symm_explicit=symm_explicit,
            symm_implicit=symm_implicit,
            implicit_diagonal=implicit_diagonal,
            predict=predict,
            cholesky_diagonal=cholesky_diagonal,
            cholesky_row=cholesky_row,
            cholesky_apply=cholesky_apply,
            jacobi_apply=jacobi_apply,
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

    @property
    def cholesky_diagonal(self) -> Callable:
        return self.get_cached_output("cholesky_diagonal")

    @property
    def cholesky_row(self) -> Callable:
        return self.get_cached_output("cholesky_row")

    @property
    def cholesky_apply(self) -> Callable:
        return self.get_cached_output("cholesky_apply")

    @property
    def jacobi_apply(self) -> Callable:
        return self.get_cached_output("jacobi_apply")
