"""Shared-memory multicore backend built on numba's parallel ``njit``."""

from typing import Optional

import numpy as np
import psutil

from cusvm._utils import PrecisionDType
from cusvm.backends.base import Backend
from cusvm.backends.cpu.kernels import (
    CPUKernels,
    cholesky_apply,
    cholesky_factor,
    jacobi_apply,
)
from cusvm.backends.handles import (
    ExplicitKernelMatrix,
    ImplicitKernelMatrix,
    PreconditionerHandle,
)
from cusvm.matrix import LayoutType, Matrix, packed_size
from cusvm.parameter import KernelFunctionType, Parameter
from cusvm.time_logger import TimeLogger


class CPUBackend(Backend):
    """Backend running all primitives on the host CPU cores."""

    name = "cpu"
    layout = LayoutType.aos

    def __init__(
        self,
        precision: PrecisionDType = np.float64,
        mem_proportion: float = 0.9,
        logger: Optional[TimeLogger] = None,
    ) -> None:
        super().__init__(precision, mem_proportion, logger)
        self._kernels = None

    def kernels(self, params: Parameter) -> CPUKernels:
        """Return the compiled kernels for ``params``."""
        if self._kernels is None:
            self._kernels = CPUKernels(self.precision, params)
        else:
            self._kernels.update(params)
        return self._kernels

    def available_memory(self) -> int:
        return int(psutil.virtual_memory().available)

    def _to_backend(self, array: np.ndarray) -> np.ndarray:
        return np.ascontiguousarray(array, dtype=self.precision)

    def _to_host(self, array) -> np.ndarray:
        return np.asarray(array)

    def _prepare_data(self, data: Matrix) -> np.ndarray:
        return data.data

    def _assemble_explicit(self, data, num_rows, num_features, q, QA_cost,
                           cost, params, padding):
        packed = np.zeros(packed_size(num_rows, padding), dtype=self.precision)
        self.kernels(params).assemble_explicit(
            data, num_rows, num_features, q, QA_cost, cost, padding, packed
        )
        return packed

    def _symm_explicit(self, alpha, handle: ExplicitKernelMatrix, B: Matrix,
                       beta, C: Matrix) -> None:
        # the explicit multiply does not depend on the kernel function
        cpu_kernels = self._kernels
        if cpu_kernels is None:
            cpu_kernels = self.kernels(Parameter())
        cpu_kernels.symm_explicit(
            alpha, handle.packed, handle.num_rows, handle.padding, B.data,
            beta, C.data, B.num_rows,
        )

    def _symm_implicit(self, alpha, handle: ImplicitKernelMatrix, B: Matrix,
                       beta, C: Matrix) -> None:
        self.kernels(handle.params).symm_implicit(
            alpha, handle.data, handle.num_rows, handle.num_features,
            handle.q, self.precision(handle.QA_cost),
            self.precision(handle.cost), B.data, beta, C.data, B.num_rows,
        )

    def _implicit_diagonal(self, handle: ImplicitKernelMatrix) -> np.ndarray:
        out = np.zeros(handle.num_rows, dtype=self.precision)
        self.kernels(handle.params).implicit_diagonal(
            handle.data, handle.num_rows, handle.num_features, handle.q,
            self.precision(handle.QA_cost), self.precision(handle.cost), out,
        )
        return out

    def _cholesky_factor(self, packed, num_rows: int, padding: int):
        factor = np.zeros_like(packed)
        cholesky_factor(packed, num_rows, padding, factor)
        return factor

    def _apply_jacobi(self, handle: PreconditionerHandle, R: Matrix,
                      S: Matrix) -> None:
        jacobi_apply(handle.diagonal, handle.num_rows, R.data, S.data,
                     R.num_rows)

    def _apply_cholesky(self, handle: PreconditionerHandle, R: Matrix,
                        S: Matrix) -> None:
        cholesky_apply(handle.factor, handle.num_rows, handle.padding,
                       R.data, S.data, R.num_rows)

    def predict_values(self, params, support_vectors, alpha, rho, points):
        support_vectors = np.ascontiguousarray(support_vectors,
                                               dtype=self.precision)
        points = np.ascontiguousarray(points, dtype=self.precision)
        alpha = np.ascontiguousarray(np.atleast_2d(alpha),
                                     dtype=self.precision)
        rho = np.ascontiguousarray(np.atleast_1d(rho), dtype=self.precision)
        if params.kernel_type is KernelFunctionType.linear:
            w = alpha @ support_vectors
            return w @ points.T - rho[:, np.newaxis]
        out = np.empty((alpha.shape[0], points.shape[0]),
                       dtype=self.precision)
        self.kernels(params).predict(
            support_vectors, support_vectors.shape[0],
            support_vectors.shape[1], alpha, rho, points, points.shape[0],
            out,
        )
        return out
