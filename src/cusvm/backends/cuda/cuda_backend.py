"""GPU backend launching numba CUDA kernels.

Data points are stored structure-of-arrays on the device so that threads
of a warp reading the same feature of consecutive points access
contiguous memory. Right-hand-side matrices stay on the host between
calls and are transferred around every multiply.
"""

import math
from contextlib import contextmanager
from typing import Optional

import numpy as np
from numba import cuda

from cusvm._utils import PrecisionDType
from cusvm.backends.base import Backend
from cusvm.backends.cuda.kernels import CUDAKernels
from cusvm.backends.handles import (
    ExplicitKernelMatrix,
    ImplicitKernelMatrix,
    PreconditionerHandle,
)
from cusvm.constants import LINEAR_BLOCK_SIZE, THREAD_BLOCK_SIZE
from cusvm.cuda_simsafe import (
    CudaAPIError,
    CudaSupportError,
    current_mem_info,
)
from cusvm.exceptions import BackendError, UnsupportedBackendError
from cusvm.matrix import LayoutType, Matrix, packed_size
from cusvm.parameter import KernelFunctionType, Parameter
from cusvm.time_logger import TimeLogger


@contextmanager
def cuda_errors(action: str):
    """Translate CUDA driver failures into :class:`BackendError`."""
    try:
        yield
    except CudaAPIError as e:
        raise BackendError(
            f"CUDA error while {action}: {e.msg}",
            code=e.code,
            name=type(e).__name__,
        ) from e
    except CudaSupportError as e:
        raise UnsupportedBackendError(
            f"CUDA is not supported while {action}: {e}"
        ) from e


def _linear_grid(num_threads: int) -> int:
    return max(1, math.ceil(num_threads / LINEAR_BLOCK_SIZE))


class CUDABackend(Backend):
    """Backend running all primitives on a CUDA device."""

    name = "cuda"
    layout = LayoutType.soa

    def __init__(
        self,
        precision: PrecisionDType = np.float64,
        mem_proportion: float = 0.9,
        logger: Optional[TimeLogger] = None,
    ) -> None:
        super().__init__(precision, mem_proportion, logger)
        self._kernels = None
        with cuda_errors("selecting the device"):
            if not cuda.is_available():
                raise UnsupportedBackendError(
                    "No CUDA device is available for the cuda backend!"
                )

    def kernels(self, params: Optional[Parameter] = None) -> CUDAKernels:
        """Return the compiled kernels, rebound to ``params`` if given."""
        if self._kernels is None:
            self._kernels = CUDAKernels(
                self.precision, params if params is not None else Parameter()
            )
        elif params is not None:
            self._kernels.update(params)
        return self._kernels

    def available_memory(self) -> int:
        with cuda_errors("querying the device memory"):
            free, _ = current_mem_info()
        return int(free)

    def _to_backend(self, array: np.ndarray):
        with cuda_errors("copying to the device"):
            return cuda.to_device(np.asarray(array, dtype=self.precision))

    def _to_host(self, array) -> np.ndarray:
        with cuda_errors("copying to the host"):
            return array.copy_to_host()

    def _prepare_data(self, data: Matrix):
        return self._to_backend(data.data)

    def _assemble_explicit(self, data, num_rows, num_features, q, QA_cost,
                           cost, params, padding):
        blocks = max(1, math.ceil(num_rows / THREAD_BLOCK_SIZE))
        with cuda_errors("assembling the kernel matrix"):
            packed = cuda.to_device(
                np.zeros(packed_size(num_rows, padding), dtype=self.precision)
            )
            self.kernels(params).assemble_explicit[
                (blocks, blocks), (THREAD_BLOCK_SIZE, THREAD_BLOCK_SIZE)
            ](packed, data, num_rows, num_features, q, QA_cost, cost,
              padding)
            cuda.synchronize()
        return packed

    def _symm_explicit(self, alpha, handle: ExplicitKernelMatrix, B: Matrix,
                       beta, C: Matrix) -> None:
        num_rhs = B.num_rows
        grid = _linear_grid(num_rhs * handle.num_rows)
        with cuda_errors("multiplying with the explicit kernel matrix"):
            d_B = cuda.to_device(np.ascontiguousarray(B.data))
            d_C = cuda.to_device(np.ascontiguousarray(C.data))
            self.kernels().symm_explicit[grid, LINEAR_BLOCK_SIZE](
                alpha, handle.packed, handle.num_rows, handle.padding, d_B,
                beta, d_C, num_rhs,
            )
            C.data[...] = d_C.copy_to_host()

    def _symm_implicit(self, alpha, handle: ImplicitKernelMatrix, B: Matrix,
                       beta, C: Matrix) -> None:
        num_rhs = B.num_rows
        grid = _linear_grid(num_rhs * handle.num_rows)
        with cuda_errors("multiplying with the implicit kernel matrix"):
            d_B = cuda.to_device(np.ascontiguousarray(B.data))
            d_C = cuda.to_device(np.ascontiguousarray(C.data))
            self.kernels(handle.params).symm_implicit[grid, LINEAR_BLOCK_SIZE](
                alpha, handle.data, handle.num_rows, handle.num_features,
                handle.q, self.precision(handle.QA_cost),
                self.precision(handle.cost), d_B, beta, d_C, num_rhs,
            )
            C.data[...] = d_C.copy_to_host()

    def _implicit_diagonal(self, handle: ImplicitKernelMatrix) -> np.ndarray:
        grid = _linear_grid(handle.num_rows)
        with cuda_errors("computing the kernel matrix diagonal"):
            d_out = cuda.device_array(handle.num_rows, dtype=self.precision)
            self.kernels(handle.params).implicit_diagonal[
                grid, LINEAR_BLOCK_SIZE
            ](handle.data, handle.num_rows, handle.num_features, handle.q,
              self.precision(handle.QA_cost), self.precision(handle.cost),
              d_out)
            return d_out.copy_to_host()

    def _cholesky_factor(self, packed, num_rows: int, padding: int):
        kernels = self.kernels()
        with cuda_errors("factorizing the kernel matrix"):
            factor = cuda.to_device(
                np.zeros(packed_size(num_rows, padding), dtype=self.precision)
            )
            for r in range(num_rows):
                kernels.cholesky_diagonal[1, 1](
                    packed, factor, r, num_rows, padding
                )
                remaining = num_rows - r - 1
                if remaining > 0:
                    kernels.cholesky_row[
                        _linear_grid(remaining), LINEAR_BLOCK_SIZE
                    ](packed, factor, r, num_rows, padding)
            cuda.synchronize()
        return factor

    def _apply_jacobi(self, handle: PreconditionerHandle, R: Matrix,
                      S: Matrix) -> None:
        num_rhs = R.num_rows
        grid = _linear_grid(num_rhs * handle.num_rows)
        with cuda_errors("applying the jacobi preconditioner"):
            d_R = cuda.to_device(np.ascontiguousarray(R.data))
            d_S = cuda.to_device(np.ascontiguousarray(S.data))
            self.kernels().jacobi_apply[grid, LINEAR_BLOCK_SIZE](
                handle.diagonal, handle.num_rows, d_R, d_S, num_rhs
            )
            S.data[...] = d_S.copy_to_host()

    def _apply_cholesky(self, handle: PreconditionerHandle, R: Matrix,
                        S: Matrix) -> None:
        num_rhs = R.num_rows
        with cuda_errors("applying the cholesky preconditioner"):
            d_R = cuda.to_device(np.ascontiguousarray(R.data))
            d_S = cuda.to_device(np.ascontiguousarray(S.data))
            d_Y = cuda.device_array(
                (num_rhs, handle.num_rows), dtype=self.precision
            )
            self.kernels().cholesky_apply[
                _linear_grid(num_rhs), LINEAR_BLOCK_SIZE
            ](handle.factor, handle.num_rows, handle.padding, d_R, d_Y, d_S,
              num_rhs)
            S.data[...] = d_S.copy_to_host()

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
        num_points = points.shape[0]
        with cuda_errors("predicting values"):
            d_out = cuda.device_array((alpha.shape[0], num_points),
                                      dtype=self.precision)
            self.kernels(params).predict[
                _linear_grid(num_points), LINEAR_BLOCK_SIZE
            ](cuda.to_device(support_vectors), support_vectors.shape[0],
              support_vectors.shape[1], cuda.to_device(alpha),
              cuda.to_device(rho), cuda.to_device(points), num_points, d_out)
            return d_out.copy_to_host()
