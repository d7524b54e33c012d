"""Compute backends and backend selection."""

from typing import Optional

from cusvm._utils import PrecisionDType
from cusvm.backends.base import Backend
from cusvm.backends.cpu.cpu_backend import CPUBackend
from cusvm.backends.cuda.cuda_backend import CUDABackend
from cusvm.backends.handles import (
    ExplicitKernelMatrix,
    ImplicitKernelMatrix,
    KernelMatrixHandle,
    MatrixHandle,
    PreconditionerHandle,
)
from cusvm.cuda_simsafe import has_cuda_device
from cusvm.exceptions import UnsupportedBackendError
from cusvm.time_logger import TimeLogger

BACKENDS = {
    "cpu": CPUBackend,
    "cuda": CUDABackend,
}


def make_backend(
    target: str = "automatic",
    precision: PrecisionDType = "float64",
    mem_proportion: float = 0.9,
    logger: Optional[TimeLogger] = None,
) -> Backend:
    """Create the backend for ``target``.

    Parameters
    ----------
    target
        ``"cpu"``, ``"cuda"``, or ``"automatic"``. Automatic selects the
        CUDA backend when a real device is present and the CPU backend
        otherwise.

    Raises
    ------
    UnsupportedBackendError
        For unknown targets, or when the CUDA backend has no device.
    """
    target = str(target).lower()
    if target == "automatic":
        target = "cuda" if has_cuda_device() else "cpu"
    try:
        backend_type = BACKENDS[target]
    except KeyError:
        raise UnsupportedBackendError(
            f"Unknown backend '{target}', choose one of "
            f"{sorted(BACKENDS)} or 'automatic'!"
        ) from None
    return backend_type(
        precision=precision, mem_proportion=mem_proportion, logger=logger
    )


__all__ = [
    "BACKENDS",
    "Backend",
    "CPUBackend",
    "CUDABackend",
    "ExplicitKernelMatrix",
    "ImplicitKernelMatrix",
    "KernelMatrixHandle",
    "MatrixHandle",
    "PreconditionerHandle",
    "make_backend",
]
