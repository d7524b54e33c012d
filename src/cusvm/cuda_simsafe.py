"""Simulation-safe CUDA helpers and stand-ins.

This module centralises compatibility utilities for environments running with
``NUMBA_ENABLE_CUDASIM=1``.  It exposes a consistent surface so the CUDA
backend can import CUDA-facing helpers without branching on simulator state.
"""
from __future__ import annotations

import os
from typing import Tuple

import numba
from numba import cuda
import numpy as np


CUDA_SIMULATION: bool = os.environ.get("NUMBA_ENABLE_CUDASIM") == "1"


class FakeCudaAPIError(Exception):  # pragma: no cover - placeholder
    """Stand-in for the driver error type, never raised by the simulator."""

    def __init__(self, code: int = 0, msg: str = "") -> None:
        super().__init__(code, msg)
        self.code = code
        self.msg = msg


class FakeCudaSupportError(Exception):  # pragma: no cover - placeholder
    """Stand-in for the missing-driver error type."""


class FakeMemoryInfo:  # pragma: no cover - placeholder
    """Container for fake memory statistics."""

    free = 1024 ** 3
    total = 8 * 1024 ** 3


if CUDA_SIMULATION:  # pragma: no cover - simulated
    CudaAPIError = FakeCudaAPIError
    CudaSupportError = FakeCudaSupportError

    def current_mem_info() -> Tuple[int, int]:
        """Return fake free and total memory values."""

        fakemem = FakeMemoryInfo()
        return fakemem.free, fakemem.total

else:  # pragma: no cover - exercised in GPU environments
    from numba.cuda.cudadrv.driver import (  # type: ignore[attr-defined]
        CudaAPIError,
    )
    from numba.cuda.cudadrv.error import (  # type: ignore[attr-defined]
        CudaSupportError,
    )

    def current_mem_info() -> Tuple[int, int]:
        """Return free and total memory from the active CUDA context."""

        return cuda.current_context().get_memory_info()


def from_dtype(dtype: np.dtype):
    """Return a CUDA-ready dtype or a simulator-safe placeholder."""

    if not CUDA_SIMULATION:
        return numba.from_dtype(dtype)
    return dtype


def is_cudasim_enabled() -> bool:
    """Return ``True`` when running under the CUDA simulator."""

    return CUDA_SIMULATION


def has_cuda_device() -> bool:
    """Return ``True`` when a real CUDA device can be used.

    The simulator always reports itself as available; it is not counted as
    a device here so automatic backend selection stays on the CPU.
    """
    if CUDA_SIMULATION:
        return False
    try:
        return bool(cuda.is_available())
    except CudaSupportError:
        return False


__all__ = [
    "CUDA_SIMULATION",
    "CudaAPIError",
    "CudaSupportError",
    "FakeCudaAPIError",
    "FakeCudaSupportError",
    "FakeMemoryInfo",
    "current_mem_info",
    "from_dtype",
    "has_cuda_device",
    "is_cudasim_enabled",
]
