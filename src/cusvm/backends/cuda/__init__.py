"""CUDA backend compiled with numba.cuda."""

from cusvm.backends.cuda.cuda_backend import CUDABackend, cuda_errors

__all__ = ["CUDABackend", "cuda_errors"]
