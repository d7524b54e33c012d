"""Host backend compiled with numba njit."""

from cusvm.backends.cpu.cpu_backend import CPUBackend

__all__ = ["CPUBackend"]
