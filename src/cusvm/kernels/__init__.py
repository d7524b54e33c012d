"""Kernel functions shared by all backends."""

from cusvm.kernels.kernel_functions import (
    KERNEL_FAMILY_TABLE,
    KernelFunction,
    KernelFunctionCache,
    KernelFunctionConfig,
    kernel_function,
    kernel_settings,
)

__all__ = [
    "KERNEL_FAMILY_TABLE",
    "KernelFunction",
    "KernelFunctionCache",
    "KernelFunctionConfig",
    "kernel_function",
    "kernel_settings",
]
