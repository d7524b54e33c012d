"""Pointwise kernel functions and their compiled building blocks.

Every kernel family is split into a per-feature reduction and a scalar
transform applied to the reduced sum:

============ ========================== ============================
kernel       per-feature reduce          post-reduce transform
============ ========================== ============================
linear       ``u*v``                     identity
polynomial   ``u*v``                     ``(gamma*s + coef0)**degree``
rbf          ``(u-v)**2``                ``exp(-gamma*s)``
sigmoid      ``u*v``                     ``tanh(gamma*s + coef0)``
laplacian    ``|u-v|``                   ``exp(-gamma*s)``
chi_squared  ``(u-v)**2 / (u+v)``        ``exp(-gamma*s)``
============ ========================== ============================

The table is written once as plain Python scalar functions.
:class:`KernelFunction` compiles it for either the CPU or the CUDA target,
so the assembly, multiply and predict kernels of both backends share a
single description of each family.
"""

import math
from typing import Callable

import attrs
import numpy as np
from attrs import field

from cusvm.JITFactory import JITCache, JITFactory, JITFactoryConfig, target_jit
from cusvm._utils import PrecisionDType, enum_converter
from cusvm.parameter import KernelFunctionType, Parameter


# --------------------------------------------------------------------------- #
#                            Feature reductions                               #
# --------------------------------------------------------------------------- #
def _dot_reduce(u, v):
    return u * v


def _squared_distance_reduce(u, v):
    d = u - v
    return d * d


def _manhattan_reduce(u, v):
    return abs(u - v)


def _chi_squared_reduce(u, v):
    # zero padding makes u + v == 0 a regular case
    s = u + v
    if s == 0:
        return s
    d = u - v
    return (d * d) / s


# --------------------------------------------------------------------------- #
#                             Scalar transforms                               #
# --------------------------------------------------------------------------- #
def _identity_transform(degree, gamma, coef0):
    def transform(s):
        return s

    return transform


def _polynomial_transform(degree, gamma, coef0):
    def transform(s):
        return (gamma * s + coef0) ** degree

    return transform


def _exponential_transform(degree, gamma, coef0):
    def transform(s):
        return math.exp(-gamma * s)

    return transform


def _sigmoid_transform(degree, gamma, coef0):
    def transform(s):
        return math.tanh(gamma * s + coef0)

    return transform


KERNEL_FAMILY_TABLE = {
    KernelFunctionType.linear: (_dot_reduce, _identity_transform),
    KernelFunctionType.polynomial: (_dot_reduce, _polynomial_transform),
    KernelFunctionType.rbf: (_squared_distance_reduce, _exponential_transform),
    KernelFunctionType.sigmoid: (_dot_reduce, _sigmoid_transform),
    KernelFunctionType.laplacian: (_manhattan_reduce, _exponential_transform),
    KernelFunctionType.chi_squared: (
        _chi_squared_reduce,
        _exponential_transform,
    ),
}


def kernel_function(x, y, params: Parameter) -> float:
    """Evaluate the kernel between two feature vectors on the host.

    Parameters
    ----------
    x, y
        One-dimensional feature vectors of equal length.
    params
        Kernel parameters. ``gamma`` must be resolved for kernels that
        read it.

    Returns
    -------
    float
        The kernel value ``k(x, y)``.
    """
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    if x.shape != y.shape:
        raise ValueError(
            f"Feature vectors must have the same size, got {x.shape} and "
            f"{y.shape}!"
        )
    params.sanity_check()
    reduce, transform_factory = KERNEL_FAMILY_TABLE[params.kernel_type]
    transform = transform_factory(params.degree, params.gamma, params.coef0)
    total = 0.0
    for u, v in zip(x, y):
        total += reduce(float(u), float(v))
    return float(transform(total))


# --------------------------------------------------------------------------- #
#                             Compiled versions                               #
# --------------------------------------------------------------------------- #
@attrs.define
class KernelFunctionConfig(JITFactoryConfig):
    """Compile settings of :class:`KernelFunction`.

    Attributes
    ----------
    kernel_type : KernelFunctionType
        Selected kernel family.
    degree : int
        Polynomial degree.
    gamma : float
        Kernel scale, ``0.0`` for kernels that ignore it.
    coef0 : float
        Kernel offset.
    """

    kernel_type: KernelFunctionType = field(
        default=KernelFunctionType.linear,
        converter=enum_converter(KernelFunctionType),
    )
    degree: int = field(default=3, converter=int)
    gamma: float = field(default=0.0, converter=float)
    coef0: float = field(default=0.0, converter=float)


@attrs.define
class KernelFunctionCache(JITCache):
    """Compiled pieces of one kernel family.

    Attributes
    ----------
    feature_reduce : callable
        ``feature_reduce(u, v)`` for a single feature pair.
    apply_kernel : callable
        ``apply_kernel(s)`` applied to the reduced sum.
    kernel_entry : callable
        ``kernel_entry(a, i, b, j, num_features)`` evaluating the kernel
        between row ``i`` of ``a`` and row ``j`` of ``b``.
    """

    feature_reduce: Callable = field(eq=False)
    apply_kernel: Callable = field(eq=False)
    kernel_entry: Callable = field(eq=False)


def kernel_settings(params: Parameter) -> dict:
    """Translate :class:`Parameter` into :class:`KernelFunctionConfig` keys."""
    return {
        "kernel_type": params.kernel_type,
        "degree": params.degree,
        "gamma": 0.0 if params.gamma is None else params.gamma,
        "coef0": params.coef0,
    }


class KernelFunction(JITFactory):
    """Factory compiling one kernel family for a target.

    Parameters
    ----------
    precision
        Floating point type the compiled functions work in.
    params
        Kernel parameters baked into the compiled transform.
    target
        ``"cpu"`` or ``"cuda"``.
    """

    def __init__(
        self,
        precision: PrecisionDType,
        params: Parameter,
        target: str = "cpu",
    ) -> None:
        super().__init__()
        config = KernelFunctionConfig(
            precision=precision, target=target, **kernel_settings(params)
        )
        self.setup_compile_settings(config)

    def update(self, params: Parameter) -> None:
        """Rebind the kernel parameters, recompiling if they changed."""
        self.update_compile_settings(kernel_settings(params))

    def build(self) -> KernelFunctionCache:
        config = self.compile_settings
        precision = config.precision
        jit = target_jit(config.target)

        reduce, transform_factory = KERNEL_FAMILY_TABLE[config.kernel_type]
        degree = int(config.degree)
        gamma = precision(config.gamma)
        coef0 = precision(config.coef0)
        zero = precision(0.0)

        feature_reduce = jit(reduce)
        apply_kernel = jit(transform_factory(degree, gamma, coef0))

        # no cover: start
        @jit
        def kernel_entry(a, i, b, j, num_features):
            temp = zero
            for f in range(num_features):
                temp += feature_reduce(a[i, f], b[j, f])
            return apply_kernel(temp)
        # no cover: end

        return KernelFunctionCache(
            feature_reduce=feature_reduce,
            apply_kernel=apply_kernel,
            kernel_entry=kernel_entry,
        )

    @property
    def feature_reduce(self) -> Callable:
        return self.get_cached_output("feature_reduce")

    @property
    def apply_kernel(self) -> Callable:
        return self.get_cached_output("apply_kernel")

    @property
    def kernel_entry(self) -> Callable:
        return self.get_cached_output("kernel_entry")
